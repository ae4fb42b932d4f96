"""A lock-file lease guaranteeing one active run per (pipeline, branch)."""

from __future__ import annotations

import json
import logging
import os
import re
import socket
import time
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

from .errors import LeaseUnavailable

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2
# A takeover marker older than this was left by a crashed process
TAKEOVER_EXPIRY = 30.0


def _slug(part: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", part).strip("_") or "_"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class RunLease:
    """
    Exclusive lease keyed by (pipeline name, branch).

    The lease is a file created with O_CREAT|O_EXCL holding the owner's pid, host
    and start time. A lease left behind by a dead process on this host is stale
    and is taken over. Overlapping runs wait up to `wait_seconds` before giving up.

    Usage:
        with RunLease(("docs", "refs/heads/main"), Path(".docgate/leases")):
            ...
    """

    def __init__(
        self,
        key: tuple[str, str],
        directory: Path,
        *,
        wait_seconds: float = 0,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.key = key
        self.directory = directory
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self.path = directory / f"{_slug(key[0])}--{_slug(key[1])}.lock"
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            json.dump(
                {
                    "pid": os.getpid(),
                    "host": socket.gethostname(),
                    "key": list(self.key),
                    "started": datetime.now(timezone.utc).isoformat(),
                },
                f,
            )
        return True

    def owner(self) -> dict | None:
        """The recorded owner of the lease file, or None if it is missing or unreadable."""
        try:
            return json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError):
            return None

    def _is_stale(self, owner: dict | None) -> bool:
        if owner is None:
            return False
        if owner.get("host") != socket.gethostname():
            return False
        pid = owner.get("pid")
        return isinstance(pid, int) and not _pid_alive(pid)

    def _take_over(self, stale: dict) -> bool:
        """
        Remove the lease file if it still belongs to the dead owner `stale`.

        Takeovers are serialized through an O_EXCL marker file. While the marker
        is held the lease file can only change by being removed, so re-reading
        the owner and then unlinking cannot remove a lease another run created
        in between. Returns True if the stale lease was removed.
        """
        marker = self.path.with_name(self.path.name + ".takeover")
        try:
            fd = os.open(marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            try:
                if time.time() - marker.stat().st_mtime > TAKEOVER_EXPIRY:
                    marker.unlink(missing_ok=True)
            except FileNotFoundError:
                pass
            return False
        os.close(fd)
        try:
            if self.owner() != stale:
                return False
            logger.warning("Taking over stale lease %s (owner %s)", self.path, stale)
            self.path.unlink(missing_ok=True)
            return True
        finally:
            marker.unlink(missing_ok=True)

    def acquire(self) -> None:
        """
        Acquire the lease, waiting up to `wait_seconds`.

        Raises:
            LeaseUnavailable: If another live run still holds the lease.

        """
        self.directory.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.wait_seconds
        while True:
            if self._try_create():
                self._held = True
                logger.debug("Acquired lease %s", self.path)
                return
            stale = self.owner()
            if self._is_stale(stale) and self._take_over(stale):
                continue
            if time.monotonic() >= deadline:
                owner = self.owner() or {}
                raise LeaseUnavailable(
                    f"Another run of '{self.key[0]}' on '{self.key[1]}' is active (pid {owner.get('pid', '?')})"
                )
            time.sleep(self.poll_interval)

    def release(self) -> None:
        if not self._held:
            return
        self.path.unlink(missing_ok=True)
        self._held = False
        logger.debug("Released lease %s", self.path)

    def __enter__(self) -> RunLease:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
