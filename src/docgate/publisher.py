"""Publish build output to a hosting location.

Publishing merges into whatever already exists at the target unless
`keep_files` is off, in which case the target's previous contents are replaced.
"""

from __future__ import annotations

import base64
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from . import subprocess as sp
from .errors import PublishFailed, Timeout

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "deploy: update documentation"


@dataclass(frozen=True)
class PublishTarget:
    """Where to publish: a branch name (git) or a directory path, plus the merge policy."""

    identifier: str
    keep_files: bool = True


@dataclass(frozen=True)
class PublishOutcome:
    target: PublishTarget
    changed: bool
    files: int = 0
    revision: str | None = None


class Publisher(Protocol):
    def publish(
        self,
        source: Path,
        target: PublishTarget,
        *,
        message: str | None = None,
        timeout: float | None = None,
    ) -> PublishOutcome: ...


def _clear(directory: Path, keep: tuple[str, ...] = (".git",)) -> None:
    for entry in directory.iterdir():
        if entry.name in keep:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


def merge_tree(source: Path, destination: Path, *, keep_files: bool = True) -> int:
    """
    Copy the contents of `source` into `destination`.

    Files already present in `destination` are left alone unless they are
    overwritten by a file of the same path, or `keep_files` is False, in which
    case everything except a `.git` directory is removed first.

    Returns:
        The number of files copied.

    """
    destination.mkdir(parents=True, exist_ok=True)
    if not keep_files:
        _clear(destination)

    copied = 0

    def _copy(src: str, dst: str) -> str:
        nonlocal copied
        copied += 1
        return shutil.copy2(src, dst)

    shutil.copytree(
        source,
        destination,
        dirs_exist_ok=True,
        copy_function=_copy,
        ignore=shutil.ignore_patterns(".git"),
    )
    return copied


class DirectoryPublisher:
    """
    Publishes into a local directory, e.g. a mounted web root.

    A relative target is resolved against `root` (the repository), like every
    other configured path.
    """

    def __init__(self, root: Path | None = None):
        self.root = root

    def destination(self, target: PublishTarget) -> Path:
        path = Path(target.identifier)
        if self.root is not None and not path.is_absolute():
            return self.root / path
        return path

    def publish(
        self,
        source: Path,
        target: PublishTarget,
        *,
        message: str | None = None,
        timeout: float | None = None,
    ) -> PublishOutcome:
        destination = self.destination(target)
        if destination.exists() and not destination.is_dir():
            raise PublishFailed(f"Publish target is not a directory: {destination}")
        if destination.exists() and not os.access(destination, os.W_OK):
            raise PublishFailed(f"Publish target is not writable: {destination}")

        try:
            files = merge_tree(source, destination, keep_files=target.keep_files)
        except (OSError, shutil.Error) as e:
            raise PublishFailed(f"Failed to copy {source} to {destination}: {e}") from e

        logger.info("Published %d file(s) to %s", files, destination)
        return PublishOutcome(target=target, changed=files > 0, files=files)


def auth_env(token: str | None) -> dict[str, str]:
    """
    Git config, passed through the environment, that authenticates https remotes with `token`.

    The token travels as an `http.extraheader` in `GIT_CONFIG_*` variables so it
    never appears on a command line (which is logged) or in a remote URL.
    """
    if not token:
        return {}
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraheader",
        "GIT_CONFIG_VALUE_0": f"AUTHORIZATION: basic {basic}",
    }


class GitBranchPublisher:
    """
    Publishes to a branch of a git remote, the way gh-pages deployments work.

    The target branch is fetched into a scratch repository, the build output is
    merged into it, and the result is committed and pushed. A missing branch is
    created as an orphan. The token is read from the environment and never logged.
    """

    def __init__(
        self,
        repo: Path,
        *,
        remote: str = "origin",
        token: str | None = None,
        user_name: str = "github-actions[bot]",
        user_email: str = "41898282+github-actions[bot]@users.noreply.github.com",
        nojekyll: bool = True,
        runner: sp.ToolRunner = sp.run,
    ):
        self.repo = repo
        self.remote = remote
        self.token = token
        self.user_name = user_name
        self.user_email = user_email
        self.nojekyll = nojekyll
        self.runner = runner

    def _redact(self, result: sp.RunResult) -> sp.RunResult:
        if not self.token:
            return result
        masked = [self.token, base64.b64encode(f"x-access-token:{self.token}".encode()).decode()]

        def mask(text: str) -> str:
            for secret in masked:
                text = text.replace(secret, "***")
            return text

        return replace(
            result,
            stdout=mask(result.stdout),
            stderr=mask(result.stderr),
            command=[mask(arg) for arg in result.command],
        )

    def _env(self) -> dict[str, str]:
        # The deploy identity must win over any GIT_AUTHOR_* already in the environment
        return {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_AUTHOR_NAME": self.user_name,
            "GIT_AUTHOR_EMAIL": self.user_email,
            "GIT_COMMITTER_NAME": self.user_name,
            "GIT_COMMITTER_EMAIL": self.user_email,
            **auth_env(self.token),
        }

    def _git(self, *args: str, cwd: Path, timeout: float | None) -> sp.RunResult:
        try:
            result = self.runner(
                "git",
                *args,
                cwd=cwd,
                env=self._env(),
                capture=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise PublishFailed("git executable not found") from e
        result = self._redact(result)
        if result.timed_out:
            raise Timeout(f"git {args[0]} timed out", result)
        return result

    def remote_url(self, *, timeout: float | None = None) -> str:
        """The URL of the configured remote. A remote that is already a URL or path is used as is."""
        if "/" in self.remote or ":" in self.remote:
            return self.remote
        result = self._git("remote", "get-url", self.remote, cwd=self.repo, timeout=timeout)
        if result.failed or not result.stdout.strip():
            raise PublishFailed(f"Unknown git remote '{self.remote}'", result)
        return result.stdout.strip()

    def publish(
        self,
        source: Path,
        target: PublishTarget,
        *,
        message: str | None = None,
        timeout: float | None = None,
    ) -> PublishOutcome:
        branch = target.identifier
        url = self.remote_url(timeout=timeout)

        with tempfile.TemporaryDirectory(prefix="docgate-publish-") as scratch:
            work = Path(scratch)

            def git(*args: str, error: str | None = None) -> sp.RunResult:
                result = self._git(*args, cwd=work, timeout=timeout)
                if error is not None and result.failed:
                    raise PublishFailed(error, result)
                return result

            git("init", "--quiet", error="Failed to initialise a scratch repository")

            listing = git(
                "ls-remote",
                "--heads",
                url,
                f"refs/heads/{branch}",
                error=f"Cannot reach publish remote for branch '{branch}'",
            )

            if listing.stdout.strip():
                git(
                    "fetch",
                    "--quiet",
                    "--depth",
                    "1",
                    url,
                    f"refs/heads/{branch}",
                    error=f"Failed to fetch branch '{branch}'",
                )
                git("checkout", "--quiet", "-B", branch, "FETCH_HEAD", error=f"Failed to check out branch '{branch}'")
            else:
                logger.info("Branch '%s' does not exist yet; creating it", branch)
                git("symbolic-ref", "HEAD", f"refs/heads/{branch}", error=f"Failed to create branch '{branch}'")

            try:
                files = merge_tree(source, work, keep_files=target.keep_files)
            except (OSError, shutil.Error) as e:
                raise PublishFailed(f"Failed to copy {source} into branch '{branch}': {e}") from e
            if self.nojekyll:
                (work / ".nojekyll").touch()

            git("add", "--all", error=f"Failed to stage files for branch '{branch}'")
            status = git("status", "--porcelain", error=f"Failed to inspect branch '{branch}'")
            if not status.stdout.strip():
                logger.info("Branch '%s' is already up to date", branch)
                return PublishOutcome(target=target, changed=False, files=files)

            git("commit", "--quiet", "-m", message or DEFAULT_MESSAGE, error=f"Failed to commit to branch '{branch}'")
            git("push", "--quiet", url, f"HEAD:refs/heads/{branch}", error=f"Push to branch '{branch}' was rejected")

            revision = git("rev-parse", "HEAD").stdout.strip() or None

        logger.info("Published %d file(s) to branch '%s' (%s)", files, branch, revision)
        return PublishOutcome(target=target, changed=True, files=files, revision=revision)
