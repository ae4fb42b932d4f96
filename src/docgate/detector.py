"""Change detection: does a revision pair touch the watched prefix?"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from . import subprocess as sp
from .errors import RevisionUnavailable
from .trigger import RevisionPair

logger = logging.getLogger(__name__)


def normalize_prefix(prefix: str) -> str:
    """
    Normalize a watched prefix to a directory-style prefix.

    Strips a leading "./" and a trailing glob ("**", "/**" or "/*"), so the
    paths-filter style "docs/**" becomes "docs". An empty result matches everything.
    """
    prefix = prefix.strip()
    while prefix.startswith("./"):
        prefix = prefix[2:]
    for suffix in ("/**", "/*", "**"):
        if prefix.endswith(suffix):
            prefix = prefix[: -len(suffix)]
            break
    return prefix.rstrip("/")


def path_under(path: str, prefix: str) -> bool:
    """True if `path` is `prefix` itself or lies beneath it."""
    prefix = normalize_prefix(prefix)
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")


@dataclass(frozen=True)
class ChangeSet:
    """The set of paths that differ between two revisions."""

    paths: frozenset[str] = frozenset()

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self):
        return iter(sorted(self.paths))

    def under(self, prefix: str) -> list[str]:
        """Changed paths under `prefix`, sorted."""
        return sorted(p for p in self.paths if path_under(p, prefix))

    def touches(self, prefix: str) -> bool:
        return any(path_under(p, prefix) for p in self.paths)


class DiffProvider(Protocol):
    """Supplies the change set for a revision pair."""

    def changed_paths(self, revisions: RevisionPair, *, timeout: float | None = None) -> ChangeSet: ...


class GitDiffProvider:
    """
    Computes change sets with the git CLI.

    Without a base revision (manual runs, or a push that created the branch) the
    head is compared against its first parent. A root commit counts every file
    in its tree as changed.
    """

    def __init__(
        self,
        repo: Path,
        *,
        runner: sp.ToolRunner = sp.run,
        timeout: float | None = None,
    ):
        self.repo = repo
        self.runner = runner
        self.timeout = timeout

    def _git(self, *args: str, timeout: float | None = None) -> sp.RunResult:
        if timeout is None:
            timeout = self.timeout
        try:
            return self.runner("git", *args, cwd=self.repo, capture=True, timeout=timeout)
        except FileNotFoundError as e:
            raise RevisionUnavailable("git executable not found") from e

    def resolve(self, rev: str, *, timeout: float | None = None) -> str:
        """Resolve `rev` to a full commit SHA."""
        result = self._git("rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}", timeout=timeout)
        if result.timed_out:
            raise RevisionUnavailable(f"Timed out resolving revision {rev!r}", result)
        if result.failed or not result.stdout.strip():
            raise RevisionUnavailable(f"Cannot resolve revision {rev!r}", result)
        return result.stdout.strip()

    def _first_parent(self, sha: str, timeout: float | None = None) -> str | None:
        result = self._git("rev-parse", "--verify", "--quiet", f"{sha}^1", timeout=timeout)
        if result.ok and result.stdout.strip():
            return result.stdout.strip()
        return None

    def changed_paths(self, revisions: RevisionPair, *, timeout: float | None = None) -> ChangeSet:
        """`timeout` bounds each git call and overrides the provider default."""
        head = self.resolve(revisions.head, timeout=timeout)
        if revisions.has_base:
            assert revisions.base is not None
            base: str | None = self.resolve(revisions.base, timeout=timeout)
        else:
            base = self._first_parent(head, timeout)
            logger.info("No base revision given; comparing %s against %s", head[:12], base and base[:12])

        if base is None:
            args = ["ls-tree", "-r", "-z", "--name-only", head]
        else:
            args = ["diff", "--name-only", "-z", "--no-renames", base, head]

        result = self._git(*args, timeout=timeout)
        if result.failed:
            raise RevisionUnavailable(f"git {args[0]} failed for {revisions}", result)

        paths = frozenset(p for p in result.stdout.split("\0") if p)
        logger.debug("%d path(s) changed in %s", len(paths), revisions)
        return ChangeSet(paths)


class ChangeDetector:
    """Decides whether a revision pair contains relevant changes."""

    def __init__(self, provider: DiffProvider, prefix: str):
        self.provider = provider
        self.prefix = prefix

    def detect(self, revisions: RevisionPair, *, timeout: float | None = None) -> ChangeSet:
        """
        Compute the full change set.

        Raises:
            RevisionUnavailable: If the provider cannot produce a change set. A
                provider failure is never reported as "no changes".

        """
        try:
            return self.provider.changed_paths(revisions, timeout=timeout)
        except RevisionUnavailable:
            raise
        except sp.SubprocessError as e:
            raise RevisionUnavailable(str(e), e.result) from e

    def has_relevant_changes(self, revisions: RevisionPair, prefix: str | None = None) -> bool:
        return self.detect(revisions).touches(self.prefix if prefix is None else prefix)
