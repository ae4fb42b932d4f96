"""Trigger events and the predicates that gate a pipeline run.

Both predicates are pure functions of the event and the primary branch, and are
evaluated exactly once when a run starts.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import RevisionUnavailable

logger = logging.getLogger(__name__)

# git reports this as the "before" SHA of a push that created a branch
NULL_SHA = "0" * 40

BRANCH_REF_PREFIX = "refs/heads/"


class EventKind(Enum):
    """Kinds of events that can trigger a run."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    WORKFLOW_DISPATCH = "workflow_dispatch"


@dataclass(frozen=True)
class RevisionPair:
    """The two revisions whose difference decides whether anything changed."""

    base: str | None
    head: str

    @property
    def has_base(self) -> bool:
        return bool(self.base) and self.base != NULL_SHA

    def __str__(self) -> str:
        return f"{self.base if self.has_base else '<none>'}..{self.head}"


@dataclass(frozen=True)
class TriggerEvent:
    """
    An event that may start a pipeline run.

    Attributes:
        kind: What kind of event this is.
        ref: The git ref the event ran on (e.g. "refs/heads/main", "refs/pull/1/merge").
        base_ref: For pull requests, the branch the PR targets (e.g. "main").
        revisions: The revision pair to diff.

    """

    kind: EventKind
    ref: str
    revisions: RevisionPair
    base_ref: str | None = None

    @property
    def branch(self) -> str:
        """The branch name the event ran on, or the raw ref if it is not a branch."""
        return branch_name(self.ref)


def branch_name(ref: str) -> str:
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX) :]
    return ref


def is_triggered(event: TriggerEvent, primary_branch: str) -> bool:
    """True if the event should start a run at all."""
    if event.kind is EventKind.PUSH:
        return event.branch == primary_branch
    if event.kind is EventKind.PULL_REQUEST:
        return branch_name(event.base_ref or "") == primary_branch
    return event.kind is EventKind.WORKFLOW_DISPATCH


def may_publish(event: TriggerEvent, primary_branch: str) -> bool:
    """True only for a push to the primary branch: previews never publish."""
    return event.kind is EventKind.PUSH and event.ref == f"{BRANCH_REF_PREFIX}{primary_branch}"


def lease_branch(event: TriggerEvent) -> str:
    """The branch component of the single-run lease key (GitHub's `github.ref`)."""
    return event.ref


def event_from_github_env(environ: Mapping[str, str]) -> TriggerEvent:
    """
    Build a TriggerEvent from the GitHub Actions environment.

    Reads `GITHUB_EVENT_NAME`, `GITHUB_REF`, `GITHUB_BASE_REF` and `GITHUB_SHA`, plus
    the event payload at `GITHUB_EVENT_PATH` for the base revision (`before` for
    pushes, `pull_request.base.sha` for pull requests).

    Raises:
        RevisionUnavailable: If required variables are missing or the payload is unreadable.

    """
    name = environ.get("GITHUB_EVENT_NAME", "")
    try:
        kind = EventKind(name)
    except ValueError:
        raise RevisionUnavailable(f"Unsupported event: {name!r}") from None

    ref = environ.get("GITHUB_REF", "")
    head = environ.get("GITHUB_SHA", "")
    if not ref or not head:
        raise RevisionUnavailable("GITHUB_REF and GITHUB_SHA must be set")

    payload: dict = {}
    event_path = environ.get("GITHUB_EVENT_PATH")
    if event_path:
        try:
            payload = json.loads(Path(event_path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise RevisionUnavailable(f"Failed to read event payload {event_path}: {e}") from e

    base: str | None = None
    if kind is EventKind.PUSH:
        base = payload.get("before")
    elif kind is EventKind.PULL_REQUEST:
        base = payload.get("pull_request", {}).get("base", {}).get("sha")
        head = payload.get("pull_request", {}).get("head", {}).get("sha") or head

    event = TriggerEvent(
        kind=kind,
        ref=ref,
        base_ref=environ.get("GITHUB_BASE_REF") or None,
        revisions=RevisionPair(base=base, head=head),
    )
    logger.debug("Event from GitHub environment: %s", event)
    return event
