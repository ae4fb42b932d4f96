"""
docgate - build documentation when it changes, publish it from the primary branch.

Basic usage:

    import os

    from docgate import EventKind, Pipeline, RevisionPair, TriggerEvent, load_config

    config = load_config()
    event = TriggerEvent(
        kind=EventKind.PUSH,
        ref="refs/heads/main",
        revisions=RevisionPair(base="HEAD~1", head="HEAD"),
    )
    report = Pipeline.from_config(config, environ=os.environ).run(event)
    assert report.ok

Or use the CLI:

    docgate run --from-github-env
"""

from .builder import BuildArtifact, Builder
from .config import PipelineConfig, PublishConfig, load_config
from .detector import ChangeDetector, ChangeSet, DiffProvider, GitDiffProvider
from .errors import (
    BuildFailed,
    ConfigError,
    LeaseUnavailable,
    PipelineError,
    PublishFailed,
    RevisionUnavailable,
    Timeout,
)
from .lease import RunLease
from .pipeline import Pipeline, PipelineState, RunReport
from .publisher import DirectoryPublisher, GitBranchPublisher, PublishOutcome, PublishTarget, merge_tree
from .subprocess import RunResult, SubprocessError, run
from .trigger import EventKind, RevisionPair, TriggerEvent, event_from_github_env, is_triggered, may_publish

__all__ = [
    "BuildArtifact",
    "BuildFailed",
    "Builder",
    "ChangeDetector",
    "ChangeSet",
    "ConfigError",
    "DiffProvider",
    "DirectoryPublisher",
    "EventKind",
    "GitBranchPublisher",
    "GitDiffProvider",
    "LeaseUnavailable",
    "Pipeline",
    "PipelineConfig",
    "PipelineError",
    "PipelineState",
    "PublishConfig",
    "PublishFailed",
    "PublishOutcome",
    "PublishTarget",
    "RevisionPair",
    "RevisionUnavailable",
    "RunLease",
    "RunReport",
    "RunResult",
    "SubprocessError",
    "Timeout",
    "TriggerEvent",
    "event_from_github_env",
    "is_triggered",
    "load_config",
    "may_publish",
    "merge_tree",
    "run",
]
