"""The change-gated build-and-publish state machine.

    IDLE -> DETECTING -> IDLE                      (no relevant change)
                      -> BUILDING -> FAILED        (build failed)
                                  -> IDLE          (built, not publishable)
                                  -> PUBLISHING -> FAILED
                                                -> IDLE

Stages run strictly in sequence inside a single-run lease. Every PipelineError
ends the run in FAILED and is recorded on the report instead of being raised.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from . import subprocess as sp
from .builder import BuildArtifact, Builder
from .config import PipelineConfig
from .detector import ChangeDetector, ChangeSet, GitDiffProvider
from .errors import PipelineError, PublishFailed, Timeout
from .gha import set_output
from .lease import RunLease
from .output import OutputManager, get_output_manager
from .publisher import DirectoryPublisher, GitBranchPublisher, Publisher, PublishOutcome, PublishTarget
from .trigger import TriggerEvent, is_triggered, lease_branch, may_publish

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    BUILDING = "building"
    PUBLISHING = "publishing"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.IDLE, PipelineState.FAILED)


class BuildStage(Protocol):
    def build(self, *, timeout: float | None = None) -> BuildArtifact: ...


@dataclass
class RunReport:
    """Everything that happened during one pipeline run."""

    event: TriggerEvent
    states: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    triggered: bool = False
    change_set: ChangeSet | None = None
    relevant_paths: list[str] = field(default_factory=list)
    artifact: BuildArtifact | None = None
    publish: PublishOutcome | None = None
    error: PipelineError | None = None
    dry_run: bool = False

    @property
    def final_state(self) -> PipelineState:
        return self.states[-1]

    @property
    def ok(self) -> bool:
        return self.final_state is PipelineState.IDLE

    @property
    def changed(self) -> bool:
        return bool(self.relevant_paths)

    @property
    def built(self) -> bool:
        return self.artifact is not None

    @property
    def published(self) -> bool:
        return self.publish is not None

    def enter(self, state: PipelineState) -> None:
        logger.debug("State %s -> %s", self.final_state.name, state.name)
        self.states.append(state)

    def fail(self, error: PipelineError) -> None:
        self.error = error
        self.enter(PipelineState.FAILED)


def make_publisher(config: PipelineConfig, environ: Mapping[str, str], runner: sp.ToolRunner = sp.run) -> Publisher:
    """Create the publisher configured in `[publish]`."""
    publish = config.publish
    if publish.kind == "directory":
        return DirectoryPublisher(root=config.repo)
    return GitBranchPublisher(
        config.repo,
        remote=publish.remote,
        token=environ.get(publish.token_env) or None,
        user_name=publish.user_name,
        user_email=publish.user_email,
        nojekyll=publish.nojekyll,
        runner=runner,
    )


class Pipeline:
    """Runs detection, build and publish for one trigger event."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        detector: ChangeDetector,
        builder: BuildStage,
        publisher: Publisher,
        output: OutputManager | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.detector = detector
        self.builder = builder
        self.publisher = publisher
        self.output = output or get_output_manager()
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        *,
        environ: Mapping[str, str],
        runner: sp.ToolRunner = sp.run,
    ) -> Pipeline:
        provider = GitDiffProvider(config.repo, runner=runner, timeout=config.timeout_seconds)
        return cls(
            config,
            detector=ChangeDetector(provider, config.watched_prefix),
            builder=Builder(config.build_command, config.source_path, config.output_path, runner=runner),
            publisher=make_publisher(config, environ, runner),
        )

    @property
    def target(self) -> PublishTarget:
        publish = self.config.publish
        return PublishTarget(identifier=publish.target, keep_files=publish.keep_files)

    def run(self, event: TriggerEvent, *, dry_run: bool = False) -> RunReport:
        """
        Execute one run for `event`.

        Returns:
            A RunReport ending in IDLE or FAILED. Pipeline errors are recorded on
            the report, not raised.

        """
        report = RunReport(event=event, dry_run=dry_run)
        primary = self.config.primary_branch

        if not is_triggered(event, primary):
            logger.info("Event %s on %s does not trigger '%s'", event.kind.value, event.ref, self.config.name)
            return report
        report.triggered = True

        self.output.run_header(self.config.name, f"({event.kind.value} {event.ref}, {event.revisions})")
        start = self.clock()
        deadline = start + self.config.timeout_seconds

        lease = RunLease(
            (self.config.name, lease_branch(event)),
            self.config.lease_path,
            wait_seconds=self.config.lease_wait_seconds,
        )
        try:
            with lease:
                self._run_stages(report, deadline, publishable=may_publish(event, primary))
        except PipelineError as e:
            if e.result is not None and e.result.timed_out and not isinstance(e, Timeout):
                e = Timeout(f"{e} (timed out)", e.result)
            report.fail(e)
            self.output.error(str(e))
            if e.result is not None:
                self.output.error_detail(e.result.tail())

        set_output("changed", str(report.changed).lower())
        set_output("published", str(report.published).lower())
        self.output.run_status(self.config.name, report.final_state.name, report.ok, self.clock() - start)
        return report

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise Timeout(f"Run exceeded its {self.config.timeout_minutes:g} minute limit")
        return remaining

    def _run_stages(self, report: RunReport, deadline: float, *, publishable: bool) -> None:
        report.enter(PipelineState.DETECTING)
        with self.output.stage_scope("detect"):
            report.change_set = self.detector.detect(report.event.revisions, timeout=self._remaining(deadline))
            report.relevant_paths = report.change_set.under(self.detector.prefix)
            self.output.line(
                f"{len(report.relevant_paths)} of {len(report.change_set)} changed path(s) under "
                f"'{self.detector.prefix}'"
            )
        self._remaining(deadline)

        if not report.relevant_paths:
            self.output.skipped("build", "no relevant changes")
            report.enter(PipelineState.IDLE)
            return

        if report.dry_run:
            self.output.skipped("build", "dry run")
            self.output.skipped("publish", "dry run" if publishable else "not a push to the primary branch")
            report.enter(PipelineState.IDLE)
            return

        report.enter(PipelineState.BUILDING)
        with self.output.stage_scope("build"):
            report.artifact = self.builder.build(timeout=self._remaining(deadline))

        if not publishable:
            self.output.skipped("publish", "not a push to the primary branch")
            report.enter(PipelineState.IDLE)
            return

        report.enter(PipelineState.PUBLISHING)
        with self.output.stage_scope("publish"):
            try:
                report.publish = self.publisher.publish(
                    report.artifact.path,
                    self.target,
                    message=f"deploy: {report.event.revisions.head}",
                    timeout=self._remaining(deadline),
                )
            except OSError as e:
                raise PublishFailed(f"Publishing failed: {e}") from e
        report.enter(PipelineState.IDLE)
