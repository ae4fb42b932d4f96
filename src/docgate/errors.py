"""Error taxonomy for docgate pipeline runs.

Every error here is terminal for the run it occurs in. Nothing is retried
automatically: a human re-triggers the pipeline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .subprocess import RunResult


class PipelineError(Exception):
    """Base class for errors that end a pipeline run in the failed state."""

    def __init__(self, message: str, result: RunResult | None = None):
        self.result = result
        super().__init__(message)

    @property
    def output(self) -> str:
        """Captured output of the external tool that failed, if any."""
        if self.result is None:
            return ""
        return "\n".join(part for part in (self.result.stdout, self.result.stderr) if part)


class RevisionUnavailable(PipelineError):
    """A revision could not be resolved, or the diff provider failed."""


class BuildFailed(PipelineError):
    """The static-site generator reported failure."""

    @property
    def returncode(self) -> int | None:
        return self.result.returncode if self.result is not None else None


class PublishFailed(PipelineError):
    """The publish target was unreachable or rejected the push."""


class Timeout(PipelineError):
    """The run exceeded its wall-clock deadline."""


class LeaseUnavailable(PipelineError):
    """Another run holds the lease for the same pipeline and branch."""


class ConfigError(Exception):
    """Configuration could not be loaded or failed validation."""
