"""Invoke the external static-site generator."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from . import subprocess as sp
from .errors import BuildFailed, Timeout

logger = logging.getLogger(__name__)

# Conventional shell exit status for "command not found"
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class BuildArtifact:
    """A finished build: the output directory plus the generator's result."""

    path: Path
    result: sp.RunResult


class Builder:
    """
    Runs a generator command (e.g. `mdbook build`) inside the source directory.

    The generator owns the output directory until the artifact is handed to a
    publisher.
    """

    def __init__(
        self,
        command: list[str],
        source_dir: Path,
        output_dir: Path,
        *,
        runner: sp.ToolRunner = sp.run,
    ):
        self.command = list(command)
        self.source_dir = source_dir
        self.output_dir = output_dir
        self.runner = runner

    def ensure_tool(self) -> None:
        """Fail early if the generator executable is not on PATH."""
        if shutil.which(self.command[0]) is None:
            raise BuildFailed(
                f"Generator '{self.command[0]}' not found on PATH",
                sp.RunResult(returncode=EXIT_NOT_FOUND, command=self.command),
            )

    def build(self, *, timeout: float | None = None, capture: bool = True) -> BuildArtifact:
        """
        Run the generator and return the artifact.

        Raises:
            BuildFailed: If the generator is missing, exits non-zero, or leaves no output directory.
            Timeout: If the generator is killed for exceeding `timeout`.

        """
        if not self.source_dir.is_dir():
            raise BuildFailed(f"Source directory does not exist: {self.source_dir}")

        logger.info("Building: %s (in %s)", subprocess.list2cmdline(self.command), self.source_dir)
        try:
            result = self.runner(*self.command, cwd=self.source_dir, capture=capture, timeout=timeout)
        except FileNotFoundError:
            raise BuildFailed(
                f"Generator '{self.command[0]}' not found",
                sp.RunResult(returncode=EXIT_NOT_FOUND, command=self.command),
            ) from None

        if result.timed_out:
            limit = f" after {timeout:.0f}s" if timeout is not None else ""
            raise Timeout(f"Build timed out{limit}", result)
        if result.failed:
            raise BuildFailed(f"Build failed with exit code {result.returncode}", result)
        if not self.output_dir.is_dir():
            raise BuildFailed(f"Build succeeded but produced no output at {self.output_dir}", result)

        logger.info("Build output in %s", self.output_dir)
        return BuildArtifact(path=self.output_dir, result=result)
