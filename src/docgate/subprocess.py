"""Subprocess helpers for invoking external tools (git, the site generator)."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """
    Result from running a subprocess.

    Attributes:
        returncode: The exit code of the process.
        stdout: Captured stdout (empty string if streaming).
        stderr: Captured stderr (empty string if streaming).
        command: The command that was executed.
        timed_out: True if the process was killed because it hit its timeout.

    """

    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        """True if the command succeeded (exit code 0)."""
        return self.returncode == 0

    @property
    def failed(self) -> bool:
        """True if the command failed (non-zero exit code)."""
        return self.returncode != 0

    def tail(self, lines: int = 20) -> list[str]:
        """The last `lines` lines of captured output, stdout first."""
        combined = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return combined.splitlines()[-lines:]


class SubprocessError(Exception):
    """Raised when a subprocess fails and check=True."""

    def __init__(self, result: RunResult):
        self.result = result
        cmd_str = " ".join(result.command)
        super().__init__(f"Command '{cmd_str}' failed with exit code {result.returncode}")


class ToolRunner(Protocol):
    """Anything that can run an external tool and hand back a RunResult."""

    def __call__(
        self,
        *args: str | Path,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        capture: bool = False,
        check: bool = False,
        timeout: float | None = None,
    ) -> RunResult: ...


def run(
    *args: str | Path,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    capture: bool = False,
    check: bool = False,
    timeout: float | None = None,
) -> RunResult:
    """
    Run a subprocess command.

    By default, output is streamed to the console in real-time and also collected
    into the result. Use `capture=True` to capture output silently instead.

    Args:
        *args: Command and arguments to run (e.g., "mdbook", "build")
        cwd: Working directory for the command
        env: Additional environment variables (merged with current environment)
        capture: If True, capture stdout/stderr instead of streaming
        check: If True, raise SubprocessError on non-zero exit code
        timeout: Seconds before the process is killed. A killed process yields
            a result with `timed_out=True` rather than an exception.

    Returns:
        RunResult with exit code and captured output

    Raises:
        SubprocessError: If check=True and the command fails
        FileNotFoundError: If the command is not found

    Example:
        >>> result = run("git", "status", "--porcelain", capture=True)
        >>> if result.stdout:
        ...     print("Working directory has changes")

    """
    cmd = [str(arg) for arg in args]

    run_env = os.environ.copy()
    if env:
        run_env.update(env)

    cwd_str = str(cwd) if cwd else None
    logger.debug("Running %s (cwd=%s)", subprocess.list2cmdline(cmd), cwd_str)

    if capture:
        try:
            completed = subprocess.run(
                cmd,
                cwd=cwd_str,
                env=run_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            return _timed_out_result(cmd, e)
        result = RunResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            command=cmd,
        )
    else:
        # Streaming mode: echo each line while collecting it. stderr is merged
        # into stdout so ordering is preserved without select().
        proc = subprocess.Popen(
            cmd,
            cwd=cwd_str,
            env=run_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )

        lines: list[str] = []

        def pump() -> None:
            assert proc.stdout is not None
            for line in proc.stdout:
                line_stripped = line.rstrip("\n")
                lines.append(line_stripped)
                print(line_stripped, flush=True)

        # Read on a thread so the timeout still applies to a silent process
        reader = threading.Thread(target=pump, daemon=True)
        reader.start()
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            proc.kill()
            proc.wait()
            # Orphaned grandchildren may hold the pipe open
            reader.join(timeout=1)
            e.output = "\n".join(lines)
            return _timed_out_result(cmd, e)
        reader.join()

        result = RunResult(
            returncode=proc.returncode,
            stdout="\n".join(lines),
            command=cmd,
        )

    if check and result.failed:
        raise SubprocessError(result)

    return result


def _timed_out_result(cmd: list[str], exc: subprocess.TimeoutExpired) -> RunResult:
    def _text(value: str | bytes | None) -> str:
        if value is None:
            return ""
        if isinstance(value, bytes):
            return value.decode(sys.getdefaultencoding(), errors="replace")
        return value

    logger.warning("Command timed out after %ss: %s", exc.timeout, subprocess.list2cmdline(cmd))
    return RunResult(
        returncode=-9,
        stdout=_text(exc.output),
        stderr=_text(exc.stderr),
        command=cmd,
        timed_out=True,
    )
