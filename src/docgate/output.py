"""Console output for pipeline runs.

Stages are shown as a small tree with timing, using rich locally. Under GitHub
Actions each stage becomes a `::group::` block and errors become `::error::`
annotations.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field

from rich.console import Console

SYMBOLS = {
    "entry": "▼",  # run start
    "branch": "├─▶",  # stage
    "pipe": "│",  # continuation
    "success": "✓",
    "failure": "✗",
    "skip": "∅",  # stage skipped
}


@dataclass
class OutputManager:
    """Formats run and stage headers, statuses and errors."""

    console: Console = field(default_factory=Console)
    _is_gha: bool = field(default_factory=lambda: os.environ.get("GITHUB_ACTIONS") == "true")

    def _print(self, message: str, style: str | None = None) -> None:
        if style:
            self.console.print(message, style=style, markup=False, highlight=False)
        else:
            print(message, flush=True)

    def run_header(self, name: str, detail: str = "") -> None:
        if self._is_gha:
            self._print(f"{name} {detail}".strip())
            return
        self._print(f"\n{SYMBOLS['entry']} {name} {detail}".rstrip(), style="bold blue")
        self._print(SYMBOLS["pipe"])

    def run_status(self, name: str, state: str, success: bool, elapsed: float) -> None:
        symbol = SYMBOLS["success"] if success else SYMBOLS["failure"]
        message = f"{symbol} {name} ended {state} in {elapsed:.2f}s"
        if self._is_gha:
            self._print(message)
            return
        self._print(f"\n{message}", style="bold green" if success else "bold red")

    def stage_header(self, name: str) -> None:
        if self._is_gha:
            print(f"::group::{name}", flush=True)
            return
        self._print(f"{SYMBOLS['branch']} {name}", style="bold cyan")

    def stage_status(self, name: str, success: bool, elapsed: float) -> None:
        symbol = SYMBOLS["success"] if success else SYMBOLS["failure"]
        if self._is_gha:
            print(f"{symbol} {name} {'succeeded' if success else 'failed'} in {elapsed:.2f}s", flush=True)
            print("::endgroup::", flush=True)
            return
        self._print(f"{SYMBOLS['pipe']}    {symbol} {elapsed:.2f}s", style="green" if success else "red")

    def skipped(self, name: str, reason: str) -> None:
        if self._is_gha:
            self._print(f"Skipping {name}: {reason}")
            return
        self._print(f"{SYMBOLS['branch']} {name} {SYMBOLS['skip']} {reason}", style="dim")

    def line(self, message: str, style: str | None = None) -> None:
        self._print(f"{SYMBOLS['pipe']}    {message}" if not self._is_gha else message, style=style)

    def error(self, message: str) -> None:
        if self._is_gha:
            # Annotations are single-line; newlines must be URL-encoded
            print(f"::error::{message.replace('%', '%25').replace(chr(10), '%0A')}", flush=True)
        else:
            self._print(f"Error: {message}", style="bold red")

    def error_detail(self, lines: list[str], max_lines: int = 20) -> None:
        for line in lines[-max_lines:]:
            self._print(f"  {line}", style=None if self._is_gha else "red")

    @contextmanager
    def stage_scope(self, name: str) -> Generator[None, None, None]:
        """Wrap a stage with a header and a timed status line."""
        self.stage_header(name)
        start = time.perf_counter()
        success = True
        try:
            yield
        except Exception:
            success = False
            raise
        finally:
            self.stage_status(name, success, time.perf_counter() - start)


_output_manager: OutputManager | None = None


def get_output_manager() -> OutputManager:
    """Get the global output manager instance."""
    global _output_manager
    if _output_manager is None:
        _output_manager = OutputManager()
    return _output_manager


def reset_output_manager() -> None:
    """Reset the global output manager (for testing)."""
    global _output_manager
    _output_manager = None
