"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import JobInstance, JobResult, PipelineResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, only print failures and the final results
        """
        self.debug = debug
        self.quiet = quiet
        # jobs print from worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        source: str,
        job_count: int,
        instance_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Source: {source}",
            f"Jobs: {job_count} ({instance_count} after matrix expansion)",
            "",
        )

    def print_plan(self, planned: list[tuple["JobInstance", bool]]) -> None:
        """Print which instances will run and which are skipped by condition."""
        lines = ["PLAN"]
        for inst, runs in planned:
            if runs:
                lines.append(f"  ✓ {inst.id}")
            else:
                lines.append(f"  ⏭ {inst.id} (skipped: condition {inst.condition})")
        self._emit(*lines)

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        if not self.quiet:
            self._emit(f"JOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        if not self.quiet:
            self._emit(f"[{job}] ▶ {name}")

    def print_failure(
        self,
        job: str,
        step: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        tolerated: bool = False,
        timed_out: bool = False,
    ) -> None:
        """
        Print step failure message.

        Args:
            job: Job instance id
            step: Step name
            reason: Captured output / error message
            exit_code: Optional exit code
            hint: Optional hint for user
            tolerated: True when the step has continue_on_error
            timed_out: True when the step was killed by its timeout
        """
        prefix = "STEP FAILED (continuing)" if tolerated else "STEP FAILED"
        lines = [f"[{job}] {prefix}: {step}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}" + (" (timed out)" if timed_out else ""))
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Output:\n{reason}")
        else:
            # last line of output is usually the most useful one
            tail = [ln for ln in (reason or "").splitlines() if ln.strip()]
            if tail:
                lines.append(f"Error: {tail[-1]}")
        self._emit(*lines)

    def print_job_finished(self, result: "JobResult") -> None:
        """Print job completion message."""
        status = result.status.value.upper()
        extra = f" ({result.reason})" if result.reason else ""
        if result.status.value == "failed" or not self.quiet:
            self._emit(f"JOB FINISHED: {result.id}: {status}{extra} in {result.duration:.1f}s")

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        if not self.quiet:
            self._emit(f"JOB SKIPPED: {name} ({reason})")

    def print_results(self, result: "PipelineResult") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, f"RESULTS: {result.name}", "=" * 40]
        for r in result.job_results:
            status_display = r.status.value.upper()
            if r.reason and r.reason != "step_failed":
                status_display += f" ({r.reason})"
            lines.append(f"  {r.id}: {status_display}")
        lines.append("-" * 40)
        lines.append(
            f"  passed={len(result.passed)} failed={len(result.failed)} "
            f"skipped={len(result.skipped)}"
            + (" cancelled" if result.cancelled else "")
        )
        lines.append(f"  OVERALL: {result.overall.value.upper()} ({result.duration:.1f}s)")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
