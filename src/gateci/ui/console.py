"""Console output formatting utilities for gateci."""

from __future__ import annotations

import sys
import threading
from typing import Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-job progress lines (gate summary and
                   errors are still printed)
        """
        self.debug = debug
        self.quiet = quiet
        # worker threads print step lines concurrently
        self._lock = threading.Lock()

    def _emit(self, *lines: str, file=None) -> None:
        with self._lock:
            for line in lines:
                print(line, file=file or sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event_kind: str,
        branch: str,
        ref: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Trigger: {event_kind} {ref} (branch {branch})",
            f"Jobs: {job_count}",
            "",
        )

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        if not self.quiet:
            self._emit(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        if not self.quiet:
            self._emit(f"  {name} (skipped: {reason})")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        if not self.quiet:
            self._emit(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        if not self.quiet:
            self._emit(f"[{job}] STEP: {name}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        if not self.quiet:
            self._emit(f"\nJOB SKIPPED: {name}", f"STATUS: skipped ({reason})")

    def print_job_result(self, result) -> None:
        """Print a finished instance: status, exit code, duration, and output tail on failure."""
        if self.quiet:
            return
        lines = [f"\nJOB FINISHED: {result.instance_id}"]
        status = result.status
        if result.reason and result.status != "succeeded":
            status = f"{status} ({result.reason})"
        if result.allowed:
            status += " [continue-on-error]"
        lines.append(f"STATUS: {status}")
        if result.exit_code is not None and result.exit_code != 0:
            lines.append(f"Exit code: {result.exit_code}")
        lines.append(f"Duration: {result.duration:.1f}s")
        if result.status == "failed" and result.output_tail:
            tail = result.output_tail if self.debug else "\n".join(result.output_tail.splitlines()[-20:])
            lines.append("Output (tail):")
            lines.extend(f"  {line}" for line in tail.splitlines())
        self._emit(*lines)

    def print_gate(self, report) -> None:
        """Print final gate summary."""
        lines = ["\n" + "=" * 40, "GATE", "=" * 40]
        for d in report.definitions:
            status_display = d.status.upper()
            if d.reason and d.status != "succeeded":
                status_display += f" ({d.reason})"
            if d.allowed_failures:
                status_display += f" [{d.allowed_failures} allowed failure(s)]"
            kind = "critical" if d.critical else "advisory"
            lines.append(f"  {d.id}: {status_display} [{kind}]")
        if report.cancel_timeouts:
            lines.append(f"  did not stop when cancelled: {', '.join(report.cancel_timeouts)}")
        lines.append(f"OVERALL: {report.overall.upper()}")
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
        self._emit(*lines, file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", file=sys.stderr)


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
