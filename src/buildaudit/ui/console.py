"""Console output formatting utilities for buildaudit."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from ..model import PipelineResult, Workflow

# lines of captured output shown for a failed step outside debug mode
OUTPUT_TAIL_LINES = 20


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
                   and the full captured output of failed steps
            quiet: If True, only failures and the final results are printed
        """
        self.debug = debug
        self.quiet = quiet

    def _out(self, message: str = "") -> None:
        if not self.quiet:
            print(message)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        step_count: int,
        ref: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"Repository: {repository}")
        if ref:
            self._out(f"Ref: {ref}")
        self._out(f"Workflow: {workflow}")
        self._out(f"Steps: {step_count}")
        self._out()

    def print_matrix_entry(self, label: str) -> None:
        self._out(f"\nMATRIX: {label}")

    def print_step(self, name: str) -> None:
        """Print step start message."""
        self._out(f"STEP: {name}")

    def print_success(self, name: str, duration: Optional[float] = None) -> None:
        """Print success message."""
        if duration is not None:
            self._out(f"STATUS: success ({duration:.1f}s)")
        else:
            self._out("STATUS: success")

    def print_failure(
        self,
        name: str,
        output: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        """
        Print failure message for a step.

        Args:
            name: Step name
            output: Captured output of the step
            exit_code: Optional exit code
            hint: Optional hint for user
            category: Optional failure category (e.g. "build failed")
        """
        print(f"STEP FAILED: {name}")
        if category:
            print(f"Category: {category}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if hint:
            print(f"Hint: {hint}")

        lines = (output or "").rstrip().splitlines()
        if not lines:
            return
        if not self.debug and len(lines) > OUTPUT_TAIL_LINES:
            print(f"Output (last {OUTPUT_TAIL_LINES} of {len(lines)} lines):")
            lines = lines[-OUTPUT_TAIL_LINES:]
        else:
            print("Output:")
        for line in lines:
            print(f"  | {line}")

    def print_step_skipped(self, name: str, reason: str) -> None:
        """Print step skipped message."""
        self._out(f"STEP: {name}")
        self._out(f"STATUS: skipped ({reason})")

    def print_cache_hit(self, step: str, reason: str) -> None:
        """Print cache hit message."""
        self._out(f"CACHE: hit ({reason})")

    def print_cache_miss(self, step: str, reason: str = "cache miss") -> None:
        """Print cache miss message."""
        self._out(f"CACHE: miss ({reason})")

    def print_cache_error(self, step: str, reason: str) -> None:
        """Print a non-fatal cache problem."""
        print(f"CACHE: {reason} (continuing without cache)")

    def print_cache_saved(self, step: str, key: str) -> None:
        """Print cache save message."""
        short_key = key[:48] + "..." if len(key) > 48 else key
        self._out(f"CACHE: saved ({short_key})")

    def print_plan(self, workflow: "Workflow") -> None:
        """Print the ordered steps of a workflow without running them."""
        print(f"\nPLAN: {workflow.name}")
        for line in workflow.triggers.describe():
            print(f"  on {line}")
        for key, values in workflow.matrix.items():
            print(f"  matrix {key}: {', '.join(values)}")
        for idx, step in enumerate(workflow.steps, start=1):
            flags: List[str] = []
            if step.kind == "cache":
                flags.append("advisory")
            elif step.continue_on_failure:
                flags.append("continue-on-failure")
            if step.failure:
                flags.append(f"fails as: {step.failure}")
            suffix = f" [{'; '.join(flags)}]" if flags else ""
            print(f"  {idx}. {step.name}{suffix}")
            if step.kind == "sh":
                print(f"       $ {step.display_cmd()}")

    def print_results(self, results: List["PipelineResult"]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for pipeline in results:
            if pipeline.label:
                print(f"[{pipeline.label}] {pipeline.status.upper()}")
            for r in pipeline.results:
                timing = f" ({r.duration:.1f}s)" if r.exit_status is not None else ""
                print(f"  {r.step_name}: {r.status.upper()}{timing}")
            if pipeline.error is not None:
                print(f"  -> {pipeline.error}")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


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
