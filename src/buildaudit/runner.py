# runner.py
from __future__ import annotations

import runpy
import subprocess
import tarfile
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Type

from .cache import CacheHit, CacheStore, DEFAULT_CACHE_DIR
from .model import FAILED, SKIPPED, SUCCESS, PipelineResult, RunContext, Step, StepResult, Workflow
from .step_workflows import cache as cache_steps
from .ui.console import get_console

# exit status recorded for a step whose process could not be started
LAUNCH_FAILURE_EXIT = 127

TOOL_HINTS = {
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "cargo": "Install the Rust toolchain (rustup) or fix PATH.",
    "cargo-audit": "Install cargo-audit (cargo install cargo-audit).",
    "git": "Install Git or fix PATH.",
}


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

@dataclass(eq=False)
class StepFailure(Exception):
    """A required step exited non-zero. Subclasses name the failure category."""
    step: str
    cmd: str
    exit_code: int | None
    output: str = ""

    category = "step failed"

    def __str__(self) -> str:
        return f"{self.category}: step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class ToolchainInstallError(StepFailure):
    category = "toolchain install failed"


class ToolInstallError(StepFailure):
    category = "tool install failed"


class CheckoutError(StepFailure):
    category = "checkout failed"


class BuildError(StepFailure):
    category = "build failed"


class AuditFindingError(StepFailure):
    category = "audit found known vulnerabilities"


FAILURE_KINDS: Dict[str, Type[StepFailure]] = {
    "toolchain": ToolchainInstallError,
    "tool_install": ToolInstallError,
    "checkout": CheckoutError,
    "build": BuildError,
    "audit": AuditFindingError,
}


@dataclass(eq=False)
class WorkflowError(Exception):
    """
    Structured error for workflow files that cannot be loaded, with enough
    context for clean CLI output without a traceback.
    """
    source: str
    message: str
    details: dict

    def __str__(self) -> str:
        lines = [f"{self.source}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


def failure_for(step: Step, result: StepResult) -> StepFailure:
    cls = FAILURE_KINDS.get(step.failure, StepFailure)
    return cls(
        step=step.name,
        cmd=step.display_cmd(),
        exit_code=result.exit_status,
        output=result.captured_output[-4000:],
    )


def tool_hint(step: Step) -> str | None:
    cmd = step.display_cmd().split()
    if not cmd:
        return None
    if cmd[0] == "cargo" and len(cmd) > 1 and cmd[1] == "audit":
        return TOOL_HINTS["cargo-audit"]
    return TOOL_HINTS.get(cmd[0])


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_command(step: Step, context: RunContext) -> StepResult:
    cwd = context.step_cwd(step)
    start = time.monotonic()

    if not cwd.is_dir():
        return StepResult(
            step_name=step.name,
            status=FAILED,
            exit_status=LAUNCH_FAILURE_EXIT,
            duration=time.monotonic() - start,
            captured_output=f"working directory not found: {cwd}",
        )

    try:
        proc = subprocess.run(
            step.run,
            shell=isinstance(step.run, str),
            cwd=str(cwd),
            env=context.step_env(step),
            text=True,
            errors="replace",
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except OSError as e:
        # e.g. argv[0] not found on PATH
        return StepResult(
            step_name=step.name,
            status=FAILED,
            exit_status=LAUNCH_FAILURE_EXIT,
            duration=time.monotonic() - start,
            captured_output=str(e),
        )

    return StepResult(
        step_name=step.name,
        status=SUCCESS if proc.returncode == 0 else FAILED,
        exit_status=proc.returncode,
        duration=time.monotonic() - start,
        captured_output=proc.stdout or "",
    )


def _save_caches(
    pending: List[Tuple[Step, CacheHit]],
    context: RunContext,
    cache: CacheStore,
) -> None:
    console = get_console()
    for step, hit in pending:
        if hit.hit or not hit.key:
            continue
        try:
            saved = cache_steps.save_step(step, hit, context, cache)
        except (OSError, ValueError, tarfile.TarError) as e:
            # cache is advisory: a failed save never changes the run status
            console.print_cache_error(step.name, f"save failed: {e}")
            continue
        if saved:
            console.print_cache_saved(step.name, hit.key)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    steps: Sequence[Step],
    context: Optional[RunContext] = None,
    *,
    cache: Optional[CacheStore] = None,
) -> PipelineResult:
    """
    Run steps strictly in order and return the ordered results.

    A step fails iff its process exits non-zero. The first failing step
    without continue_on_failure halts the run: the pipeline is marked
    failed and every later step is recorded as skipped, never executed.
    Cache steps never fail the run. Caches that missed are saved once
    all steps are done, and only if the run succeeded.
    """
    context = context or RunContext()
    console = get_console()
    steps = list(steps)

    for s in steps:
        if s.kind not in ("sh", "cache"):
            raise ValueError(f"step '{s.name}' has unknown kind: {s.kind!r}")

    if cache is None and any(s.kind == "cache" for s in steps):
        cache = CacheStore(context.cache_root or (Path(context.root) / DEFAULT_CACHE_DIR))

    pipeline = PipelineResult()
    pending_saves: List[Tuple[Step, CacheHit]] = []

    for idx, step in enumerate(steps):
        console.print_step(step.name)

        if step.kind == "cache":
            result, hit = cache_steps.restore_step(step, context, cache)
            if hit.hit:
                console.print_cache_hit(step.name, hit.reason)
            elif result.ok:
                console.print_cache_miss(step.name, hit.reason)
            else:
                console.print_cache_error(step.name, result.captured_output)
            pending_saves.append((step, hit))
            pipeline.results.append(result)
            continue

        result = _run_command(step, context)
        pipeline.results.append(result)

        if result.ok:
            console.print_success(step.name, result.duration)
            continue

        if step.continue_on_failure:
            console.print_failure(
                step.name,
                result.captured_output,
                exit_code=result.exit_status,
                hint="continue_on_failure is set; carrying on",
            )
            continue

        error = failure_for(step, result)
        console.print_failure(
            step.name,
            result.captured_output,
            exit_code=result.exit_status,
            hint=tool_hint(step) if result.exit_status == LAUNCH_FAILURE_EXIT else None,
            category=error.category,
        )
        pipeline.status = FAILED
        pipeline.error = error

        for rest in steps[idx + 1:]:
            pipeline.results.append(StepResult(step_name=rest.name, status=SKIPPED))
            console.print_step_skipped(rest.name, f"'{step.name}' failed")
        break

    if pipeline.ok and pending_saves:
        _save_caches(pending_saves, context, cache)

    return pipeline


def run_workflow(
    workflow: Workflow,
    context: Optional[RunContext] = None,
    *,
    cache: Optional[CacheStore] = None,
) -> List[PipelineResult]:
    """Run the workflow once per matrix entry, one entry after another."""
    context = context or RunContext()
    console = get_console()
    results: List[PipelineResult] = []

    for entry in workflow.matrix_entries():
        label = ", ".join(f"{k}={v}" for k, v in entry.items()) or workflow.name
        console.print_matrix_entry(label)

        ctx = replace(
            context,
            env={**workflow.env, **context.env},
            matrix={**context.matrix, **entry},
        )
        result = run_pipeline(workflow.steps, ctx, cache=cache)
        result.label = label
        results.append(result)

    return results


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a file.

    A .py file must define either:
      - workflow() -> Workflow | List[Step]
      - WORKFLOW = Workflow(...)  or  STEPS = [Step, ...]

    A .yml/.yaml file is read as a GitHub Actions workflow.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in (".yml", ".yaml"):
        from .actions import load_actions_workflow

        return load_actions_workflow(wf_path)

    if wf_path.suffix != ".py":
        raise WorkflowError(
            source=wf_path.name,
            message="workflow must be a .py, .yml or .yaml file",
            details={"suffix": wf_path.suffix or "<none>"},
        )

    module_name = f"buildaudit_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        found = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        found = globals_dict["WORKFLOW"]
    elif "STEPS" in globals_dict:
        found = globals_dict["STEPS"]

    if isinstance(found, Workflow):
        return found
    if isinstance(found, list) and found and all(isinstance(s, Step) for s in found):
        return Workflow(name=wf_path.stem, steps=found)

    raise WorkflowError(
        source=wf_path.name,
        message="workflow file must define workflow(), WORKFLOW or STEPS",
        details={"expected": "Workflow or non-empty List[Step]", "got": type(found).__name__},
    )
