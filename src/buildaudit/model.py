# model.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .triggers import Triggers

SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"

Command = Union[str, Tuple[str, ...]]


@dataclass(frozen=True)
class Step:
    """A single named command inside a pipeline."""
    name: str
    run: Command
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    continue_on_failure: bool = False

    # "sh" runs `run` as an external command, "cache" is the in-process cache action
    kind: str = "sh"
    data: Dict[str, Any] = field(default_factory=dict)

    # error category used when this step fails (see runner.FAILURE_KINDS)
    failure: str = ""

    @property
    def advisory(self) -> bool:
        return self.kind == "cache" or self.continue_on_failure

    def display_cmd(self) -> str:
        if isinstance(self.run, str):
            return self.run
        return " ".join(self.run)


@dataclass
class RunContext:
    """
    Everything a run needs besides the steps themselves.

    env is merged over the process environment (when inherit_env is set);
    each step's own env is merged last and wins on key collision.
    """
    root: Path = field(default_factory=lambda: Path(".").resolve())
    env: Dict[str, str] = field(default_factory=dict)
    inherit_env: bool = True
    runner_os: str = "Linux"
    matrix: Dict[str, str] = field(default_factory=dict)
    cache_root: Path | None = None

    def step_env(self, step: Step) -> Dict[str, str]:
        env: Dict[str, str] = os.environ.copy() if self.inherit_env else {}
        env.update(self.env)
        env.update(step.env)
        return env

    def step_cwd(self, step: Step) -> Path:
        return (Path(self.root) / (step.cwd or ".")).resolve()


@dataclass(frozen=True)
class StepResult:
    step_name: str
    status: str
    exit_status: int | None = None
    duration: float = 0.0
    captured_output: str = ""

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


@dataclass
class PipelineResult:
    """Ordered step results plus the overall status of one run."""
    results: List[StepResult] = field(default_factory=list)
    status: str = SUCCESS
    error: Optional[Exception] = None
    label: str = ""

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    @property
    def failed_step(self) -> str | None:
        """Name of the required step that halted the run, if any."""
        if self.error is not None:
            return getattr(self.error, "step", None)
        return None

    @property
    def skipped(self) -> List[str]:
        return [r.step_name for r in self.results if r.status == SKIPPED]

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "status": self.status,
            "failed_step": self.failed_step,
            "error_type": type(self.error).__name__ if self.error is not None else None,
            "steps": [
                {
                    "name": r.step_name,
                    "status": r.status,
                    "exit_status": r.exit_status,
                    "duration": round(r.duration, 3),
                    "output": r.captured_output,
                }
                for r in self.results
            ],
        }


@dataclass
class Workflow:
    """
    A named pipeline with its trigger surface and build matrix.

    Only one matrix dimension is expanded; every value gets its own run.
    """
    name: str
    steps: List[Step]
    triggers: Triggers = field(default_factory=Triggers)
    matrix: Dict[str, List[str]] = field(default_factory=lambda: {"os": ["ubuntu-latest"]})
    env: Dict[str, str] = field(default_factory=dict)

    def matrix_entries(self) -> List[Dict[str, str]]:
        if not self.matrix:
            return [{}]
        if len(self.matrix) > 1:
            raise ValueError(f"Workflow '{self.name}' has more than one matrix dimension: {sorted(self.matrix)}")
        (key, values), = self.matrix.items()
        return [{key: str(v)} for v in values] or [{}]
