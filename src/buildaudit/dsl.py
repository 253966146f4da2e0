# src/buildaudit/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .model import Step, Workflow
from .step_workflows.cache import cache_step
from .step_workflows.checkout import checkout_step
from .step_workflows.rust import cargo_install_step, cargo_step, toolchain_step
from .triggers import Triggers


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str | Sequence[str],
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    continue_on_failure: bool = False,
    failure: str = "",
) -> Step:
    """Create a shell step. A list/tuple command is run without a shell."""
    run = cmd if isinstance(cmd, str) else tuple(cmd)
    if not run:
        raise ValueError(f"sh({name!r}) needs a command")
    return Step(
        name=name,
        run=run,
        cwd=cwd,
        # force values to str so they are valid process env
        env={k: str(v) for k, v in (env or {}).items()},
        continue_on_failure=continue_on_failure,
        failure=failure,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(key: str, values: Iterable[Any]) -> Dict[str, List[str]]:
    """
    Single-dimension matrix:

        pipeline("ci", ..., matrix=matrix("os", ["ubuntu-latest"]))
    """
    return {key: [str(v) for v in values]}


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *steps: Step,
    triggers: Optional[Triggers] = None,
    matrix: Optional[Dict[str, List[str]]] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Workflow:
    """
    Workflow definition helper. In a buildaudit_workflow.py:

        from buildaudit import pipeline, sh

        def workflow():
            return pipeline("ci", sh("Build", "make"), sh("Test", "make test"))
    """
    steps_final = list(steps)
    if not steps_final:
        raise ValueError(f"pipeline({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None or s.kind != "sh" else replace(s, cwd=cwd) for s in steps_final]

    return Workflow(
        name=name,
        steps=steps_final,
        triggers=triggers or Triggers(),
        matrix=matrix if matrix is not None else {"os": ["ubuntu-latest"]},
        env=dict(env or {}),
    )


def build_and_audit_steps(
    *,
    toolchain: str = "stable",
    audit_crate: str = "cargo-audit",
    repository: str | None = None,
    ref: str | None = None,
) -> List[Step]:
    """The fixed six-step build-and-audit contract, in execution order."""
    return [
        toolchain_step("Install Rust toolchain", toolchain=toolchain, profile="minimal", override=True),
        cache_step(
            "Cache Dependencies & Build Outputs",
            ["~/.cargo/registry", "~/.cargo/git", "target"],
            key="{runner_os}-{os}-cargo-{hash}",
            hash_files=["**/Cargo.lock"],
        ),
        cargo_install_step(audit_crate, f"Install {audit_crate}"),
        checkout_step("Checkout", repository=repository, ref=ref),
        cargo_step("build", "--release", "Cargo build"),
        cargo_step("audit", "", "Cargo audit"),
    ]


def build_and_audit(name: str = "Build and audit", **kwargs: Any) -> Workflow:
    """Default workflow: push to master and PR activity, on ubuntu-latest."""
    return pipeline(
        name,
        *build_and_audit_steps(**kwargs),
        triggers=Triggers(),
        matrix={"os": ["ubuntu-latest"]},
    )
