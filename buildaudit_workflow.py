# buildaudit_workflow.py
# Build-and-audit pipeline for a Rust crate: toolchain, cache, cargo-audit,
# checkout, release build, dependency audit.
from __future__ import annotations

from buildaudit.dsl import pipeline, matrix
from buildaudit.step_workflows.cache import cache_step
from buildaudit.step_workflows.checkout import checkout_step
from buildaudit.step_workflows.rust import cargo_install_step, cargo_step, toolchain_step
from buildaudit.triggers import Triggers


def workflow():
    return pipeline(
        "Build and audit",
        toolchain_step("Install Rust toolchain", toolchain="stable", profile="minimal", override=True),
        cache_step(
            "Cache Dependencies & Build Outputs",
            ["~/.cargo/registry", "~/.cargo/git", "target"],
            key="{runner_os}-{os}-cargo-{hash}",
            hash_files=["**/Cargo.lock"],
        ),
        cargo_install_step("cargo-audit"),
        checkout_step(),
        cargo_step("build", "--release", "Cargo build"),
        cargo_step("audit", name="Cargo audit"),
        triggers=Triggers(
            push_branches=["master"],
            pull_request_types=["opened", "synchronize", "reopened", "ready_for_review"],
        ),
        matrix=matrix("os", ["ubuntu-latest"]),
    )
