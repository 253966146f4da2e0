from __future__ import annotations

import pytest

from buildaudit.dsl import build_and_audit, build_and_audit_steps, matrix, pipeline, sh
from buildaudit.model import Workflow
from buildaudit.step_workflows.cache import cache_step
from buildaudit.step_workflows.checkout import checkout_step
from buildaudit.step_workflows.rust import cargo_install_step, cargo_step, toolchain_step


def test_build_and_audit_order():
    steps = build_and_audit_steps()
    assert [s.failure for s in steps] == ["toolchain", "", "tool_install", "checkout", "build", "audit"]
    assert steps[1].kind == "cache"
    assert [s.name for s in steps if s.advisory] == ["Cache Dependencies & Build Outputs"]


def test_build_and_audit_workflow_defaults():
    wf = build_and_audit()
    assert isinstance(wf, Workflow)
    assert wf.matrix == {"os": ["ubuntu-latest"]}
    assert wf.triggers.push_branches == ["master"]
    assert wf.triggers.pull_request_types == ["opened", "synchronize", "reopened", "ready_for_review"]


def test_sh_stringifies_env_and_freezes_argv():
    step = sh("x", ["echo", "hi"], env={"N": 1})
    assert step.run == ("echo", "hi")
    assert step.env == {"N": "1"}
    assert step.display_cmd() == "echo hi"


def test_sh_requires_a_command():
    with pytest.raises(ValueError):
        sh("x", [])


def test_steps_are_immutable():
    step = sh("x", "true")
    with pytest.raises(AttributeError):
        step.name = "y"


def test_pipeline_default_cwd_only_fills_gaps():
    wf = pipeline("p", sh("a", "true"), sh("b", "true", cwd="other"), cwd="crate")
    assert [s.cwd for s in wf.steps] == ["crate", "other"]


def test_pipeline_needs_steps():
    with pytest.raises(ValueError):
        pipeline("empty")


def test_matrix_helper():
    assert matrix("os", ["ubuntu-latest", "macos-latest"]) == {"os": ["ubuntu-latest", "macos-latest"]}


def test_more_than_one_matrix_dimension_is_rejected():
    wf = pipeline("p", sh("a", "true"), matrix={"os": ["a"], "rust": ["stable"]})
    with pytest.raises(ValueError, match="more than one matrix dimension"):
        wf.matrix_entries()


class TestStepHelpers:
    def test_toolchain_without_override(self):
        step = toolchain_step(toolchain="1.75.0", override=False, components=["clippy"])
        assert step.run == "rustup toolchain install 1.75.0 --profile minimal --component clippy"

    def test_cargo_install_options(self):
        step = cargo_install_step("cargo-audit", version="0.20.0", locked=True)
        assert step.name == "Install cargo-audit"
        assert step.run.endswith("cargo install cargo-audit --version 0.20.0 --locked")

    def test_cargo_failure_tags(self):
        assert cargo_step("build", "--release").failure == "build"
        assert cargo_step("audit").failure == "audit"
        assert cargo_step("test").failure == ""

    def test_checkout_with_repository_and_ref(self):
        step = checkout_step(repository="https://example.com/r.git", ref="v1.0")
        assert "git clone --quiet https://example.com/r.git ." in step.run
        assert step.run.endswith("git checkout --quiet v1.0")

    def test_cache_step_needs_paths(self):
        with pytest.raises(ValueError):
            cache_step("c", [])
