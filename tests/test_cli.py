from __future__ import annotations

import json
import textwrap

import pytest
from click.testing import CliRunner

from buildaudit.cli import cli


def write_workflow(root, body):
    path = root / "buildaudit_workflow.py"
    path.write_text(textwrap.dedent(body))
    return path


PASSING = """\
    from buildaudit import pipeline, sh

    def workflow():
        return pipeline("demo", sh("hello", "echo hello"), sh("bye", "echo bye"))
    """

FAILING = """\
    from buildaudit import sh

    STEPS = [
        sh("compile", "echo 'error: mismatched types'; exit 101", failure="build"),
        sh("audit", "true", failure="audit"),
    ]
    """


@pytest.fixture
def runner():
    return CliRunner()


def test_run_success(runner, workspace):
    write_workflow(workspace, PASSING)
    result = runner.invoke(cli, ["run", "--root", str(workspace)])
    assert result.exit_code == 0, result.output
    assert "RESULTS" in result.output
    assert "hello: SUCCESS" in result.output


def test_run_failure_exit_code_and_report(runner, workspace, tmp_path):
    write_workflow(workspace, FAILING)
    report = tmp_path / "report.json"
    result = runner.invoke(cli, ["run", "--root", str(workspace), "--report", str(report)])

    assert result.exit_code == 1
    assert "STEP FAILED: compile" in result.output
    assert "build failed" in result.output
    assert "audit: SKIPPED" in result.output

    data = json.loads(report.read_text())
    run = data["runs"][0]
    assert run["status"] == "failed"
    assert run["failed_step"] == "compile"
    assert run["error_type"] == "BuildError"
    assert [s["status"] for s in run["steps"]] == ["failed", "skipped"]


def test_not_triggered_is_a_clean_exit(runner, workspace):
    write_workflow(workspace, FAILING)
    result = runner.invoke(
        cli, ["run", "--root", str(workspace), "--event", "push", "--branch", "feature/x"]
    )
    assert result.exit_code == 0
    assert "not triggered" in result.output


def test_triggered_push_runs(runner, workspace):
    write_workflow(workspace, FAILING)
    result = runner.invoke(
        cli, ["run", "--root", str(workspace), "--event", "push", "--branch", "master"]
    )
    assert result.exit_code == 1


def test_explicit_yaml_workflow(runner, workspace):
    wf = workspace / "ci.yml"
    wf.write_text(textwrap.dedent("""\
        on: [push]
        jobs:
          only:
            steps:
              - name: greet
                run: echo hi
        """))
    result = runner.invoke(cli, ["run", "--root", str(workspace), "--workflow", str(wf)])
    assert result.exit_code == 0, result.output
    assert "greet: SUCCESS" in result.output


def test_missing_workflow_file(runner, workspace):
    result = runner.invoke(cli, ["run", "--root", str(workspace), "--workflow", str(workspace / "nope.py")])
    assert result.exit_code == 1


def test_invalid_workflow_file(runner, workspace):
    write_workflow(workspace, "JOBS = []\n")
    result = runner.invoke(cli, ["run", "--root", str(workspace)])
    assert result.exit_code == 1


def test_plan_lists_builtin_steps(runner, workspace):
    result = runner.invoke(cli, ["plan", "--root", str(workspace)])
    assert result.exit_code == 0, result.output
    assert "1. Install Rust toolchain [fails as: toolchain]" in result.output
    assert "2. Cache Dependencies & Build Outputs [advisory]" in result.output
    assert "$ cargo build --release" in result.output


def test_cache_key_is_deterministic(runner, workspace, monkeypatch):
    monkeypatch.setattr("buildaudit.settings.RUNNER_OS", "Linux")
    (workspace / "Cargo.lock").write_text("lock")

    first = runner.invoke(cli, ["cache-key", "--root", str(workspace)])
    second = runner.invoke(cli, ["cache-key", "--root", str(workspace)])

    assert first.exit_code == 0, first.output
    assert first.output == second.output
    assert "Cache Dependencies & Build Outputs: Linux-ubuntu-latest-cargo-" in first.output


def test_workflow_with_syntax_error_is_reported(runner, workspace):
    write_workflow(workspace, "def workflow(:\n    pass\n")
    result = runner.invoke(cli, ["plan", "--root", str(workspace)])
    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Failed to load workflow" in result.output


def test_two_matrix_dimensions_are_reported(runner, workspace):
    write_workflow(workspace, """\
        from buildaudit import pipeline, sh

        def workflow():
            return pipeline(
                "demo",
                sh("hello", "echo hello"),
                matrix={"os": ["ubuntu-latest"], "arch": ["x86_64", "aarch64"]},
            )
        """)
    result = runner.invoke(cli, ["run", "--root", str(workspace)])
    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "more than one matrix dimension" in result.output


def test_bad_cache_keep_is_a_usage_error(runner, workspace):
    write_workflow(workspace, PASSING)
    result = runner.invoke(cli, ["run", "--root", str(workspace), "--cache-keep", "lots"])
    assert result.exit_code == 2


def test_bad_cache_keep_env_does_not_break_import(monkeypatch):
    import importlib

    from buildaudit import settings

    monkeypatch.setenv("BUILDAUDIT_CACHE_KEEP", "lots")
    try:
        importlib.reload(settings)
        assert settings.CACHE_KEEP == "lots"
    finally:
        monkeypatch.delenv("BUILDAUDIT_CACHE_KEEP")
        importlib.reload(settings)
