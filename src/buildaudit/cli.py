# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import click

from buildaudit import settings
from buildaudit.cache import CacheStore
from buildaudit.dsl import build_and_audit
from buildaudit.git_facts.git import current_branch, head_sha, repo_name
from buildaudit.model import RunContext, Workflow
from buildaudit.runner import load_workflow, run_workflow
from buildaudit.step_workflows.cache import step_key
from buildaudit.triggers import PULL_REQUEST, PUSH
from buildaudit.ui.console import Console, get_console, set_console


def find_workflow_files(root: Path) -> list[Path]:
    """
    Find candidate workflow files under root, most specific first:
    buildaudit_workflow.py, other *_workflow.py, then .github/workflows/*.y(a)ml.
    """
    default_workflow = root / settings.DEFAULT_WORKFLOW
    if default_workflow.exists():
        return [default_workflow]

    py_files = sorted(root.glob("*_workflow.py"))
    if py_files:
        return py_files

    gh_dir = root / ".github" / "workflows"
    return sorted([*gh_dir.glob("*.yml"), *gh_dir.glob("*.yaml")])


def discover_workflow(workflow_arg: str | None, root: Path) -> Path | None:
    """
    Resolve the workflow file to use. None means "use the built-in
    build-and-audit pipeline".

    Raises:
        SystemExit: If the given workflow is missing or discovery is ambiguous
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and not workflow_path.suffix:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify an existing workflow:\n  buildaudit run --workflow buildaudit_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files(root)
    if not workflow_files:
        return None

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  buildaudit run --workflow <file>",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(ctx, workflow_arg: str | None, job: str | None, root: Path) -> tuple[Workflow, str]:
    console = get_console()
    workflow_path = discover_workflow(workflow_arg, root)
    if workflow_path is None:
        console.print_debug("No workflow file found, using the built-in build-and-audit pipeline")
        return build_and_audit(), "<built-in>"

    try:
        if job and workflow_path.suffix in (".yml", ".yaml"):
            from buildaudit.actions import load_actions_workflow

            wf = load_actions_workflow(workflow_path, job=job)
        else:
            wf = load_workflow(workflow_path)
        wf.matrix_entries()  # rejects a matrix with more than one dimension
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=str(e).splitlines(),
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)
    return wf, workflow_path.name


def _describe_ref(root: Path, branch: str | None) -> str | None:
    try:
        sha = head_sha(root)[:12]
    except (subprocess.CalledProcessError, FileNotFoundError):
        return branch
    return f"{branch} @ {sha}" if branch else sha


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print failures and the final results")
@click.pass_context
def cli(ctx, debug, quiet):
    """buildaudit: sequential build-and-audit pipeline runner."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or GitHub Actions .yml)")
@click.option("--job", default=None, help="Job to run when a YAML workflow defines several")
@click.option("--root", default=".", show_default=True, type=click.Path(file_okay=False), help="Working directory root")
@click.option("--event", type=click.Choice([PUSH, PULL_REQUEST]), default=None, help="Only run if this event triggers the workflow")
@click.option("--branch", default=None, help="Branch for --event push (defaults to the current branch)")
@click.option("--action", "pr_action", default=None, help="Pull request activity type for --event pull_request")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--cache-keep", default=settings.CACHE_KEEP, show_default=True, type=click.IntRange(min=0), help="Cache archives to keep")
@click.option("--report", default=None, type=click.Path(dir_okay=False), help="Write a JSON report of the run")
@click.pass_context
def run(ctx, workflow, job, root, event, branch, pr_action, cache_dir, cache_keep, report):
    """Run a workflow; exit 0 iff every required step succeeded."""
    console = get_console()
    root_p = Path(root).resolve()
    wf, wf_name = _load(ctx, workflow, job, root_p)

    if event is not None:
        if event == PUSH and branch is None:
            try:
                branch = current_branch(root_p)
            except (subprocess.CalledProcessError, FileNotFoundError):
                branch = None
        if not wf.triggers.matches(event, branch=branch, action=pr_action):
            what = f"{event} to {branch}" if event == PUSH else f"{event} ({pr_action or 'any'})"
            console.print_info(f"Workflow '{wf.name}' is not triggered by {what}; nothing to run.")
            return

    try:
        console.print_run_started(
            repository=repo_name(root_p),
            workflow=f"{wf.name} ({wf_name})",
            step_count=len(wf.steps),
            ref=_describe_ref(root_p, branch),
        )

        cache_root = Path(cache_dir)
        if not cache_root.is_absolute():
            cache_root = root_p / cache_root
        cache = CacheStore(cache_root)
        context = RunContext(root=root_p, runner_os=settings.RUNNER_OS, cache_root=cache_root)

        results = run_workflow(wf, context, cache=cache)

        removed = cache.prune(keep=cache_keep)
        if removed:
            console.print_debug(f"Pruned cache entries: {', '.join(removed)}")

        console.print_results(results)

        if report:
            Path(report).write_text(
                json.dumps({"workflow": wf.name, "runs": [r.to_dict() for r in results]}, indent=2),
                encoding="utf-8",
            )
            console.print_info(f"Report written to {report}")

        if not all(r.ok for r in results):
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or GitHub Actions .yml)")
@click.option("--job", default=None, help="Job to show when a YAML workflow defines several")
@click.option("--root", default=".", show_default=True, type=click.Path(file_okay=False))
@click.pass_context
def plan(ctx, workflow, job, root):
    """Show the ordered steps without running them."""
    wf, _name = _load(ctx, workflow, job, Path(root).resolve())
    get_console().print_plan(wf)


@cli.command(name="cache-key")
@click.option("--workflow", default=None, help="Workflow file (.py or GitHub Actions .yml)")
@click.option("--job", default=None)
@click.option("--root", default=".", show_default=True, type=click.Path(file_okay=False))
@click.pass_context
def cache_key_cmd(ctx, workflow, job, root):
    """Print the cache key of every cache step, per matrix entry."""
    root_p = Path(root).resolve()
    wf, _name = _load(ctx, workflow, job, root_p)

    cache_steps = [s for s in wf.steps if s.kind == "cache"]
    if not cache_steps:
        click.echo("No cache steps in workflow.")
        return

    for entry in wf.matrix_entries():
        context = RunContext(root=root_p, runner_os=settings.RUNNER_OS, matrix=entry)
        for step in cache_steps:
            try:
                click.echo(f"{step.name}: {step_key(step, context)}")
            except ValueError as e:
                get_console().print_error("Invalid cache key", str(e))
                sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
