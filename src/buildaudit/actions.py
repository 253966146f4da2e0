# actions.py
# Load a GitHub Actions workflow file into a buildaudit Workflow.
#
# Only the subset needed to reproduce a single-job build pipeline is
# understood: triggers, one job, a one-dimension matrix, env, and steps that
# either `run:` a command or `uses:` one of the actions in ACTIONS below.
from __future__ import annotations

import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from .dsl import sh
from .model import Step, Workflow
from .runner import WorkflowError
from .step_workflows.cache import cache_step
from .step_workflows.checkout import checkout_step
from .step_workflows.rust import cargo_install_step, cargo_step, toolchain_step
from .triggers import Triggers

_EXPR = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_HASH_FILES = re.compile(r"^hashFiles\((.*)\)$")
_QUOTED = re.compile(r"'([^']*)'|\"([^\"]*)\"")


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _str_env(env: Any, where: str) -> Dict[str, str]:
    if env is None:
        return {}
    if not isinstance(env, dict):
        raise WorkflowError(source=where, message="env must be a mapping", details={"got": type(env).__name__})
    return {str(k): str(v) for k, v in env.items()}


# ---------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------

def translate_key(expr_text: str, env: Dict[str, str]) -> Tuple[str, List[str]]:
    """
    Translate an actions/cache key into a cache_key() template.

      ${{ runner.os }}            -> {runner_os}
      ${{ matrix.<name> }}        -> {<name>}
      ${{ env.<name> }}           -> the value from env
      ${{ hashFiles('a', 'b') }}  -> {hash}, with ['a', 'b'] returned

    Returns (template, hash_file_patterns).
    """
    out: List[str] = []
    patterns: List[str] = []
    pos = 0

    for m in _EXPR.finditer(expr_text):
        out.append(expr_text[pos:m.start()].replace("{", "{{").replace("}", "}}"))
        pos = m.end()
        expr = m.group(1)

        if expr == "runner.os":
            out.append("{runner_os}")
        elif expr.startswith("matrix."):
            out.append("{" + expr[len("matrix."):] + "}")
        elif expr.startswith("env."):
            name = expr[len("env."):]
            if name not in env:
                raise WorkflowError(source="cache key", message=f"unknown env value in {expr_text!r}", details={"name": name})
            out.append(env[name].replace("{", "{{").replace("}", "}}"))
        else:
            hf = _HASH_FILES.match(expr)
            if hf is None:
                raise WorkflowError(source="cache key", message="unsupported expression", details={"expression": expr})
            if patterns:
                raise WorkflowError(source="cache key", message="only one hashFiles() per key is supported", details={"key": expr_text})
            patterns = [a or b for a, b in _QUOTED.findall(hf.group(1))]
            out.append("{hash}")

    out.append(expr_text[pos:].replace("{", "{{").replace("}", "}}"))
    return "".join(out), patterns


# ---------------------------------------------------------------------
# `uses:` translation
# ---------------------------------------------------------------------

def _checkout(name: str, args: Dict[str, Any]) -> Step:
    repo = args.get("repository")
    if repo and "://" not in repo and "@" not in repo:
        repo = f"https://github.com/{repo}.git"
    return checkout_step(name, repository=repo, ref=args.get("ref"))


def _cache(name: str, args: Dict[str, Any], env: Dict[str, str]) -> Step:
    raw_paths = args.get("path") or ""
    if isinstance(raw_paths, list):
        paths = [str(p).strip() for p in raw_paths]
    else:
        paths = [line.strip() for line in str(raw_paths).splitlines()]
    paths = [p for p in paths if p]
    if "key" not in args:
        raise WorkflowError(source=name, message="actions/cache needs a key", details={})
    key, patterns = translate_key(str(args["key"]), env)
    return cache_step(name, paths, key=key, hash_files=patterns)


def _toolchain(name: str, args: Dict[str, Any]) -> Step:
    components = args.get("components")
    if isinstance(components, str):
        components = [c.strip() for c in components.split(",") if c.strip()]
    return toolchain_step(
        name,
        toolchain=str(args.get("toolchain", "stable")),
        profile=str(args.get("profile", "minimal")),
        override=_as_bool(args.get("override"), default=False),
        components=components,
    )


def _cargo_install(name: str, args: Dict[str, Any]) -> Step:
    if "crate" not in args:
        raise WorkflowError(source=name, message="cargo-install needs a crate", details={})
    return cargo_install_step(
        str(args["crate"]),
        name,
        version=str(args["version"]) if args.get("version") else None,
        locked=_as_bool(args.get("locked")),
    )


def _cargo(name: str, args: Dict[str, Any]) -> Step:
    if "command" not in args:
        raise WorkflowError(source=name, message="actions-rs/cargo needs a command", details={})
    return cargo_step(str(args["command"]), str(args.get("args") or ""), name)


ACTIONS: Dict[str, Callable[..., Step]] = {
    "actions/checkout": _checkout,
    "actions/cache": _cache,
    "actions-rs/toolchain": _toolchain,
    "dtolnay/rust-toolchain": _toolchain,
    "baptiste0928/cargo-install": _cargo_install,
    "actions-rs/cargo": _cargo,
}


def _default_name(raw: Dict[str, Any]) -> str:
    if raw.get("uses"):
        return f"Run {raw['uses'].split('@', 1)[0]}"
    first = str(raw.get("run", "")).strip().splitlines()
    return f"Run {first[0]}" if first else "step"


def _step_from_yaml(raw: Dict[str, Any], index: int, env: Dict[str, str]) -> Step:
    where = f"steps[{index}]"
    if not isinstance(raw, dict):
        raise WorkflowError(source=where, message="step must be a mapping", details={})
    if "if" in raw:
        raise WorkflowError(source=where, message="conditional steps (if:) are not supported", details={"if": raw["if"]})

    name = str(raw.get("name") or _default_name(raw))
    continue_on_failure = _as_bool(raw.get("continue-on-error"))

    if "run" in raw:
        run = str(raw["run"])
        if _EXPR.search(run):
            raise WorkflowError(source=where, message="expressions in run: are not supported", details={"run": run})
        return sh(
            name,
            run,
            cwd=raw.get("working-directory"),
            env=_str_env(raw.get("env"), where),
            continue_on_failure=continue_on_failure,
        )

    uses = raw.get("uses")
    if not uses:
        raise WorkflowError(source=where, message="step needs run: or uses:", details={"name": name})

    action = str(uses).split("@", 1)[0].lower()
    builder = ACTIONS.get(action)
    if builder is None:
        raise WorkflowError(
            source=where,
            message=f"unsupported action {uses!r}",
            details={"supported": ", ".join(sorted(ACTIONS))},
        )

    args = raw.get("with") or {}
    step = builder(name, args, env) if builder is _cache else builder(name, args)

    overrides: Dict[str, Any] = {}
    step_env = _str_env(raw.get("env"), where)
    if step_env:
        overrides["env"] = {**step.env, **step_env}
    if continue_on_failure:
        overrides["continue_on_failure"] = True
    if overrides:
        step = replace(step, **overrides)
    return step


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------

def parse_triggers(on: Any) -> Triggers:
    if on is None:
        return Triggers(push_branches=None, pull_request_types=None)
    if isinstance(on, str):
        on = [on]
    if isinstance(on, list):
        on = {str(e): None for e in on}
    if not isinstance(on, dict):
        raise WorkflowError(source="on", message="unsupported trigger definition", details={"got": type(on).__name__})

    push_branches: Optional[List[str]] = None
    pr_types: Optional[List[str]] = None

    if "push" in on:
        push = on["push"] or {}
        push_branches = [str(b) for b in (push.get("branches") or [])]
    if "pull_request" in on:
        pr = on["pull_request"] or {}
        pr_types = [str(t) for t in (pr.get("types") or [])]

    return Triggers(push_branches=push_branches, pull_request_types=pr_types)


def _parse_matrix(job: Dict[str, Any], job_name: str) -> Dict[str, List[str]]:
    strategy = job.get("strategy") or {}
    raw = strategy.get("matrix") or {}
    dims = {k: v for k, v in raw.items() if k not in ("include", "exclude")}
    if not dims:
        return {}
    if len(dims) > 1:
        raise WorkflowError(source=job_name, message="only one matrix dimension is supported", details={"dimensions": sorted(dims)})
    (key, values), = dims.items()
    if not isinstance(values, list):
        values = [values]
    return {str(key): [str(v) for v in values]}


def load_actions_workflow(path: str | Path, job: str | None = None) -> Workflow:
    """Load a GitHub Actions workflow YAML file."""
    wf_path = Path(path)
    with wf_path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise WorkflowError(source=wf_path.name, message="invalid YAML", details={"error": str(e)}) from e

    if not isinstance(data, dict):
        raise WorkflowError(source=wf_path.name, message="workflow must be a mapping", details={})

    # YAML 1.1 reads a bare `on:` key as boolean True
    on = data.get("on", data.get(True))

    jobs = data.get("jobs") or {}
    if not jobs:
        raise WorkflowError(source=wf_path.name, message="workflow defines no jobs", details={})
    if job is None:
        if len(jobs) > 1:
            raise WorkflowError(
                source=wf_path.name,
                message="workflow defines several jobs; pick one",
                details={"jobs": ", ".join(jobs)},
            )
        job = next(iter(jobs))
    if job not in jobs:
        raise WorkflowError(source=wf_path.name, message=f"no job named {job!r}", details={"jobs": ", ".join(jobs)})

    job_def = jobs[job] or {}
    env = {**_str_env(data.get("env"), wf_path.name), **_str_env(job_def.get("env"), job)}
    raw_steps = job_def.get("steps") or []
    if not raw_steps:
        raise WorkflowError(source=job, message="job has no steps", details={})

    steps = [_step_from_yaml(raw, i, env) for i, raw in enumerate(raw_steps)]

    return Workflow(
        name=str(data.get("name") or wf_path.stem),
        steps=steps,
        triggers=parse_triggers(on),
        matrix=_parse_matrix(job_def, job),
        env=env,
    )
