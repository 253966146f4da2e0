# step_workflows/rust.py
from __future__ import annotations

import shlex
from typing import Dict

from ..model import Step


# ---------------------------------------------------------------------
# Rust toolchain / cargo step helpers
# ---------------------------------------------------------------------

def toolchain_step(
    name: str = "Install Rust toolchain",
    *,
    toolchain: str = "stable",
    profile: str = "minimal",
    override: bool = True,
    components: list[str] | None = None,
) -> Step:
    """Install a rustup toolchain and optionally pin it for the workspace."""
    cmd = f"rustup toolchain install {shlex.quote(toolchain)} --profile {shlex.quote(profile)}"
    if components:
        cmd += " --component " + ",".join(shlex.quote(c) for c in components)
    if override:
        cmd += f" && rustup override set {shlex.quote(toolchain)}"
    return Step(name=name, run=cmd, failure="toolchain")


def cargo_install_step(
    crate: str,
    name: str | None = None,
    *,
    version: str | None = None,
    locked: bool = False,
) -> Step:
    """
    Install a cargo subcommand crate (e.g. cargo-audit).

    The install is skipped when the binary is already on PATH, so a warm
    ~/.cargo cache makes this step cheap.
    """
    install = f"cargo install {shlex.quote(crate)}"
    if version:
        install += f" --version {shlex.quote(version)}"
    if locked:
        install += " --locked"
    cmd = f"command -v {shlex.quote(crate)} >/dev/null 2>&1 || {install}"
    return Step(name=name or f"Install {crate}", run=cmd, failure="tool_install")


# cargo subcommands whose failure has a dedicated error category
_CARGO_FAILURES: Dict[str, str] = {
    "build": "build",
    "check": "build",
    "audit": "audit",
}


def cargo_step(
    command: str,
    args: str = "",
    name: str | None = None,
    *,
    cwd: str | None = None,
    env: Dict[str, str] | None = None,
) -> Step:
    """Run `cargo <command> <args>`."""
    cmd = f"cargo {command} {args}".strip()
    return Step(
        name=name or f"Cargo {command}",
        run=cmd,
        cwd=cwd,
        env=dict(env or {}),
        failure=_CARGO_FAILURES.get(command, ""),
    )
