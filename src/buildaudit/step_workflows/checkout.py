# step_workflows/checkout.py
from __future__ import annotations

import shlex

from ..model import Step


def checkout_step(
    name: str = "Checkout",
    *,
    repository: str | None = None,
    ref: str | None = None,
) -> Step:
    """
    Check out the repository source into the working directory.

    Without a repository the working directory must already be a git
    work tree (local runs); with one it is cloned, or fetched if a clone
    is already present.
    """
    if repository:
        repo = shlex.quote(repository)
        cmd = f"if [ -d .git ]; then git fetch --quiet origin; else git clone --quiet {repo} .; fi"
    else:
        cmd = "git rev-parse --is-inside-work-tree"

    if ref:
        cmd += f" && git checkout --quiet {shlex.quote(ref)}"

    return Step(name=name, run=cmd, failure="checkout")
