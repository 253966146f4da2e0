# step_workflows/cache.py
from __future__ import annotations

import tarfile
import time
from typing import List, Tuple

from ..cache import DEFAULT_KEY_TEMPLATE, CacheHit, CacheStore, cache_key, hash_files
from ..model import FAILED, SUCCESS, RunContext, Step, StepResult


# ---------------------------------------------------------------------
# Cache step helper
# ---------------------------------------------------------------------

def cache_step(
    name: str,
    paths: List[str],
    *,
    key: str = DEFAULT_KEY_TEMPLATE,
    hash_files: List[str] | None = None,
) -> Step:
    """
    Create an advisory cache step.

    key is a template rendered with runner_os, the matrix values and
    hash (the content hash of the files matched by hash_files).
    """
    if not paths:
        raise ValueError(f"cache step {name!r} needs at least one path")
    return Step(
        name=name,
        run=f"cache restore {key}",
        kind="cache",
        continue_on_failure=True,
        data={
            "paths": list(paths),
            "key": key,
            "hash_files": list(hash_files if hash_files is not None else ["**/Cargo.lock"]),
        },
    )


def step_key(step: Step, context: RunContext) -> str:
    """Resolve the concrete cache key for step in this run."""
    data = step.data or {}
    digest = hash_files(context.root, data.get("hash_files", []))
    return cache_key(
        data.get("key", DEFAULT_KEY_TEMPLATE),
        file_hash=digest,
        runner_os=context.runner_os,
        matrix=context.matrix,
    )


# ---------------------------------------------------------------------
# Cache step execution
# ---------------------------------------------------------------------

def restore_step(step: Step, context: RunContext, cache: CacheStore) -> Tuple[StepResult, CacheHit]:
    """
    Restore the step's paths. Never raises for cache problems: a miss is a
    success, a broken archive or bad key template is recorded as a failed
    (advisory) result.
    """
    start = time.monotonic()
    paths = list((step.data or {}).get("paths", []))

    try:
        key = step_key(step, context)
        hit = cache.restore(key, paths, workdir=context.root)
    except (OSError, ValueError, tarfile.TarError) as e:
        hit = CacheHit(hit=False, key="", reason=f"cache restore failed: {e}")
        result = StepResult(
            step_name=step.name,
            status=FAILED,
            exit_status=1,
            duration=time.monotonic() - start,
            captured_output=hit.reason,
        )
        return result, hit

    result = StepResult(
        step_name=step.name,
        status=SUCCESS,
        exit_status=0,
        duration=time.monotonic() - start,
        captured_output=f"{hit.reason} (key={hit.key})",
    )
    return result, hit


def save_step(step: Step, hit: CacheHit, context: RunContext, cache: CacheStore) -> bool:
    """Save the step's paths under the key computed at restore time."""
    paths = list((step.data or {}).get("paths", []))
    return cache.save(hit.key, paths, workdir=context.root)
