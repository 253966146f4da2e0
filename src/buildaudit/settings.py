from __future__ import annotations
import os
import platform

CACHE_DIR = os.environ.get("BUILDAUDIT_CACHE_DIR", ".buildaudit/cache")
# parsed by the --cache-keep option so a bad value is reported as a usage error
CACHE_KEEP = os.environ.get("BUILDAUDIT_CACHE_KEEP", "5")

# GitHub's runner.os spelling: Linux, macOS, Windows
_OS_NAMES = {"Linux": "Linux", "Darwin": "macOS", "Windows": "Windows"}
RUNNER_OS = os.environ.get("BUILDAUDIT_RUNNER_OS") or _OS_NAMES.get(platform.system(), platform.system())

DEFAULT_WORKFLOW = "buildaudit_workflow.py"
