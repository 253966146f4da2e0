# triggers.py
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import List, Optional

PUSH = "push"
PULL_REQUEST = "pull_request"

DEFAULT_PR_TYPES = ["opened", "synchronize", "reopened", "ready_for_review"]
PR_DEFAULT_ACTIVITY = ["opened", "synchronize", "reopened"]


@dataclass(frozen=True)
class Triggers:
    """
    Which events start a run.

    push_branches: branch patterns for push events (None = push does not trigger)
    pull_request_types: PR actions that trigger (None = pull requests do not trigger)
    """
    push_branches: Optional[List[str]] = field(default_factory=lambda: ["master"])
    pull_request_types: Optional[List[str]] = field(default_factory=lambda: list(DEFAULT_PR_TYPES))

    def matches(self, event: str, *, branch: str | None = None, action: str | None = None) -> bool:
        if event == PUSH:
            if self.push_branches is None:
                return False
            # push with no branch filter triggers on every branch
            if not self.push_branches:
                return True
            if branch is None:
                return False
            return any(fnmatch(branch, p) for p in self.push_branches)

        if event == PULL_REQUEST:
            if self.pull_request_types is None:
                return False
            # an empty list means GitHub's default activity types
            types = self.pull_request_types or PR_DEFAULT_ACTIVITY
            if action is None:
                return True
            return action in types

        return False

    def describe(self) -> List[str]:
        lines: List[str] = []
        if self.push_branches is not None:
            lines.append(f"push: {', '.join(self.push_branches) or '*'}")
        if self.pull_request_types is not None:
            lines.append(f"pull_request: {', '.join(self.pull_request_types) or 'default'}")
        return lines
