"""
Redis Channel Naming.

Every branch has one notification channel, keyed by the branch code. The
code is stable across synchronization, unlike ``local-<n>`` ids that are
replaced by remote ids on the first push.
"""

from __future__ import annotations


def _validate_branch(branch: str) -> None:
    if not isinstance(branch, str) or not branch.strip():
        raise ValueError(f"branch must be a non-empty string, got {branch!r}")
    if ":" in branch:
        raise ValueError(f"branch must not contain ':', got {branch!r}")


def channel_branch_events(branch: str) -> str:
    """Channel carrying every notification for a branch."""
    _validate_branch(branch)
    return f"branch:{branch}:events"
