"""Commit messages for batches of scheduler changes."""

from __future__ import annotations

from typing import Sequence

from .models import ChangeInfo

EMPTY_BATCH_MESSAGE = "Auto-sync: Update scheduler data"
COMMIT_FOOTER = "Automated commit by Scheduler App"
MAX_LISTED_CHANGES = 10

_VERBS = {"add": "Add", "update": "Update", "delete": "Delete"}


def generate_commit_message(
    changes: Sequence[ChangeInfo],
    *,
    max_listed: int = MAX_LISTED_CHANGES,
) -> str:
    """Build one commit message describing ``changes`` in arrival order.

    Single change:
        feat(task): Add "Morning standup"

    Several changes:
        feat(sync): Batch update: 3 changes

        - add task: Morning standup
        - update project: Launch
        - delete idea: Old idea

    Only the first ``max_listed`` changes are listed; the rest are counted.
    """
    if not changes:
        return EMPTY_BATCH_MESSAGE

    if len(changes) == 1:
        change = changes[0]
        verb = _VERBS[change.kind]
        return f'feat({change.entity}): {verb} "{change.title}"\n\n{COMMIT_FOOTER}'

    lines = [f"- {c.kind} {c.entity}: {c.title}" for c in changes[:max_listed]]
    omitted = len(changes) - max_listed
    if omitted > 0:
        lines.append(f"- ... and {omitted} more change{'s' if omitted != 1 else ''}")
    details = "\n".join(lines)
    return f"feat(sync): Batch update: {len(changes)} changes\n\n{details}\n\n{COMMIT_FOOTER}"
