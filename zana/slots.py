"""Slot-filling: fold a freshly classified intent into the session's pending one."""

from typing import Any

from .intents import CLARIFY
from .session_store import PendingIntent


def merge_pending(
    intent_type: str, args: dict[str, Any], pending: PendingIntent | None
) -> tuple[str, dict[str, Any]]:
    """
    Return the effective intent type and merged arguments.

    A "clarify" answer continues the pending intent. For the same type, pending
    arguments fill the gaps but never override what was just said. A different
    type is a topic change and the pending arguments are ignored.
    """
    merged = dict(args)
    if pending is None:
        return intent_type, merged

    effective = pending.type if intent_type == CLARIFY else intent_type
    if effective == pending.type:
        for key, value in pending.args.items():
            merged.setdefault(key, value)
    return effective, merged
