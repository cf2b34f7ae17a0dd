"""Completion trigger dispatcher.

Engines call in here after a transition has been committed; the task and
reminder collaborators call ``on_item_completed``. Nothing here is
triggered implicitly by persistence.

Daily-aggregate rewards are re-evaluated on every item completion rather
than only on the last one. The ledger's per-day dedupe makes repeated
evaluation safe.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from focuscore import ledger
from focuscore.config import load_settings
from focuscore.errors import InvalidRequest
from focuscore.fileio import locked, read_json, write_json_atomic
from focuscore.hooks import run_hooks
from focuscore.models import GrantResult, ItemType, Kind, Phase, Reason, Session, Status
from focuscore.timer import raw_elapsed_seconds
from focuscore.workspace import aggregates_path, now_local

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]

REASON_BY_ITEM = {
    ItemType.TASK: Reason.DAILY_TASKS,
    ItemType.REMINDER: Reason.DAILY_REMINDERS,
}

_listeners: dict[str, list[Listener]] = defaultdict(list)


# ── Events ────────────────────────────────────────────────────


def add_listener(event: str, listener: Listener) -> None:
    _listeners[event].append(listener)


def remove_listener(event: str, listener: Listener) -> None:
    if listener in _listeners.get(event, []):
        _listeners[event].remove(listener)


def emit(event: str, context: dict[str, Any], root: Path | None = None) -> list[dict[str, Any]]:
    """Notify in-process listeners, then run configured shell hooks.

    The transition that produced the event is already committed, so a
    failing listener is logged and does not stop the others.
    """
    for listener in list(_listeners.get(event, [])):
        try:
            listener(context)
        except Exception:
            logger.exception("Listener for %s failed", event)
    return run_hooks(event, context, root)


# ── Rewards ───────────────────────────────────────────────────


def reward(
    owner: str,
    reason: str,
    description: str,
    premium: bool = True,
    now: datetime | None = None,
    root: Path | None = None,
) -> GrantResult | None:
    """Grant the configured amount for *reason*; free owners receive nothing."""
    if not premium:
        logger.info("Skipping %s reward for %s: not premium", reason, owner)
        return None
    amount = load_settings(root).reward_for(reason)
    result = ledger.grant(owner, reason, amount, description, now, root)
    if result.granted:
        emit("on_reward_granted", {"owner": owner, "reason": reason, **result.to_dict()}, root)
    return result


def on_item_completed(
    owner: str,
    item_type: str,
    day: str,
    premium: bool = True,
    now: datetime | None = None,
    root: Path | None = None,
) -> GrantResult | None:
    """Grant the daily-aggregate reward once every *item_type* item for *day* is done."""
    from focuscore.items import items_for

    if item_type not in REASON_BY_ITEM:
        raise InvalidRequest(f"Unknown item type: {item_type}", details={"itemType": item_type})
    items = items_for(owner, item_type, day, root)
    if not items:
        return None
    if not all(item.is_completed_on(day) for item in items):
        return None
    logger.info("All %d %s item(s) for %s on %s are complete", len(items), item_type, owner, day)
    description = f"All {item_type}s completed for {day}"
    return reward(owner, REASON_BY_ITEM[item_type], description, premium, now, root)


# ── Owner aggregates ──────────────────────────────────────────


def _empty_totals() -> dict[str, int]:
    return {
        "focusPhasesCompleted": 0,
        "focusSeconds": 0,
        "breakPhasesCompleted": 0,
        "decomposedCompleted": 0,
        "decomposedSeconds": 0,
    }


def owner_aggregates(owner: str, root: Path | None = None) -> dict[str, int]:
    totals = _empty_totals()
    totals.update(read_json(aggregates_path(root)).get(owner, {}))
    return totals


def on_session_completed(session: Session, root: Path | None = None) -> dict[str, int]:
    """Fold a completed session into the owner's running totals."""
    if session.status != Status.COMPLETED:
        return owner_aggregates(session.owner_id, root)
    seconds = raw_elapsed_seconds(session, session.completed_at or now_local(root))

    with locked(aggregates_path(root)):
        doc = read_json(aggregates_path(root))
        totals = _empty_totals()
        totals.update(doc.get(session.owner_id, {}))
        if session.kind == Kind.FOCUS_CYCLE:
            if session.focus.phase == Phase.FOCUS:
                totals["focusPhasesCompleted"] += 1
                totals["focusSeconds"] += seconds
            else:
                totals["breakPhasesCompleted"] += 1
        else:
            totals["decomposedCompleted"] += 1
            totals["decomposedSeconds"] += seconds
        doc[session.owner_id] = totals
        write_json_atomic(aggregates_path(root), doc)

    emit("on_session_complete", {"session": session.to_dict(), "totals": totals}, root)
    return totals
