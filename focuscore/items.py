"""Tracked tasks and reminders feeding the completion dispatcher.

Tasks are scheduled for a single day; reminders repeat at a time of day on
chosen weekdays and keep a per-day completion history. Items are stored in
``data/items.yaml``.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from focuscore.errors import InvalidRequest, ItemNotFound
from focuscore.fileio import locked, read_yaml, write_yaml_atomic
from focuscore.models import ItemType, TrackedItem
from focuscore.store import new_id
from focuscore.workspace import day_str, get_timezone, items_path, now_local

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ── Validation ────────────────────────────────────────────────


def validate_item(item: dict[str, Any]) -> list[str]:
    """Validate item schema and return list of errors (empty if valid)."""
    errors = []
    if not str(item.get("owner_id", "")).strip():
        errors.append("Missing required field: owner_id")
    if not str(item.get("title", "")).strip():
        errors.append("Missing required field: title")
    item_type = item.get("type")
    if item_type not in ItemType.ALL:
        errors.append(f"Invalid item type: {item_type}")

    if item_type == ItemType.TASK:
        try:
            date.fromisoformat(str(item.get("day", "")))
        except ValueError:
            errors.append("day must be an ISO date (YYYY-MM-DD)")
    elif item_type == ItemType.REMINDER:
        if not TIME_RE.match(str(item.get("time", ""))):
            errors.append("time must be HH:MM")
        weekdays = item.get("weekdays") or []
        if not weekdays or not all(isinstance(w, int) and 0 <= w <= 6 for w in weekdays):
            errors.append("weekdays must be a non-empty list of integers 0-6")
    return errors


# ── Storage ───────────────────────────────────────────────────


def load_items(root: Path | None = None) -> list[TrackedItem]:
    data = read_yaml(items_path(root))
    return [TrackedItem.from_dict(d) for d in (data.get("items") or [])]


def save_items(items: list[TrackedItem], root: Path | None = None) -> None:
    write_yaml_atomic(items_path(root), {"items": [i.to_dict() for i in items]})


def find_item(items: list[TrackedItem], item_id: str) -> TrackedItem | None:
    for item in items:
        if item.id == item_id:
            return item
    return None


def create_item(data: dict[str, Any], root: Path | None = None) -> tuple[TrackedItem | None, list[str]]:
    """Create an item. Returns (item, errors)."""
    errors = validate_item(data)
    if errors:
        return None, errors
    item = TrackedItem.from_dict(data)
    item.id = item.id or new_id()
    with locked(items_path(root)):
        items = load_items(root)
        if find_item(items, item.id):
            return None, [f"Item with id '{item.id}' already exists"]
        items.append(item)
        save_items(items, root)
    return item, []


def add_task(owner: str, title: str, day: str, root: Path | None = None) -> TrackedItem:
    item, errors = create_item({"owner_id": owner, "title": title, "type": ItemType.TASK, "day": day}, root)
    if errors:
        raise InvalidRequest("; ".join(errors))
    return item


def add_reminder(
    owner: str,
    title: str,
    time: str,
    weekdays: list[int],
    root: Path | None = None,
) -> TrackedItem:
    item, errors = create_item(
        {"owner_id": owner, "title": title, "type": ItemType.REMINDER, "time": time, "weekdays": weekdays},
        root,
    )
    if errors:
        raise InvalidRequest("; ".join(errors))
    return item


def items_for(owner: str, item_type: str, day: str, root: Path | None = None) -> list[TrackedItem]:
    """The owner's items of *item_type* scheduled on *day*."""
    return [
        item for item in load_items(root)
        if item.owner_id == owner and item.item_type == item_type and item.is_scheduled_on(day)
    ]


# ── Completion ────────────────────────────────────────────────


def complete_item(
    owner: str,
    item_id: str,
    premium: bool = True,
    now: datetime | None = None,
    root: Path | None = None,
) -> dict[str, Any]:
    """Mark an item done and hand the event to the dispatcher."""
    from focuscore.dispatcher import on_item_completed

    if now is None:
        now = now_local(root)
    today = day_str(now, root)

    with locked(items_path(root)):
        items = load_items(root)
        item = find_item(items, item_id)
        if item is None or item.owner_id != owner:
            raise ItemNotFound(f"Item not found: {item_id}", details={"itemId": item_id})
        day = item.day if item.item_type == ItemType.TASK else today
        already = item.is_completed_on(day)
        if not already:
            if item.item_type == ItemType.TASK:
                item.completed = True
                item.completed_at = now
            else:
                item.completions.append(day)
            save_items(items, root)

    logger.info("Item %s (%s) completed by %s for %s", item.id, item.item_type, owner, day)
    grant = on_item_completed(owner, item.item_type, day, premium, now, root)
    return {"item": item, "alreadyCompleted": already, "grant": grant}


# ── Reminder scheduling ───────────────────────────────────────


def scheduled_at(item: TrackedItem, local: datetime) -> datetime:
    """The reminder's time of day on *local*'s date."""
    hour, minute = (int(part) for part in item.time.split(":"))
    return local.replace(hour=hour, minute=minute, second=0, microsecond=0)


def due_reminders(
    now: datetime,
    root: Path | None = None,
    since: datetime | None = None,
) -> list[TrackedItem]:
    """Active reminders whose time today falls in the window ending at *now*.

    The window opens just after *since* (the previous poll), or at the start
    of *now*'s minute when there was none. Reminders already done today, or
    notified at or after their scheduled time, are skipped.
    """
    local = now.astimezone(get_timezone(root))
    today = local.date().isoformat()
    if since is None:
        opens_after = local.replace(second=0, microsecond=0) - timedelta(microseconds=1)
    else:
        opens_after = since
    due = []
    for item in load_items(root):
        if item.item_type != ItemType.REMINDER:
            continue
        if not item.is_scheduled_on(today) or item.is_completed_on(today):
            continue
        at = scheduled_at(item, local)
        if not opens_after < at <= local:
            continue
        if item.last_notified_at is not None and item.last_notified_at >= at:
            continue
        due.append(item)
    return due


def mark_notified(item_ids: list[str], now: datetime, root: Path | None = None) -> None:
    with locked(items_path(root)):
        items = load_items(root)
        for item in items:
            if item.id in item_ids:
                item.last_notified_at = now
        save_items(items, root)
