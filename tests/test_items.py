"""Tests for focuscore/items.py — validation, completion, due reminders."""

from datetime import timedelta

import pytest

from focuscore.errors import InvalidRequest, ItemNotFound
from focuscore.items import (
    add_reminder,
    add_task,
    complete_item,
    create_item,
    due_reminders,
    items_for,
    load_items,
    mark_notified,
    validate_item,
)
from focuscore.models import ItemType


def test_validate_item_valid():
    assert validate_item({"owner_id": "a", "title": "T", "type": "task", "day": "2026-02-11"}) == []
    assert validate_item({"owner_id": "a", "title": "R", "type": "reminder", "time": "07:30", "weekdays": [0, 4]}) == []


def test_validate_item_errors():
    errors = validate_item({"title": "", "type": "note"})
    assert any("owner_id" in e for e in errors)
    assert any("title" in e for e in errors)
    assert any("type" in e for e in errors)
    assert validate_item({"owner_id": "a", "title": "T", "type": "task", "day": "tomorrow"})
    assert validate_item({"owner_id": "a", "title": "R", "type": "reminder", "time": "25:00", "weekdays": [1]})
    assert validate_item({"owner_id": "a", "title": "R", "type": "reminder", "time": "07:00", "weekdays": [7]})


def test_create_item_duplicate_id(workspace):
    item, errors = create_item({"id": "x", "owner_id": "a", "title": "T", "type": "task", "day": "2026-02-11"}, workspace)
    assert errors == []
    item, errors = create_item({"id": "x", "owner_id": "a", "title": "T", "type": "task", "day": "2026-02-11"}, workspace)
    assert item is None
    assert "already exists" in errors[0]


def test_add_task_invalid_raises(workspace):
    with pytest.raises(InvalidRequest):
        add_task("alice", "", "2026-02-11", workspace)


def test_items_persist_roundtrip(workspace):
    add_task("alice", "Laundry", "2026-02-11", workspace)
    add_reminder("alice", "Stretch", "18:00", [0, 2, 4], workspace)
    items = load_items(workspace)
    assert [i.item_type for i in items] == [ItemType.TASK, ItemType.REMINDER]
    assert items[1].weekdays == [0, 2, 4]
    assert items[1].time == "18:00"


def test_items_for_filters_by_day(workspace):
    add_task("alice", "Today", "2026-02-11", workspace)
    add_task("alice", "Tomorrow", "2026-02-12", workspace)
    add_task("bob", "Today", "2026-02-11", workspace)
    assert [i.title for i in items_for("alice", ItemType.TASK, "2026-02-11", workspace)] == ["Today"]


def test_complete_item_idempotent(workspace, base):
    t = add_task("alice", "Laundry", "2026-02-11", workspace)
    first = complete_item("alice", t.id, now=base, root=workspace)
    assert first["alreadyCompleted"] is False
    assert first["item"].completed
    second = complete_item("alice", t.id, now=base, root=workspace)
    assert second["alreadyCompleted"] is True


def test_complete_item_wrong_owner(workspace, base):
    t = add_task("alice", "Laundry", "2026-02-11", workspace)
    with pytest.raises(ItemNotFound):
        complete_item("bob", t.id, now=base, root=workspace)
    with pytest.raises(ItemNotFound):
        complete_item("alice", "missing", now=base, root=workspace)


def test_reminder_completion_per_day(workspace, base):
    r = add_reminder("alice", "Vitamins", "08:00", [0, 1, 2, 3, 4, 5, 6], workspace)
    complete_item("alice", r.id, now=base, root=workspace)
    item = load_items(workspace)[0]
    assert item.is_completed_on("2026-02-11")
    assert not item.is_completed_on("2026-02-12")


def test_due_reminders(workspace, base):
    # base is Wednesday 09:00 UTC
    due = add_reminder("alice", "Standup", "09:00", [2], workspace)
    add_reminder("alice", "Other day", "09:00", [3], workspace)
    add_reminder("alice", "Later", "10:00", [2], workspace)

    found = due_reminders(base, workspace)
    assert [i.id for i in found] == [due.id]

    mark_notified([due.id], base, workspace)
    assert due_reminders(base + timedelta(seconds=30), workspace) == []


def test_due_reminders_skip_completed(workspace, base):
    r = add_reminder("alice", "Standup", "09:00", [2], workspace)
    complete_item("alice", r.id, now=base - timedelta(hours=1), root=workspace)
    assert due_reminders(base, workspace) == []


def test_due_reminders_since_previous_poll(workspace, base):
    r = add_reminder("alice", "Standup", "09:00", [2], workspace)
    add_reminder("alice", "Earlier", "08:30", [2], workspace)
    late = base + timedelta(minutes=1, seconds=5)
    assert due_reminders(late, workspace) == []
    found = due_reminders(late, workspace, since=base - timedelta(seconds=55))
    assert [i.id for i in found] == [r.id]

    mark_notified([r.id], late, workspace)
    assert due_reminders(late, workspace, since=base - timedelta(seconds=55)) == []
