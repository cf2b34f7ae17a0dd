"""Tests for focuscore/dispatcher.py — item rewards, listeners, aggregates."""

from focuscore import dispatcher, ledger
from focuscore.decomposed import advance_task, create_task, start_task
from focuscore.focus import complete_phase, create_phase
from focuscore.items import add_reminder, add_task, complete_item
from focuscore.models import GrantResult, ItemType, Reason


def test_all_tasks_done_grants_once(workspace, base):
    a = add_task("alice", "Laundry", "2026-02-11", workspace)
    b = add_task("alice", "Email", "2026-02-11", workspace)

    first = complete_item("alice", a.id, now=base, root=workspace)
    assert first["grant"] is None
    second = complete_item("alice", b.id, now=base, root=workspace)
    assert second["grant"].granted
    assert second["grant"].entry.reason == Reason.DAILY_TASKS
    # rewards.daily_tasks is 2 in the test settings
    assert ledger.get_balance("alice", workspace) == 2

    again = dispatcher.on_item_completed("alice", ItemType.TASK, "2026-02-11", True, base, workspace)
    assert again.status == GrantResult.ALREADY_GRANTED
    assert ledger.get_balance("alice", workspace) == 2


def test_no_items_no_reward(workspace, base):
    assert dispatcher.on_item_completed("alice", ItemType.TASK, "2026-02-11", True, base, workspace) is None


def test_reminders_reward(workspace, base):
    # base is a Wednesday (weekday 2)
    r = add_reminder("alice", "Vitamins", "08:00", [2], workspace)
    add_reminder("alice", "Weekend plants", "10:00", [5], workspace)
    result = complete_item("alice", r.id, now=base, root=workspace)
    assert result["grant"].granted
    assert result["grant"].entry.reason == Reason.DAILY_REMINDERS


def test_free_owner_gets_nothing(workspace, base):
    t = add_task("carol", "Only task", "2026-02-11", workspace)
    result = complete_item("carol", t.id, premium=False, now=base, root=workspace)
    assert result["grant"] is None
    assert ledger.get_balance("carol", workspace) == 0


def test_listeners_receive_events(workspace, base):
    seen = []

    def on_grant(context):
        seen.append(context["reason"])

    def broken(context):
        raise RuntimeError("listener bug")

    dispatcher.add_listener("on_reward_granted", broken)
    dispatcher.add_listener("on_reward_granted", on_grant)
    try:
        dispatcher.reward("alice", Reason.DAILY_LOGIN, "login", True, base, workspace)
        dispatcher.reward("alice", Reason.DAILY_LOGIN, "login", True, base, workspace)
    finally:
        dispatcher.remove_listener("on_reward_granted", broken)
        dispatcher.remove_listener("on_reward_granted", on_grant)
    assert seen == [Reason.DAILY_LOGIN]


def test_session_aggregates(workspace, at):
    f = create_phase("alice", "Work", planned_seconds=600, now=at(0), root=workspace)
    complete_phase("alice", f.id, now=at(600), root=workspace)
    b = create_phase("alice", "Rest", phase="break", cycle_group_id=f.focus.cycle_group_id,
                     now=at(600), root=workspace)
    complete_phase("alice", b.id, now=at(900), root=workspace)
    t = create_task("alice", "Tidy", steps=[("all", 120)], now=at(900), root=workspace)
    start_task("alice", t.id, at(900), workspace)
    advance_task("alice", t.id, now=at(1000), root=workspace)

    totals = dispatcher.owner_aggregates("alice", workspace)
    assert totals == {
        "focusPhasesCompleted": 1,
        "focusSeconds": 600,
        "breakPhasesCompleted": 1,
        "decomposedCompleted": 1,
        "decomposedSeconds": 100,
    }
    assert dispatcher.owner_aggregates("bob", workspace)["focusPhasesCompleted"] == 0
