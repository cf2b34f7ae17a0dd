"""Tests for focuscore/store.py — compare-and-set and the single-active constraint."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from focuscore import store, timer
from focuscore.errors import (
    ConflictingActiveSession,
    InvalidTransition,
    SessionNotFound,
    StoreConflict,
    TransientFailure,
)
from focuscore.models import FocusDetail, Kind, Session, Status


def _new(owner="alice", kind=Kind.FOCUS_CYCLE, status=Status.READY, created_at=None):
    return Session(owner_id=owner, kind=kind, status=status, planned_seconds=1500,
                   created_at=created_at, detail=FocusDetail())


def test_create_assigns_id_and_version(workspace, base):
    s = store.create_session(_new(created_at=base), root=workspace)
    assert s.id
    assert s.version == 1
    assert store.get_session(s.id, workspace).to_dict() == s.to_dict()


def test_get_missing(workspace):
    with pytest.raises(SessionNotFound):
        store.get_session("nope", workspace)


def test_other_owner_sees_not_found(workspace, base):
    s = store.create_session(_new(created_at=base), root=workspace)
    with pytest.raises(SessionNotFound):
        store.get_owned_session("bob", s.id, workspace)


def test_create_rejected_while_active(workspace, base):
    store.create_session(_new(status=Status.RUNNING, created_at=base), root=workspace)
    with pytest.raises(ConflictingActiveSession):
        store.create_session(_new(status=Status.RUNNING, created_at=base), root=workspace)
    # Other kind and other owner are unaffected
    store.create_session(_new(kind=Kind.DECOMPOSED_TASK, status=Status.RUNNING, created_at=base), root=workspace)
    store.create_session(_new(owner="bob", status=Status.RUNNING, created_at=base), root=workspace)


def test_cas_rejects_stale_version(workspace, base, at):
    s = store.create_session(_new(created_at=base), root=workspace)
    store.compare_and_swap(s.id, 1, lambda x: timer.start(x, at(0)), workspace)
    with pytest.raises(StoreConflict):
        store.compare_and_swap(s.id, 1, lambda x: timer.cancel(x, at(1)), workspace)
    assert store.get_session(s.id, workspace).version == 2


def test_cas_enforces_single_active(workspace, base, at):
    a = store.create_session(_new(created_at=base), root=workspace)
    b = store.create_session(_new(created_at=base), root=workspace)
    store.compare_and_swap(a.id, 1, lambda x: timer.start(x, at(0)), workspace)
    with pytest.raises(ConflictingActiveSession):
        store.compare_and_swap(b.id, 1, lambda x: timer.start(x, at(0)), workspace)
    assert store.get_session(b.id, workspace).status == Status.READY


def test_apply_transition_propagates_domain_errors(workspace, base, at):
    s = store.create_session(_new(created_at=base), root=workspace)
    with pytest.raises(InvalidTransition):
        store.apply_transition("alice", s.id, timer.pause, at(0), workspace)


def test_apply_transition_exhausts_retries(workspace, base, at, monkeypatch):
    s = store.create_session(_new(created_at=base), root=workspace)

    def always_conflict(*args, **kwargs):
        raise StoreConflict("lost")

    monkeypatch.setattr(store, "compare_and_swap", always_conflict)
    with pytest.raises(TransientFailure):
        store.apply_transition("alice", s.id, timer.start, at(0), workspace)


def test_parallel_starts_single_winner(workspace, base, at):
    sessions = [store.create_session(_new(created_at=base), root=workspace) for _ in range(6)]

    def try_start(session):
        try:
            store.apply_transition("alice", session.id, timer.start, at(0), workspace)
            return True
        except ConflictingActiveSession:
            return False

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(try_start, sessions))

    assert outcomes.count(True) == 1
    active = [s for s in store.list_sessions("alice", Kind.FOCUS_CYCLE, root=workspace) if s.is_active]
    assert len(active) == 1


def test_list_sessions_range(workspace, at):
    for offset in (0, 3600, 7200):
        s = store.create_session(_new(created_at=at(offset)), root=workspace)
        store.apply_transition("alice", s.id, timer.cancel, at(offset), workspace)
    found = store.list_sessions("alice", start=at(3600), end=at(7200), root=workspace)
    assert [s.created_at for s in found] == [at(3600)]
    assert len(store.list_sessions("alice", root=workspace)) == 3
    assert store.list_sessions("bob", root=workspace) == []


def test_get_active_session_with_snapshot(workspace, base, at):
    assert store.get_active_session("alice", Kind.FOCUS_CYCLE, at(0), workspace) is None
    s = store.create_session(_new(created_at=base), root=workspace)
    store.apply_transition("alice", s.id, timer.start, at(0), workspace)
    session, snap = store.get_active_session("alice", Kind.FOCUS_CYCLE, at(100), workspace)
    assert session.id == s.id
    assert snap.elapsed_seconds == 100


@pytest.mark.parametrize("kind", [Kind.FOCUS_CYCLE, Kind.DECOMPOSED_TASK])
def test_parallel_creates_single_winner(workspace, at, kind):
    from focuscore.decomposed import create_task, start_task
    from focuscore.focus import create_phase

    def call(i):
        try:
            if kind == Kind.FOCUS_CYCLE:
                return create_phase("alice", f"Phase {i}", now=at(i), root=workspace)
            task = create_task("alice", f"Goal {i}", steps=[("only", 60)], now=at(i), root=workspace)
            return start_task("alice", task.id, at(i), workspace)
        except ConflictingActiveSession as e:
            return e

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(call, range(8)))

    winners = [r for r in results if isinstance(r, Session)]
    losers = [r for r in results if not isinstance(r, Session)]
    assert len(winners) == 1
    assert len(losers) == 7
    active = store.find_active_session("alice", kind, workspace)
    assert active.id == winners[0].id
