"""Durable session store with an atomic compare-and-set primitive.

Sessions live in ``data/sessions.json`` keyed by id. Every write happens
under an exclusive flock, so a read-check-write is indivisible across
threads and processes. Two constraints are enforced on every write:

- ``version`` must match what the writer read (otherwise StoreConflict);
- at most one session per (owner, kind) may be running or paused
  (otherwise ConflictingActiveSession).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from focuscore.config import load_settings
from focuscore.errors import (
    ConflictingActiveSession,
    SessionNotFound,
    StoreConflict,
    TransientFailure,
)
from focuscore.fileio import locked, read_json, write_json_atomic
from focuscore.models import Session, TimerSnapshot
from focuscore.timer import snapshot
from focuscore.workspace import now_local, sessions_path

logger = logging.getLogger(__name__)

Mutator = Callable[[Session], Session]


def new_id() -> str:
    return uuid.uuid4().hex


def _load(root: Path | None) -> dict[str, dict[str, Any]]:
    return read_json(sessions_path(root)).get("sessions", {})


def _save(docs: dict[str, dict[str, Any]], root: Path | None) -> None:
    write_json_atomic(sessions_path(root), {"sessions": docs})


def _check_single_active(session: Session, docs: dict[str, dict[str, Any]]) -> None:
    if not session.is_active:
        return
    for doc in docs.values():
        if doc.get("id") == session.id:
            continue
        other = Session.from_dict(doc)
        if other.owner_id == session.owner_id and other.kind == session.kind and other.is_active:
            raise ConflictingActiveSession(
                f"Owner already has an active {session.kind} session",
                details={"activeSessionId": other.id, "kind": session.kind},
            )


def create_session(
    session: Session,
    prepare: Callable[[Session, list[Session]], Session] | None = None,
    root: Path | None = None,
) -> Session:
    """Insert a new session and return it with its id and version assigned.

    Creation is rejected while the owner holds an active session of the same
    kind. *prepare* runs inside the locked region with the owner's existing
    sessions of that kind, for fields that depend on them.
    """
    with locked(sessions_path(root)):
        docs = _load(root)
        siblings = [
            Session.from_dict(d) for d in docs.values()
            if d.get("ownerId") == session.owner_id and d.get("kind") == session.kind
        ]
        active = next((s for s in siblings if s.is_active), None)
        if active is not None:
            raise ConflictingActiveSession(
                f"Owner already has an active {session.kind} session",
                details={"activeSessionId": active.id, "kind": session.kind},
            )
        s = session.copy()
        if prepare is not None:
            s = prepare(s, siblings)
        if not s.id:
            s.id = new_id()
        s.version = 1
        docs[s.id] = s.to_dict()
        _save(docs, root)
    return s


def get_session(session_id: str, root: Path | None = None) -> Session:
    doc = _load(root).get(session_id)
    if doc is None:
        raise SessionNotFound(f"Session not found: {session_id}", details={"sessionId": session_id})
    return Session.from_dict(doc)


def get_owned_session(owner: str, session_id: str, root: Path | None = None) -> Session:
    """Like get_session, but sessions of other owners are reported as missing."""
    session = get_session(session_id, root)
    if session.owner_id != owner:
        raise SessionNotFound(f"Session not found: {session_id}", details={"sessionId": session_id})
    return session


def compare_and_swap(
    session_id: str,
    expected_version: int,
    mutator: Mutator,
    root: Path | None = None,
) -> Session:
    """Apply *mutator* only if the stored version still equals *expected_version*."""
    with locked(sessions_path(root)):
        docs = _load(root)
        doc = docs.get(session_id)
        if doc is None:
            raise SessionNotFound(f"Session not found: {session_id}", details={"sessionId": session_id})
        current = Session.from_dict(doc)
        if current.version != expected_version:
            raise StoreConflict(
                "Session changed since it was read",
                details={"sessionId": session_id, "expected": expected_version, "actual": current.version},
            )
        updated = mutator(current)
        updated.id = current.id
        updated.version = current.version + 1
        _check_single_active(updated, docs)
        docs[session_id] = updated.to_dict()
        _save(docs, root)
    return updated


def apply_transition(
    owner: str,
    session_id: str,
    transition: Callable[[Session, datetime], Session],
    now: datetime | None = None,
    root: Path | None = None,
) -> Session:
    """Read, transition and compare-and-set, retrying on StoreConflict.

    Domain errors raised by *transition* propagate unchanged; only lost
    compare-and-set races are retried.
    """
    settings = load_settings(root)
    if now is None:
        now = now_local(root)
    for attempt in range(1, settings.max_retries + 1):
        current = get_owned_session(owner, session_id, root)
        try:
            return compare_and_swap(session_id, current.version, lambda s: transition(s, now), root)
        except StoreConflict:
            logger.warning(
                "Store conflict on session %s (attempt %d/%d)",
                session_id, attempt, settings.max_retries,
            )
    logger.error("Retries exhausted for session %s", session_id)
    raise TransientFailure(
        "Session is being modified concurrently, please retry",
        details={"sessionId": session_id},
    )


# ── Queries ───────────────────────────────────────────────────


def list_sessions(
    owner: str,
    kind: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    root: Path | None = None,
) -> list[Session]:
    """Owner's sessions with start <= createdAt < end, oldest first."""
    result = []
    for doc in _load(root).values():
        if doc.get("ownerId") != owner:
            continue
        if kind is not None and doc.get("kind") != kind:
            continue
        s = Session.from_dict(doc)
        if start is not None and (s.created_at is None or s.created_at < start):
            continue
        if end is not None and (s.created_at is None or s.created_at >= end):
            continue
        result.append(s)
    result.sort(key=lambda s: (s.created_at is None, s.created_at or datetime.min))
    return result


def list_group(cycle_group_id: str, root: Path | None = None) -> list[Session]:
    """All focus-cycle sessions sharing *cycle_group_id*, by cycle position."""
    group = []
    for doc in _load(root).values():
        detail = doc.get("detail") or {}
        if detail.get("cycleGroupId") == cycle_group_id:
            group.append(Session.from_dict(doc))
    group.sort(key=lambda s: s.focus.cycle_position)
    return group


def find_active_session(owner: str, kind: str, root: Path | None = None) -> Session | None:
    for doc in _load(root).values():
        if doc.get("ownerId") == owner and doc.get("kind") == kind:
            s = Session.from_dict(doc)
            if s.is_active:
                return s
    return None


def get_active_session(
    owner: str,
    kind: str,
    now: datetime | None = None,
    root: Path | None = None,
) -> tuple[Session, TimerSnapshot] | None:
    """The owner's running or paused session of *kind* with its timer view."""
    session = find_active_session(owner, kind, root)
    if session is None:
        return None
    if now is None:
        now = now_local(root)
    return session, snapshot(session, now)
