"""Focus-cycle engine: alternating focus and break phases.

Each phase is its own session. Phases that belong together share a
``cycle_group_id``; positions inside a group count up from 1 (focus, break,
focus, ...). A break belongs to the nearest focus phase before it, and the
two form one cycle. A cycle earns the daily cycle reward only once both
halves are completed, so cancelling the break after finishing the focus
phase earns nothing for that focus phase.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any

from focuscore import dispatcher, timer
from focuscore.config import Settings, load_settings
from focuscore.errors import InvalidRequest
from focuscore.models import (
    CompletionResult,
    FocusDetail,
    Kind,
    Phase,
    Reason,
    Session,
    Status,
    TimerSnapshot,
)
from focuscore.store import (
    apply_transition,
    create_session,
    get_active_session,
    list_group,
    new_id,
)
from focuscore.workspace import now_local

logger = logging.getLogger(__name__)


def new_cycle_group_id(owner: str, now: datetime) -> str:
    return f"cycle_{owner}_{int(now.timestamp() * 1000)}_{secrets.token_hex(3)}"


def default_phase_seconds(phase: str, settings: Settings) -> int:
    return settings.focus_seconds if phase == Phase.FOCUS else settings.break_seconds


def create_phase(
    owner: str,
    label: str = "",
    phase: str = Phase.FOCUS,
    planned_seconds: int | None = None,
    cycle_group_id: str | None = None,
    color: str = "",
    start: bool = True,
    now: datetime | None = None,
    root: Path | None = None,
) -> Session:
    """Create a phase session, running immediately unless ``start=False``.

    Rejected with ConflictingActiveSession while the owner has another
    running or paused focus-cycle session.
    """
    if phase not in Phase.ALL:
        raise InvalidRequest(f"Invalid phase: {phase}", details={"phase": phase})
    settings = load_settings(root)
    if planned_seconds is None:
        planned_seconds = default_phase_seconds(phase, settings)
    if not isinstance(planned_seconds, int) or not 1 <= planned_seconds <= settings.max_phase_seconds:
        raise InvalidRequest(
            f"planned_seconds must be between 1 and {settings.max_phase_seconds}",
            details={"plannedSeconds": planned_seconds},
        )
    if now is None:
        now = now_local(root)

    group_id = cycle_group_id or new_cycle_group_id(owner, now)
    session = Session(
        id=new_id(),
        owner_id=owner,
        kind=Kind.FOCUS_CYCLE,
        status=Status.RUNNING if start else Status.READY,
        created_at=now,
        started_at=now if start else None,
        planned_seconds=planned_seconds,
        label=label.strip() or ("Focus" if phase == Phase.FOCUS else "Break"),
        color=color,
        detail=FocusDetail(phase=phase, cycle_group_id=group_id),
    )

    def _position(s: Session, siblings: list[Session]) -> Session:
        s.focus.cycle_position = 1 + sum(1 for o in siblings if o.focus.cycle_group_id == group_id)
        return s

    session = create_session(session, prepare=_position, root=root)
    logger.info(
        "Created %s phase %s for %s (group %s, position %d)",
        phase, session.id, owner, group_id, session.focus.cycle_position,
    )
    return session


def start_phase(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.start, now, root)
    logger.info("Started phase %s", session_id)
    return session


def pause_phase(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.pause, now, root)
    logger.info("Paused phase %s", session_id)
    return session


def resume_phase(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.resume, now, root)
    logger.info("Resumed phase %s after %ds paused in total", session_id, session.total_paused_seconds)
    return session


def cancel_phase(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.cancel, now, root)
    logger.info("Cancelled phase %s", session_id)
    return session


def owning_focus(session: Session, group: list[Session]) -> Session | None:
    """The focus phase *session* belongs to: itself, or the latest focus before a break."""
    if session.focus.phase == Phase.FOCUS:
        return session
    earlier = [
        s for s in group
        if s.focus.phase == Phase.FOCUS and s.focus.cycle_position < session.focus.cycle_position
    ]
    return max(earlier, key=lambda s: s.focus.cycle_position, default=None)


def is_cycle_completed(session: Session, group: list[Session]) -> bool:
    """True when *session*'s focus phase and one of its breaks are both completed.

    A break belongs to the nearest focus phase before it in the group, so a
    cancelled phase earlier in the group never shifts the later pairs.
    """
    group = [session if s.id == session.id else s for s in group]
    focus = owning_focus(session, group)
    if focus is None or focus.status != Status.COMPLETED:
        return False
    for s in group:
        if s.focus.phase != Phase.BREAK or s.status != Status.COMPLETED:
            continue
        owner = owning_focus(s, group)
        if owner is not None and owner.id == focus.id:
            return True
    return False


def suggest_next_phase(session: Session, group: list[Session], settings: Settings) -> dict[str, Any]:
    """Next phase to offer the owner after *session* completes."""
    if session.focus.phase == Phase.BREAK:
        return {
            "phase": Phase.FOCUS,
            "plannedSeconds": settings.focus_seconds,
            "cycleGroupId": session.focus.cycle_group_id,
        }
    focus_done = sum(
        1 for s in group if s.focus.phase == Phase.FOCUS and s.status == Status.COMPLETED
    )
    long_break = focus_done > 0 and focus_done % settings.long_break_every == 0
    return {
        "phase": Phase.BREAK,
        "plannedSeconds": settings.long_break_seconds if long_break else settings.break_seconds,
        "longBreak": long_break,
        "cycleGroupId": session.focus.cycle_group_id,
    }


def complete_phase(
    owner: str,
    session_id: str,
    premium: bool = True,
    now: datetime | None = None,
    root: Path | None = None,
) -> CompletionResult:
    """Complete a running phase and reward the cycle if both halves are done."""
    if now is None:
        now = now_local(root)
    session = apply_transition(owner, session_id, timer.complete, now, root)
    settings = load_settings(root)
    group = list_group(session.focus.cycle_group_id, root)

    result = CompletionResult(session=session)
    result.cycle_completed = is_cycle_completed(session, group)
    if result.cycle_completed:
        result.grant = dispatcher.reward(
            owner,
            Reason.CYCLE_COMPLETION,
            f"Focus cycle completed: {session.label}",
            premium,
            now,
            root,
        )
    result.next_phase = suggest_next_phase(session, group, settings)

    dispatcher.on_session_completed(session, root)
    logger.info(
        "Completed %s phase %s for %s after %ds (cycle completed: %s)",
        session.focus.phase, session_id, owner,
        timer.raw_elapsed_seconds(session, now), result.cycle_completed,
    )
    return result


def get_active_phase(
    owner: str,
    now: datetime | None = None,
    root: Path | None = None,
) -> tuple[Session, TimerSnapshot] | None:
    return get_active_session(owner, Kind.FOCUS_CYCLE, now, root)
