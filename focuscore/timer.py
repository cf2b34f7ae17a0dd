"""Time arithmetic and the shared session state machine.

Transition functions are pure: each takes a Session and the current time and
returns a new Session (the input is never mutated) or raises
InvalidTransition. The store applies them under compare-and-set.

Elapsed time, used everywhere:
    elapsed = (end - started_at) - total_paused_seconds
where ``end`` is now for a running session, paused_at for a paused one and
completed_at for a terminal one; the result is clamped to
[0, planned_seconds].
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from focuscore.errors import InvalidTransition
from focuscore.models import Kind, Session, Status, TimerSnapshot


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from *start* to *end*, never negative."""
    return max(0, int((end - start).total_seconds()))


def format_clock(seconds: int) -> str:
    """Seconds as MM:SS (minutes may exceed 59)."""
    if seconds < 0:
        return "00:00"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def _end_marker(session: Session, now: datetime) -> datetime:
    if session.is_terminal and session.completed_at is not None:
        return session.completed_at
    if session.status == Status.PAUSED and session.paused_at is not None:
        return session.paused_at
    return now


def raw_elapsed_seconds(session: Session, now: datetime) -> int:
    """Unclamped active seconds since start (pauses excluded)."""
    if session.started_at is None:
        return 0
    end = _end_marker(session, now)
    return max(0, seconds_between(session.started_at, end) - session.total_paused_seconds)


def elapsed_seconds(session: Session, now: datetime) -> int:
    return min(raw_elapsed_seconds(session, now), session.planned_seconds)


def remaining_seconds(session: Session, now: datetime) -> int:
    return session.planned_seconds - elapsed_seconds(session, now)


def progress_percent(elapsed: int, planned: int) -> int:
    if planned <= 0:
        return 0
    return min(100, max(0, round(elapsed * 100 / planned)))


# ── Transitions ───────────────────────────────────────────────


def _reject(session: Session, event: str) -> InvalidTransition:
    return InvalidTransition(
        f"Cannot {event} a session that is {session.status}",
        details={"sessionId": session.id, "status": session.status, "event": event},
    )


def start(session: Session, now: datetime) -> Session:
    if session.status != Status.READY:
        raise _reject(session, "start")
    s = session.copy()
    s.status = Status.RUNNING
    s.started_at = now
    return s


def pause(session: Session, now: datetime) -> Session:
    if session.status != Status.RUNNING:
        raise _reject(session, "pause")
    s = session.copy()
    s.status = Status.PAUSED
    s.paused_at = now
    return s


def resume(session: Session, now: datetime) -> Session:
    if session.status != Status.PAUSED or session.paused_at is None:
        raise _reject(session, "resume")
    s = session.copy()
    s.total_paused_seconds += seconds_between(session.paused_at, now)
    s.paused_at = None
    s.status = Status.RUNNING
    return s


def complete(session: Session, now: datetime) -> Session:
    if session.status != Status.RUNNING:
        raise _reject(session, "complete")
    s = session.copy()
    s.status = Status.COMPLETED
    s.completed_at = now
    return s


def cancel(session: Session, now: datetime) -> Session:
    if session.is_terminal:
        raise _reject(session, "cancel")
    s = session.copy()
    if s.status == Status.PAUSED and s.paused_at is not None:
        s.total_paused_seconds += seconds_between(s.paused_at, now)
        s.paused_at = None
    s.status = Status.CANCELLED
    s.completed_at = now
    return s


# ── Snapshot ──────────────────────────────────────────────────


def _step_view(session: Session, elapsed: int) -> dict[str, Any] | None:
    detail = session.decomposed
    step = detail.current_step
    if step is None:
        return None
    # Step timing derives from cumulative planned durations, not per-step clocks
    before = sum(s.planned_seconds for s in detail.steps[: detail.current_step_index])
    step_elapsed = min(max(0, elapsed - before), step.planned_seconds)
    return {
        "index": detail.current_step_index,
        "name": step.name,
        "plannedSeconds": step.planned_seconds,
        "elapsedSeconds": step_elapsed,
        "remainingSeconds": step.planned_seconds - step_elapsed,
        "overdue": elapsed >= before + step.planned_seconds,
    }


def snapshot(session: Session, now: datetime) -> TimerSnapshot:
    """Read-only timer view of *session* at *now*."""
    elapsed = elapsed_seconds(session, now)
    remaining = session.planned_seconds - elapsed
    current_step = None
    if session.kind == Kind.DECOMPOSED_TASK:
        current_step = _step_view(session, elapsed)
    return TimerSnapshot(
        status=session.status,
        elapsed_seconds=elapsed,
        remaining_seconds=remaining,
        progress=100 if session.status == Status.COMPLETED else progress_percent(elapsed, session.planned_seconds),
        is_expired=session.started_at is not None and remaining == 0,
        current_step=current_step,
    )
