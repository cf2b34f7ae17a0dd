"""Session statistics over daily, weekly and monthly periods.

Periods are calendar ranges in the server timezone: a day, the Monday-based
week containing the anchor day, or the anchor's calendar month.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any

from focuscore.errors import InvalidRequest
from focuscore.focus import is_cycle_completed
from focuscore.models import Kind, Phase, Session, Status
from focuscore.store import list_group, list_sessions
from focuscore.timer import elapsed_seconds, raw_elapsed_seconds
from focuscore.workspace import get_timezone, now_local

PERIODS = ("daily", "weekly", "monthly")
STREAK_WINDOW_DAYS = 30


def period_bounds(period: str, anchor: date) -> tuple[date, date]:
    """Half-open [start, end) day range for *period* around *anchor*."""
    if period == "daily":
        return anchor, anchor + timedelta(days=1)
    if period == "weekly":
        start = anchor - timedelta(days=anchor.weekday())
        return start, start + timedelta(days=7)
    if period == "monthly":
        start = anchor.replace(day=1)
        if start.month == 12:
            return start, start.replace(year=start.year + 1, month=1)
        return start, start.replace(month=start.month + 1)
    raise InvalidRequest(f"Unknown period: {period}", details={"period": period, "allowed": list(PERIODS)})


def _anchor(day: str | None, now: datetime | None, root: Path | None) -> date:
    if day:
        try:
            return date.fromisoformat(day)
        except ValueError as e:
            raise InvalidRequest(f"Invalid day: {day}", details={"day": day}) from e
    if now is None:
        now = now_local(root)
    return now.astimezone(get_timezone(root)).date()


def _sessions_between(owner: str, kind: str, start: date, end: date, root: Path | None) -> list[Session]:
    tz = get_timezone(root)
    return list_sessions(
        owner,
        kind,
        datetime.combine(start, time.min, tzinfo=tz),
        datetime.combine(end, time.min, tzinfo=tz),
        root,
    )


def _local_day(session: Session, root: Path | None) -> str:
    return session.created_at.astimezone(get_timezone(root)).date().isoformat()


def best_streak(days_with_focus: set[str], start: date, end: date) -> int:
    """Longest run of consecutive days in [start, end) present in *days_with_focus*."""
    best = current = 0
    d = start
    while d < end:
        if d.isoformat() in days_with_focus:
            current += 1
            best = max(best, current)
        else:
            current = 0
        d += timedelta(days=1)
    return best


def focus_stats(
    owner: str,
    period: str = "daily",
    day: str | None = None,
    now: datetime | None = None,
    root: Path | None = None,
) -> dict[str, Any]:
    """Focus-phase totals, completion rate and breakdowns for one period."""
    anchor = _anchor(day, now, root)
    if now is None:
        now = now_local(root)
    start, end = period_bounds(period, anchor)
    sessions = _sessions_between(owner, Kind.FOCUS_CYCLE, start, end, root)
    focus = [s for s in sessions if s.focus.phase == Phase.FOCUS]
    completed = [s for s in focus if s.status == Status.COMPLETED]
    finished = [s for s in focus if s.is_terminal]

    # Whole groups, so a break that crossed the period boundary still counts
    groups = {gid: list_group(gid, root) for gid in {s.focus.cycle_group_id for s in completed}}
    cycles = sum(1 for s in completed if is_cycle_completed(s, groups[s.focus.cycle_group_id]))

    by_goal: dict[str, dict[str, int]] = defaultdict(lambda: {"phases": 0, "completed": 0, "seconds": 0})
    by_color: dict[str, dict[str, int]] = defaultdict(lambda: {"phases": 0, "completed": 0, "seconds": 0})
    per_day: dict[str, dict[str, int]] = defaultdict(lambda: {"focusSeconds": 0, "completedPhases": 0})
    for s in focus:
        seconds = elapsed_seconds(s, now)
        for bucket in (by_goal[s.label], by_color[s.color or "none"]):
            bucket["phases"] += 1
            bucket["seconds"] += seconds
            if s.status == Status.COMPLETED:
                bucket["completed"] += 1
        d = per_day[_local_day(s, root)]
        d["focusSeconds"] += seconds
        if s.status == Status.COMPLETED:
            d["completedPhases"] += 1

    daily_progress = []
    d = start
    while d < end:
        daily_progress.append({"date": d.isoformat(), **per_day.get(d.isoformat(), {"focusSeconds": 0, "completedPhases": 0})})
        d += timedelta(days=1)

    streak_start = end - timedelta(days=STREAK_WINDOW_DAYS)
    streak_sessions = _sessions_between(owner, Kind.FOCUS_CYCLE, streak_start, end, root)
    streak_days = {
        _local_day(s, root) for s in streak_sessions
        if s.focus.phase == Phase.FOCUS and s.status == Status.COMPLETED
    }

    return {
        "period": period,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "focusPhases": len(focus),
        "completedFocusPhases": len(completed),
        "completedCycles": cycles,
        "totalFocusSeconds": sum(elapsed_seconds(s, now) for s in focus),
        "completionRate": round(len(completed) / len(finished), 3) if finished else 0.0,
        "byGoal": dict(by_goal),
        "byColor": dict(by_color),
        "dailyProgress": daily_progress,
        "bestStreak": best_streak(streak_days, streak_start, end),
    }


def decomposed_stats(
    owner: str,
    period: str = "weekly",
    day: str | None = None,
    now: datetime | None = None,
    root: Path | None = None,
) -> dict[str, Any]:
    """Decomposed-task counts and mean performance for one period."""
    start, end = period_bounds(period, _anchor(day, now, root))
    sessions = _sessions_between(owner, Kind.DECOMPOSED_TASK, start, end, root)
    completed = [s for s in sessions if s.status == Status.COMPLETED]
    performances = [s.decomposed.performance for s in completed if s.decomposed.performance]

    def _mean(values: list[float]) -> float:
        return round(sum(values) / len(values), 4) if values else 0.0

    return {
        "period": period,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "sessions": len(sessions),
        "completed": len(completed),
        "cancelled": sum(1 for s in sessions if s.status == Status.CANCELLED),
        "aiGenerated": sum(1 for s in sessions if s.decomposed.ai_generated),
        "totalSeconds": sum(raw_elapsed_seconds(s, s.completed_at) for s in completed),
        "meanEfficiency": _mean([p.efficiency for p in performances]),
        "meanStepAccuracy": _mean([p.step_accuracy for p in performances]),
    }
