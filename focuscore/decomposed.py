"""Decomposed-task engine: one timed session split into ordered steps.

The session's single ``started_at`` anchors all step timing; the timer
derives the current step's elapsed time from cumulative planned durations.
Steps only move forward through an explicit ``advance``. An overdue step is
reported by the timer snapshot but never skipped automatically.

Step lists come from the caller, from a step-content generator, or from a
default prepare / work / wrap-up split when generation fails.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Union

from focuscore import dispatcher, timer
from focuscore.errors import (
    ContentGenerationFailed,
    InvalidRequest,
    InvalidTransition,
    NoMoreSteps,
    StepIndexOutOfRange,
)
from focuscore.models import (
    AdvanceResult,
    DecomposedDetail,
    Kind,
    Performance,
    Reason,
    Session,
    Status,
    Step,
    TimerSnapshot,
)
from focuscore.store import apply_transition, create_session, get_active_session, new_id
from focuscore.workspace import now_local

logger = logging.getLogger(__name__)

MAX_STEP_NAME = 50

StepInput = Union[Step, dict, tuple]
# generate(goal, total_seconds) -> list of step inputs, or raw model text
StepGenerator = Callable[[str, int], Union[str, list]]


# ── Step content ──────────────────────────────────────────────


def default_steps(goal: str, total_seconds: int) -> list[Step]:
    """Prepare 10%, the goal itself 80%, wrap up 10%; every step at least one second."""
    edge = max(1, round(total_seconds * 0.1))
    main = max(1, total_seconds - 2 * edge)
    return [
        Step(name="Prepare", planned_seconds=edge, order=0),
        Step(name=(goal.strip() or "Work")[:MAX_STEP_NAME], planned_seconds=main, order=1),
        Step(name="Wrap up", planned_seconds=edge, order=2),
    ]


def _coerce_step(raw: StepInput, position: int) -> Step:
    if isinstance(raw, Step):
        return Step(name=raw.name, planned_seconds=raw.planned_seconds, order=raw.order)
    if isinstance(raw, tuple):
        if len(raw) != 2:
            raise InvalidRequest(f"Step tuples are (name, seconds), got {raw!r}")
        name, seconds = raw
        return Step(name=str(name).strip(), planned_seconds=seconds, order=position)
    if isinstance(raw, dict):
        seconds = raw.get("plannedSeconds", raw.get("planned_seconds"))
        if seconds is None and "minutes" in raw:
            seconds = raw["minutes"] * 60
        return Step(
            name=str(raw.get("name", raw.get("title", ""))).strip(),
            planned_seconds=seconds,
            order=raw.get("order", position),
        )
    raise InvalidRequest(f"Unsupported step value: {raw!r}")


def build_steps(raw_steps: Iterable[StepInput]) -> list[Step]:
    """Validate a step list and return it sorted by order.

    At least one step, every step named with plannedSeconds >= 1, and the
    orders must be exactly 0..n-1.
    """
    steps = [_coerce_step(raw, i) for i, raw in enumerate(raw_steps)]
    if not steps:
        raise InvalidRequest("A decomposed task needs at least one step")
    for step in steps:
        if not step.name:
            raise InvalidRequest("Every step needs a name", details={"order": step.order})
        if isinstance(step.planned_seconds, bool) or not isinstance(step.planned_seconds, int) \
                or step.planned_seconds < 1:
            raise InvalidRequest(
                f"Step '{step.name}' must be planned for at least one second",
                details={"name": step.name, "plannedSeconds": step.planned_seconds},
            )
        step.name = step.name[:MAX_STEP_NAME]
    orders = sorted(step.order for step in steps)
    if orders != list(range(len(steps))):
        raise InvalidRequest(
            "Step orders must be 0..n-1 without gaps or duplicates",
            details={"orders": [step.order for step in steps]},
        )
    return sorted(steps, key=lambda s: s.order)


def parse_generated_steps(content: str) -> list[Step]:
    """Extract a JSON array of steps from generator output (may be wrapped in markdown)."""
    content = content.strip()
    if "```" in content:
        match = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if match:
            content = match.group(1).strip()
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ContentGenerationFailed(f"Could not parse generated steps: {e}") from e
    if not isinstance(data, list):
        raise ContentGenerationFailed("Expected a JSON array of steps")
    try:
        return build_steps(data)
    except InvalidRequest as e:
        raise ContentGenerationFailed(f"Generated steps are invalid: {e}", details=e.details) from e


def resolve_steps(
    goal: str,
    total_seconds: int | None = None,
    steps: Iterable[StepInput] | None = None,
    generator: StepGenerator | None = None,
    fallback: Iterable[StepInput] | None = None,
) -> tuple[list[Step], bool]:
    """Pick the step list for a new task. Returns (steps, ai_generated).

    Explicit *steps* win. Otherwise *generator* is asked; a generator failure
    falls back to *fallback*, or to default_steps when none is given.
    Generators report failure by raising ContentGenerationFailed.
    """
    if steps is not None:
        return build_steps(steps), False

    if generator is not None:
        if total_seconds is None:
            raise InvalidRequest("total_seconds is required to generate steps")
        try:
            generated = generator(goal, total_seconds)
            if isinstance(generated, str):
                return parse_generated_steps(generated), True
            return build_steps(generated), True
        except (ContentGenerationFailed, InvalidRequest) as e:
            logger.warning("Step generation failed for %r, using fallback: %s", goal, e)

    if fallback is not None:
        return build_steps(fallback), False
    if total_seconds is None or total_seconds < 1:
        raise InvalidRequest("Either steps or a positive total_seconds is required")
    return default_steps(goal, total_seconds), False


# ── Performance ───────────────────────────────────────────────


def compute_performance(session: Session, now: datetime) -> Performance:
    """Efficiency and per-step accuracy for a finished session.

    efficiency = planned / actual, where values above 1 mean the owner was
    faster than planned. A step's actual time is the wall-clock gap since
    the previous step completed (or since the session started).
    """
    actual = timer.raw_elapsed_seconds(session, now)
    efficiency = session.planned_seconds / max(1, actual)

    scores = []
    previous = session.started_at
    for step in sorted(session.decomposed.steps, key=lambda s: s.order):
        if not step.completed or step.completed_at is None or previous is None:
            continue
        gap = timer.seconds_between(previous, step.completed_at)
        scores.append(1.0 if gap == 0 else min(1.0, step.planned_seconds / gap))
        previous = step.completed_at

    return Performance(
        planned_seconds=session.planned_seconds,
        actual_seconds=actual,
        efficiency=efficiency,
        step_accuracy=sum(scores) / len(scores) if scores else 0.0,
    )


# ── Transitions ───────────────────────────────────────────────


def _advance(session: Session, now: datetime, expected_index: int | None = None) -> Session:
    detail = session.decomposed
    if expected_index is not None:
        if not 0 <= expected_index < len(detail.steps):
            raise StepIndexOutOfRange(
                f"Step index {expected_index} is out of range",
                details={"index": expected_index, "stepCount": len(detail.steps)},
            )
        if expected_index != detail.current_step_index:
            raise InvalidTransition(
                f"Step {expected_index} is not the current step",
                details={"index": expected_index, "currentStepIndex": detail.current_step_index},
            )
    if detail.current_step_index >= len(detail.steps):
        raise NoMoreSteps("All steps are already completed", details={"sessionId": session.id})
    if session.status != Status.RUNNING:
        raise InvalidTransition(
            f"Cannot advance a session that is {session.status}",
            details={"sessionId": session.id, "status": session.status, "event": "advance"},
        )

    s = session.copy()
    step = s.decomposed.steps[s.decomposed.current_step_index]
    step.completed = True
    step.completed_at = now
    s.decomposed.current_step_index += 1
    if s.decomposed.current_step_index == len(s.decomposed.steps):
        s = timer.complete(s, now)
        s.decomposed.performance = compute_performance(s, now)
    return s


def _finish_early(session: Session, now: datetime) -> Session:
    s = timer.complete(session, now)
    s.decomposed.performance = compute_performance(s, now)
    return s


# ── Operations ────────────────────────────────────────────────


def create_task(
    owner: str,
    goal: str,
    steps: Iterable[StepInput] | None = None,
    total_seconds: int | None = None,
    generator: StepGenerator | None = None,
    fallback: Iterable[StepInput] | None = None,
    color: str = "",
    now: datetime | None = None,
    root: Path | None = None,
) -> Session:
    """Create a Ready decomposed task.

    Rejected with ConflictingActiveSession while the owner has another
    running or paused decomposed task.
    """
    if not goal.strip():
        raise InvalidRequest("goal must not be empty")
    resolved, ai_generated = resolve_steps(goal, total_seconds, steps, generator, fallback)
    if now is None:
        now = now_local(root)

    session = Session(
        id=new_id(),
        owner_id=owner,
        kind=Kind.DECOMPOSED_TASK,
        status=Status.READY,
        created_at=now,
        planned_seconds=sum(step.planned_seconds for step in resolved),
        label=goal.strip(),
        color=color,
        detail=DecomposedDetail(steps=resolved, ai_generated=ai_generated),
    )
    session = create_session(session, root=root)
    logger.info(
        "Created decomposed task %s for %s with %d step(s), %ds planned",
        session.id, owner, len(resolved), session.planned_seconds,
    )
    return session


def start_task(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.start, now, root)
    logger.info("Started decomposed task %s", session_id)
    return session


def pause_task(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.pause, now, root)
    logger.info("Paused decomposed task %s", session_id)
    return session


def resume_task(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.resume, now, root)
    logger.info("Resumed decomposed task %s", session_id)
    return session


def cancel_task(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    session = apply_transition(owner, session_id, timer.cancel, now, root)
    logger.info("Cancelled decomposed task %s", session_id)
    return session


def advance_task(
    owner: str,
    session_id: str,
    expected_index: int | None = None,
    premium: bool = True,
    now: datetime | None = None,
    root: Path | None = None,
) -> AdvanceResult:
    """Complete the current step; completing the last one finishes the session.

    Passing *expected_index* makes a retried request fail cleanly instead of
    completing the following step as well.
    """
    if now is None:
        now = now_local(root)
    session = apply_transition(
        owner, session_id, lambda s, t: _advance(s, t, expected_index), now, root
    )
    detail = session.decomposed
    step = detail.steps[detail.current_step_index - 1]
    result = AdvanceResult(session=session, step=step, finished=session.status == Status.COMPLETED)
    logger.info("Completed step %d (%s) of task %s", step.order, step.name, session_id)

    if result.finished:
        result.grant = dispatcher.reward(
            owner,
            Reason.DECOMPOSED_COMPLETION,
            f"Decomposed task completed: {session.label}",
            premium,
            now,
            root,
        )
        dispatcher.on_session_completed(session, root)
        logger.info(
            "Finished decomposed task %s (efficiency %.2f, step accuracy %.2f)",
            session_id, detail.performance.efficiency, detail.performance.step_accuracy,
        )
    return result


def complete_task(owner: str, session_id: str, now: datetime | None = None, root: Path | None = None) -> Session:
    """Finish a running task before its last step; remaining steps stay open and earn nothing."""
    if now is None:
        now = now_local(root)
    session = apply_transition(owner, session_id, _finish_early, now, root)
    dispatcher.on_session_completed(session, root)
    logger.info(
        "Completed decomposed task %s early at step %d of %d",
        session_id, session.decomposed.current_step_index, len(session.decomposed.steps),
    )
    return session


def get_active_task(
    owner: str,
    now: datetime | None = None,
    root: Path | None = None,
) -> tuple[Session, TimerSnapshot] | None:
    return get_active_session(owner, Kind.DECOMPOSED_TASK, now, root)


def step_summary(session: Session) -> list[dict[str, Any]]:
    """Steps with the index of the current one flagged, for display."""
    current = session.decomposed.current_step_index
    return [
        {**step.to_dict(), "current": i == current and not session.is_terminal}
        for i, step in enumerate(session.decomposed.steps)
    ]
