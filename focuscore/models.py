"""Typed dataclasses for the focuscore data model.

All models use from_dict/to_dict for JSON/YAML serialization.
camelCase in JSON is mapped to snake_case in Python.
Unknown keys are ignored; missing keys use defaults.
Timestamps are timezone-aware datetimes, stored as ISO-8601 strings.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union


# ── Vocabularies ──────────────────────────────────────────────


class Kind:
    FOCUS_CYCLE = "focus_cycle"
    DECOMPOSED_TASK = "decomposed_task"
    ALL = frozenset({FOCUS_CYCLE, DECOMPOSED_TASK})


class Status:
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ACTIVE = frozenset({RUNNING, PAUSED})
    TERMINAL = frozenset({COMPLETED, CANCELLED})


class Phase:
    FOCUS = "focus"
    BREAK = "break"
    ALL = frozenset({FOCUS, BREAK})


class EntryType:
    EARN = "earn"
    SPEND = "spend"


class Reason:
    CYCLE_COMPLETION = "cycle_completion"
    DECOMPOSED_COMPLETION = "decomposed_completion"
    DAILY_TASKS = "daily_tasks"
    DAILY_REMINDERS = "daily_reminders"
    DAILY_LOGIN = "daily_login"
    SPECIAL_EVENT = "special_event"
    ITEM_PURCHASE = "item_purchase"
    CUSTOMIZATION = "customization"
    ADMIN_ADJUSTMENT = "admin_adjustment"

    # At most one earn per (owner, reason, calendar day)
    DAILY_LIMITED = frozenset({
        CYCLE_COMPLETION,
        DECOMPOSED_COMPLETION,
        DAILY_TASKS,
        DAILY_REMINDERS,
        DAILY_LOGIN,
    })
    EARN = DAILY_LIMITED | {SPECIAL_EVENT, ADMIN_ADJUSTMENT}
    SPEND = frozenset({ITEM_PURCHASE, CUSTOMIZATION, ADMIN_ADJUSTMENT})


class ItemType:
    TASK = "task"
    REMINDER = "reminder"
    ALL = frozenset({TASK, REMINDER})


def dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def dt_from_str(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# ── Sessions ──────────────────────────────────────────────────


@dataclass
class Step:
    name: str = ""
    planned_seconds: int = 0
    order: int = 0
    completed: bool = False
    completed_at: datetime | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Step:
        return cls(
            name=str(d.get("name", "")),
            planned_seconds=int(d.get("plannedSeconds", d.get("planned_seconds", 0))),
            order=int(d.get("order", 0)),
            completed=bool(d.get("completed", False)),
            completed_at=dt_from_str(d.get("completedAt", d.get("completed_at"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "plannedSeconds": self.planned_seconds,
            "order": self.order,
            "completed": self.completed,
            "completedAt": dt_to_str(self.completed_at),
        }


@dataclass
class Performance:
    planned_seconds: int = 0
    actual_seconds: int = 0
    efficiency: float = 0.0
    step_accuracy: float = 0.0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Performance:
        return cls(
            planned_seconds=int(d.get("plannedSeconds", 0)),
            actual_seconds=int(d.get("actualSeconds", 0)),
            efficiency=float(d.get("efficiency", 0.0)),
            step_accuracy=float(d.get("stepAccuracy", 0.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "plannedSeconds": self.planned_seconds,
            "actualSeconds": self.actual_seconds,
            "efficiency": round(self.efficiency, 4),
            "stepAccuracy": round(self.step_accuracy, 4),
        }


@dataclass
class FocusDetail:
    phase: str = Phase.FOCUS
    cycle_position: int = 1
    cycle_group_id: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> FocusDetail:
        return cls(
            phase=str(d.get("phase", Phase.FOCUS)),
            cycle_position=int(d.get("cyclePosition", 1)),
            cycle_group_id=str(d.get("cycleGroupId", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "cyclePosition": self.cycle_position,
            "cycleGroupId": self.cycle_group_id,
        }


@dataclass
class DecomposedDetail:
    steps: list[Step] = field(default_factory=list)
    current_step_index: int = 0
    ai_generated: bool = False
    performance: Performance | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DecomposedDetail:
        perf = d.get("performance")
        return cls(
            steps=[Step.from_dict(s) for s in (d.get("steps") or [])],
            current_step_index=int(d.get("currentStepIndex", 0)),
            ai_generated=bool(d.get("aiGenerated", False)),
            performance=Performance.from_dict(perf) if perf else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "currentStepIndex": self.current_step_index,
            "aiGenerated": self.ai_generated,
            "performance": self.performance.to_dict() if self.performance else None,
        }

    @property
    def current_step(self) -> Step | None:
        if self.current_step_index >= len(self.steps):
            return None
        return self.steps[self.current_step_index]


SessionDetail = Union[FocusDetail, DecomposedDetail]


@dataclass
class Session:
    """One timed activity. ``detail`` holds the kind-specific variant."""

    id: str = ""
    owner_id: str = ""
    kind: str = Kind.FOCUS_CYCLE
    status: str = Status.READY
    created_at: datetime | None = None
    planned_seconds: int = 0
    label: str = ""
    color: str = ""
    started_at: datetime | None = None
    paused_at: datetime | None = None
    completed_at: datetime | None = None
    total_paused_seconds: int = 0
    version: int = 0
    detail: SessionDetail = field(default_factory=FocusDetail)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Session:
        kind = str(d.get("kind", Kind.FOCUS_CYCLE))
        raw_detail = d.get("detail") or {}
        if kind == Kind.DECOMPOSED_TASK:
            detail: SessionDetail = DecomposedDetail.from_dict(raw_detail)
        else:
            detail = FocusDetail.from_dict(raw_detail)
        return cls(
            id=str(d.get("id", "")),
            owner_id=str(d.get("ownerId", "")),
            kind=kind,
            status=str(d.get("status", Status.READY)),
            created_at=dt_from_str(d.get("createdAt")),
            planned_seconds=int(d.get("plannedSeconds", 0)),
            label=str(d.get("label", "")),
            color=str(d.get("color", "")),
            started_at=dt_from_str(d.get("startedAt")),
            paused_at=dt_from_str(d.get("pausedAt")),
            completed_at=dt_from_str(d.get("completedAt")),
            total_paused_seconds=int(d.get("totalPausedSeconds", 0)),
            version=int(d.get("version", 0)),
            detail=detail,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "kind": self.kind,
            "status": self.status,
            "createdAt": dt_to_str(self.created_at),
            "plannedSeconds": self.planned_seconds,
            "label": self.label,
            "color": self.color,
            "startedAt": dt_to_str(self.started_at),
            "pausedAt": dt_to_str(self.paused_at),
            "completedAt": dt_to_str(self.completed_at),
            "totalPausedSeconds": self.total_paused_seconds,
            "version": self.version,
            "detail": self.detail.to_dict(),
        }

    def copy(self) -> Session:
        return copy.deepcopy(self)

    @property
    def is_active(self) -> bool:
        return self.status in Status.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in Status.TERMINAL

    @property
    def focus(self) -> FocusDetail:
        if not isinstance(self.detail, FocusDetail):
            raise TypeError(f"Session {self.id} is not a focus-cycle session")
        return self.detail

    @property
    def decomposed(self) -> DecomposedDetail:
        if not isinstance(self.detail, DecomposedDetail):
            raise TypeError(f"Session {self.id} is not a decomposed-task session")
        return self.detail


# ── Ledger ────────────────────────────────────────────────────


@dataclass
class LedgerEntry:
    id: str = ""
    owner_id: str = ""
    type: str = EntryType.EARN
    amount: int = 0
    reason: str = ""
    description: str = ""
    balance_after: int = 0
    created_at: datetime | None = None
    dedupe_key: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LedgerEntry:
        return cls(
            id=str(d.get("id", "")),
            owner_id=str(d.get("ownerId", "")),
            type=str(d.get("type", EntryType.EARN)),
            amount=int(d.get("amount", 0)),
            reason=str(d.get("reason", "")),
            description=str(d.get("description", "")),
            balance_after=int(d.get("balanceAfter", 0)),
            created_at=dt_from_str(d.get("createdAt")),
            dedupe_key=d.get("dedupeKey"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "type": self.type,
            "amount": self.amount,
            "reason": self.reason,
            "description": self.description,
            "balanceAfter": self.balance_after,
            "createdAt": dt_to_str(self.created_at),
            "dedupeKey": self.dedupe_key,
        }

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type == EntryType.EARN else -self.amount


@dataclass
class GrantResult:
    status: str = "granted"  # granted, already_granted
    entry: LedgerEntry | None = None
    balance_after: int = 0

    GRANTED = "granted"
    ALREADY_GRANTED = "already_granted"

    @property
    def granted(self) -> bool:
        return self.status == self.GRANTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "entry": self.entry.to_dict() if self.entry else None,
            "balanceAfter": self.balance_after,
        }


@dataclass
class SpendResult:
    entry: LedgerEntry
    balance_after: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"entry": self.entry.to_dict(), "balanceAfter": self.balance_after}


# ── Engine results ────────────────────────────────────────────


@dataclass
class CompletionResult:
    session: Session
    cycle_completed: bool = False
    grant: GrantResult | None = None
    next_phase: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "cycleCompleted": self.cycle_completed,
            "grant": self.grant.to_dict() if self.grant else None,
            "nextPhase": self.next_phase,
        }


@dataclass
class AdvanceResult:
    session: Session
    step: Step
    finished: bool = False
    grant: GrantResult | None = None

    def to_dict(self) -> dict[str, Any]:
        perf = self.session.decomposed.performance
        return {
            "session": self.session.to_dict(),
            "step": self.step.to_dict(),
            "finished": self.finished,
            "performance": perf.to_dict() if perf else None,
            "grant": self.grant.to_dict() if self.grant else None,
        }


@dataclass
class TimerSnapshot:
    status: str = Status.READY
    elapsed_seconds: int = 0
    remaining_seconds: int = 0
    progress: int = 0
    is_expired: bool = False
    current_step: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        from focuscore.timer import format_clock

        d: dict[str, Any] = {
            "status": self.status,
            "elapsedSeconds": self.elapsed_seconds,
            "remainingSeconds": self.remaining_seconds,
            "formattedElapsed": format_clock(self.elapsed_seconds),
            "formattedRemaining": format_clock(self.remaining_seconds),
            "progress": self.progress,
            "isExpired": self.is_expired,
        }
        if self.current_step is not None:
            d["currentStep"] = self.current_step
        return d


# ── Tracked items ─────────────────────────────────────────────


@dataclass
class TrackedItem:
    """A task scheduled for a day, or a reminder repeating on weekdays."""

    id: str = ""
    owner_id: str = ""
    item_type: str = ItemType.TASK
    title: str = ""
    # task fields
    day: str | None = None  # ISO date
    completed: bool = False
    completed_at: datetime | None = None
    # reminder fields
    time: str | None = None  # HH:MM
    weekdays: list[int] = field(default_factory=list)  # 0 = Monday
    active: bool = True
    completions: list[str] = field(default_factory=list)  # ISO dates
    last_notified_at: datetime | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TrackedItem:
        return cls(
            id=str(d.get("id", "")),
            owner_id=str(d.get("owner_id", "")),
            item_type=str(d.get("type", ItemType.TASK)),
            title=str(d.get("title", "")),
            day=str(d["day"]) if d.get("day") else None,
            completed=bool(d.get("completed", False)),
            completed_at=dt_from_str(d.get("completed_at")),
            time=str(d["time"]) if d.get("time") else None,
            weekdays=[int(w) for w in (d.get("weekdays") or [])],
            active=bool(d.get("active", True)),
            completions=[str(c) for c in (d.get("completions") or [])],
            last_notified_at=dt_from_str(d.get("last_notified_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "owner_id": self.owner_id,
            "type": self.item_type,
            "title": self.title,
        }
        if self.item_type == ItemType.TASK:
            d["day"] = self.day
            d["completed"] = self.completed
            if self.completed_at:
                d["completed_at"] = dt_to_str(self.completed_at)
        else:
            d["time"] = self.time
            d["weekdays"] = list(self.weekdays)
            d["active"] = self.active
            if self.completions:
                d["completions"] = list(self.completions)
            if self.last_notified_at:
                d["last_notified_at"] = dt_to_str(self.last_notified_at)
        return d

    def is_scheduled_on(self, day: str) -> bool:
        if self.item_type == ItemType.TASK:
            return self.day == day
        weekday = datetime.fromisoformat(day).weekday()
        return self.active and weekday in self.weekdays

    def is_completed_on(self, day: str) -> bool:
        if self.item_type == ItemType.TASK:
            return self.completed
        return day in self.completions
