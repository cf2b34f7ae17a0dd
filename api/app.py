from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from focuscore import (
    EngineError,
    InvalidRequest,
    Kind,
    Reason,
    ReminderPoller,
    add_reminder,
    add_task,
    advance_task,
    can_earn_today,
    cancel_phase,
    cancel_task,
    complete_item,
    complete_phase,
    complete_task,
    create_phase,
    create_task,
    decomposed_stats,
    focus_stats,
    get_active_session,
    get_balance,
    get_owned_session,
    list_group,
    list_ledger,
    load_items,
    load_settings,
    monthly_stats,
    owner_aggregates,
    pause_phase,
    pause_task,
    resume_phase,
    resume_task,
    snapshot,
    spend,
    start_phase,
    start_task,
)
from focuscore.decomposed import step_summary
from focuscore.dispatcher import reward
from focuscore.workspace import now_local

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "session_not_found": status.HTTP_404_NOT_FOUND,
    "item_not_found": status.HTTP_404_NOT_FOUND,
    "step_index_out_of_range": status.HTTP_404_NOT_FOUND,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "no_more_steps": status.HTTP_409_CONFLICT,
    "conflicting_active_session": status.HTTP_409_CONFLICT,
    "insufficient_balance": status.HTTP_402_PAYMENT_REQUIRED,
    "store_conflict": status.HTTP_503_SERVICE_UNAVAILABLE,
    "transient_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
}

# admin_adjustment stays off the owner-facing routes
OWNER_SPEND_REASONS = frozenset({Reason.ITEM_PURCHASE, Reason.CUSTOMIZATION})


# ── App ───────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(
        level=os.environ.get("FOCUSCORE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    poller = None
    if os.environ.get("FOCUSCORE_REMINDERS", "") == "1":
        poller = ReminderPoller()
        poller.start()
    try:
        yield
    finally:
        if poller is not None:
            poller.stop()


app = FastAPI(title="focuscore", version="0.1.0", lifespan=lifespan)
# generate(goal, total_seconds) used when a decomposed task is created without steps
app.state.step_generator = None


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    code = STATUS_BY_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"error": exc.to_dict()})


# ── Identity ──────────────────────────────────────────────────


@dataclass
class Caller:
    owner: str
    premium: bool


def get_caller(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    premium: str | None = Header(default=None, alias="X-Premium"),
) -> Caller:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return Caller(owner=user_id.strip(), premium=(premium or "").strip().lower() in ("1", "true", "yes"))


# ── Payload helpers ───────────────────────────────────────────


def _int(payload: dict[str, Any], key: str, default: int | None = None) -> int | None:
    value = payload.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRequest(f"{key} must be an integer", details={key: value})
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidRequest(f"{key} must be an integer", details={key: value}) from e


def _bool(payload: dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "0", "false", "no"):
        return value.strip().lower() in ("1", "true", "yes")
    raise InvalidRequest(f"{key} must be a boolean", details={key: value})


def _session_view(session) -> dict[str, Any]:
    return {"session": session.to_dict(), "timer": snapshot(session, now_local()).to_dict()}


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# ── Sessions ──────────────────────────────────────────────────


@app.get("/api/sessions/active")
def api_active_session(kind: str = Kind.FOCUS_CYCLE, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    """Running or paused session of *kind* with its timer snapshot."""
    if kind not in Kind.ALL:
        raise InvalidRequest(f"Unknown kind: {kind}", details={"kind": kind})
    active = get_active_session(caller.owner, kind)
    if active is None:
        return {"session": None, "timer": None}
    session, timer = active
    return {"session": session.to_dict(), "timer": timer.to_dict()}


@app.get("/api/sessions/{session_id}")
def api_get_session(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(get_owned_session(caller.owner, session_id))


# ── Focus cycles ──────────────────────────────────────────────


@app.post("/api/focus/phases")
def api_create_phase(payload: dict[str, Any] = Body(default={}), caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    """Create a focus or break phase (running unless start is false)."""
    session = create_phase(
        caller.owner,
        label=str(payload.get("label", "")),
        phase=str(payload.get("phase", "focus")),
        planned_seconds=_int(payload, "plannedSeconds"),
        cycle_group_id=payload.get("cycleGroupId"),
        color=str(payload.get("color", "")),
        start=_bool(payload, "start", True),
    )
    return _session_view(session)


@app.post("/api/focus/phases/{session_id}/start")
def api_start_phase(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(start_phase(caller.owner, session_id))


@app.post("/api/focus/phases/{session_id}/pause")
def api_pause_phase(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(pause_phase(caller.owner, session_id))


@app.post("/api/focus/phases/{session_id}/resume")
def api_resume_phase(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(resume_phase(caller.owner, session_id))


@app.post("/api/focus/phases/{session_id}/complete")
def api_complete_phase(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return complete_phase(caller.owner, session_id, premium=caller.premium).to_dict()


@app.post("/api/focus/phases/{session_id}/cancel")
def api_cancel_phase(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(cancel_phase(caller.owner, session_id))


@app.get("/api/focus/groups/{group_id}")
def api_focus_group(group_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    phases = [s for s in list_group(group_id) if s.owner_id == caller.owner]
    return {"cycleGroupId": group_id, "phases": [s.to_dict() for s in phases]}


# ── Decomposed tasks ──────────────────────────────────────────


@app.post("/api/decomposed")
def api_create_decomposed(
    request: Request,
    payload: dict[str, Any] = Body(...),
    caller: Caller = Depends(get_caller),
) -> dict[str, Any]:
    """Create a decomposed task from explicit steps, the generator, or the default split."""
    steps = payload.get("steps")
    fallback = payload.get("fallback")
    if steps is not None and not isinstance(steps, list):
        raise InvalidRequest("steps must be a list")
    if fallback is not None and not isinstance(fallback, list):
        raise InvalidRequest("fallback must be a list")
    session = create_task(
        caller.owner,
        goal=str(payload.get("goal", "")),
        steps=steps,
        total_seconds=_int(payload, "totalSeconds"),
        generator=request.app.state.step_generator,
        fallback=fallback,
        color=str(payload.get("color", "")),
    )
    return {**_session_view(session), "steps": step_summary(session)}


@app.post("/api/decomposed/{session_id}/start")
def api_start_decomposed(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(start_task(caller.owner, session_id))


@app.post("/api/decomposed/{session_id}/pause")
def api_pause_decomposed(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(pause_task(caller.owner, session_id))


@app.post("/api/decomposed/{session_id}/resume")
def api_resume_decomposed(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(resume_task(caller.owner, session_id))


@app.post("/api/decomposed/{session_id}/advance")
def api_advance_decomposed(
    session_id: str,
    payload: dict[str, Any] = Body(default={}),
    caller: Caller = Depends(get_caller),
) -> dict[str, Any]:
    result = advance_task(
        caller.owner,
        session_id,
        expected_index=_int(payload, "expectedIndex"),
        premium=caller.premium,
    )
    return result.to_dict()


@app.post("/api/decomposed/{session_id}/complete")
def api_complete_decomposed(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(complete_task(caller.owner, session_id))


@app.post("/api/decomposed/{session_id}/cancel")
def api_cancel_decomposed(session_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return _session_view(cancel_task(caller.owner, session_id))


# ── Rewards ───────────────────────────────────────────────────


@app.post("/api/rewards/grant")
def api_grant(payload: dict[str, Any] = Body(...), caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    """Claim a daily reward at its configured amount. Premium owners only."""
    reason = str(payload.get("reason", ""))
    if reason not in Reason.DAILY_LIMITED:
        raise InvalidRequest(
            f"Reason cannot be claimed by owners: {reason}",
            details={"reason": reason, "allowed": sorted(Reason.DAILY_LIMITED)},
        )
    result = reward(caller.owner, reason, str(payload.get("description", "")), caller.premium)
    return {"grant": result.to_dict() if result else None, "balance": get_balance(caller.owner)}


@app.post("/api/rewards/spend")
def api_spend(payload: dict[str, Any] = Body(...), caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    reason = str(payload.get("reason", Reason.ITEM_PURCHASE))
    if reason not in OWNER_SPEND_REASONS:
        raise InvalidRequest(
            f"Reason cannot be spent by owners: {reason}",
            details={"reason": reason, "allowed": sorted(OWNER_SPEND_REASONS)},
        )
    result = spend(caller.owner, _int(payload, "amount"), reason, str(payload.get("description", "")))
    return result.to_dict()


@app.post("/api/rewards/daily-login")
def api_daily_login(caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    result = reward(caller.owner, Reason.DAILY_LOGIN, "Daily login reward", caller.premium)
    return {"grant": result.to_dict() if result else None, "balance": get_balance(caller.owner)}


@app.get("/api/rewards/balance")
def api_balance(caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return {"ownerId": caller.owner, "balance": get_balance(caller.owner)}


@app.get("/api/rewards/ledger")
def api_ledger(page: int = 1, pageSize: int | None = None, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    page_size = pageSize or load_settings().page_size
    result = list_ledger(caller.owner, page, page_size)
    result["entries"] = [e.to_dict() for e in result["entries"]]
    return result


@app.get("/api/rewards/stats")
def api_reward_stats(year: int | None = None, month: int | None = None, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    today = now_local()
    return monthly_stats(caller.owner, year or today.year, month or today.month)


@app.get("/api/rewards/can-earn")
def api_can_earn(reason: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return {"reason": reason, "canEarn": can_earn_today(caller.owner, reason)}


# ── Tracked items ─────────────────────────────────────────────


@app.get("/api/items")
def api_list_items(caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    items = [i for i in load_items() if i.owner_id == caller.owner]
    return {"items": [i.to_dict() for i in items]}


@app.post("/api/items/tasks")
def api_add_task(payload: dict[str, Any] = Body(...), caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    item = add_task(caller.owner, str(payload.get("title", "")), str(payload.get("day", "")))
    return {"item": item.to_dict()}


@app.post("/api/items/reminders")
def api_add_reminder(payload: dict[str, Any] = Body(...), caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    weekdays = payload.get("weekdays") or []
    if not isinstance(weekdays, list):
        raise InvalidRequest("weekdays must be a list")
    item = add_reminder(caller.owner, str(payload.get("title", "")), str(payload.get("time", "")), weekdays)
    return {"item": item.to_dict()}


@app.post("/api/items/{item_id}/complete")
def api_complete_item(item_id: str, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    result = complete_item(caller.owner, item_id, premium=caller.premium)
    return {
        "item": result["item"].to_dict(),
        "alreadyCompleted": result["alreadyCompleted"],
        "grant": result["grant"].to_dict() if result["grant"] else None,
    }


# ── Statistics ────────────────────────────────────────────────


@app.get("/api/stats/focus")
def api_focus_stats(period: str = "daily", day: str | None = None, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return focus_stats(caller.owner, period, day)


@app.get("/api/stats/decomposed")
def api_decomposed_stats(period: str = "weekly", day: str | None = None, caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return decomposed_stats(caller.owner, period, day)


@app.get("/api/stats/totals")
def api_totals(caller: Caller = Depends(get_caller)) -> dict[str, Any]:
    return owner_aggregates(caller.owner)
