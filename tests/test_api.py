"""Tests for api/app.py — HTTP adapter and error mapping."""

import pytest
from fastapi.testclient import TestClient

from api.app import app
from focuscore import ledger
from focuscore.errors import ContentGenerationFailed
from focuscore.models import Reason

ALICE = {"X-User-Id": "alice", "X-Premium": "true"}
FREE = {"X-User-Id": "frank"}


@pytest.fixture
def client(workspace):
    app.state.step_generator = None
    return TestClient(app)


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_missing_identity(client):
    assert client.get("/api/rewards/balance").status_code == 401


def test_focus_flow(client):
    r = client.post("/api/focus/phases", json={"label": "Deep work", "plannedSeconds": 1500}, headers=ALICE)
    assert r.status_code == 200
    session = r.json()["session"]
    assert session["status"] == "running"
    assert r.json()["timer"]["remainingSeconds"] <= 1500

    active = client.get("/api/sessions/active", params={"kind": "focus_cycle"}, headers=ALICE).json()
    assert active["session"]["id"] == session["id"]

    r = client.post("/api/focus/phases", json={"label": "Second"}, headers=ALICE)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "conflicting_active_session"

    sid = session["id"]
    assert client.post(f"/api/focus/phases/{sid}/pause", headers=ALICE).json()["session"]["status"] == "paused"
    assert client.post(f"/api/focus/phases/{sid}/resume", headers=ALICE).json()["session"]["status"] == "running"
    done = client.post(f"/api/focus/phases/{sid}/complete", headers=ALICE).json()
    assert done["session"]["status"] == "completed"
    assert done["nextPhase"]["phase"] == "break"

    r = client.post(f"/api/focus/phases/{sid}/complete", headers=ALICE)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_transition"


def test_cycle_reward_via_api(client):
    focus = client.post("/api/focus/phases", json={"label": "Work"}, headers=ALICE).json()["session"]
    client.post(f"/api/focus/phases/{focus['id']}/complete", headers=ALICE)
    brk = client.post(
        "/api/focus/phases",
        json={"phase": "break", "cycleGroupId": focus["detail"]["cycleGroupId"]},
        headers=ALICE,
    ).json()["session"]
    result = client.post(f"/api/focus/phases/{brk['id']}/complete", headers=ALICE).json()
    assert result["cycleCompleted"] is True
    assert result["grant"]["status"] == "granted"
    assert client.get("/api/rewards/balance", headers=ALICE).json()["balance"] == 1

    group = client.get(f"/api/focus/groups/{focus['detail']['cycleGroupId']}", headers=ALICE).json()
    assert [p["detail"]["cyclePosition"] for p in group["phases"]] == [1, 2]


def test_unknown_session_is_404(client):
    r = client.post("/api/focus/phases/nope/pause", headers=ALICE)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "session_not_found"


def test_decomposed_flow(client):
    steps = [
        {"name": "warmup", "plannedSeconds": 300, "order": 0},
        {"name": "work", "plannedSeconds": 1200, "order": 1},
    ]
    created = client.post("/api/decomposed", json={"goal": "Ship", "steps": steps}, headers=ALICE).json()
    sid = created["session"]["id"]
    assert created["session"]["status"] == "ready"
    assert [s["current"] for s in created["steps"]] == [True, False]

    client.post(f"/api/decomposed/{sid}/start", headers=ALICE)
    first = client.post(f"/api/decomposed/{sid}/advance", json={"expectedIndex": 0}, headers=ALICE).json()
    assert first["finished"] is False
    retry = client.post(f"/api/decomposed/{sid}/advance", json={"expectedIndex": 0}, headers=ALICE)
    assert retry.status_code == 409
    last = client.post(f"/api/decomposed/{sid}/advance", json={}, headers=ALICE).json()
    assert last["finished"] is True
    assert last["performance"]["efficiency"] > 0
    assert 0 <= last["performance"]["stepAccuracy"] <= 1

    r = client.post(f"/api/decomposed/{sid}/advance", json={}, headers=ALICE)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "no_more_steps"


def test_decomposed_invalid_steps(client):
    r = client.post("/api/decomposed", json={"goal": "x", "steps": [{"name": "a", "plannedSeconds": 0}]}, headers=ALICE)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_decomposed_generator_fallback(client):
    def broken(goal, total):
        raise ContentGenerationFailed("offline")

    app.state.step_generator = broken
    try:
        r = client.post("/api/decomposed", json={"goal": "Read", "totalSeconds": 600}, headers=ALICE)
    finally:
        app.state.step_generator = None
    assert r.status_code == 200
    assert len(r.json()["session"]["detail"]["steps"]) == 3


def test_rewards_endpoints(client, workspace):
    ledger.grant("alice", Reason.SPECIAL_EVENT, 5, "seed", root=workspace)
    r = client.post("/api/rewards/spend", json={"amount": 9}, headers=ALICE)
    assert r.status_code == 402
    assert r.json()["error"]["details"] == {"balance": 5, "amount": 9}
    r = client.post("/api/rewards/spend", json={"amount": 2, "reason": "customization"}, headers=ALICE)
    assert r.json()["balanceAfter"] == 3

    page = client.get("/api/rewards/ledger", params={"page": 1, "pageSize": 1}, headers=ALICE).json()
    assert page["totalCount"] == 2
    assert page["hasNextPage"] is True
    assert page["entries"][0]["type"] == "spend"

    login = client.post("/api/rewards/daily-login", headers=ALICE).json()
    assert login["grant"]["status"] == "granted"
    again = client.post("/api/rewards/daily-login", headers=ALICE).json()
    assert again["grant"]["status"] == "already_granted"
    assert again["balance"] == 4
    assert client.get("/api/rewards/can-earn", params={"reason": "daily_login"}, headers=ALICE).json()["canEarn"] is False


def test_grant_route_only_claims_daily_rewards(client):
    for _ in range(3):
        r = client.post("/api/rewards/grant", json={"reason": "special_event", "amount": 1000000}, headers=FREE)
        assert r.status_code == 400
    r = client.post("/api/rewards/grant", json={"reason": "admin_adjustment", "amount": 50}, headers=ALICE)
    assert r.status_code == 400

    free = client.post("/api/rewards/grant", json={"reason": "daily_login"}, headers=FREE).json()
    assert free == {"grant": None, "balance": 0}

    paid = client.post("/api/rewards/grant", json={"reason": "daily_login", "amount": 500}, headers=ALICE).json()
    assert paid["grant"]["status"] == "granted"
    assert paid["balance"] == 1


def test_spend_route_rejects_admin_reason(client, workspace):
    ledger.grant("alice", Reason.SPECIAL_EVENT, 5, "seed", root=workspace)
    r = client.post("/api/rewards/spend", json={"amount": 1, "reason": "admin_adjustment"}, headers=ALICE)
    assert r.status_code == 400
    assert client.get("/api/rewards/balance", headers=ALICE).json()["balance"] == 5


def test_start_flag_must_be_boolean(client):
    r = client.post("/api/focus/phases", json={"label": "Later", "start": "false"}, headers=ALICE)
    assert r.json()["session"]["status"] == "ready"
    r = client.post("/api/focus/phases", json={"label": "Odd", "start": "maybe"}, headers=FREE)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_free_owner_daily_login(client):
    r = client.post("/api/rewards/daily-login", headers=FREE).json()
    assert r == {"grant": None, "balance": 0}


def test_items_endpoints(client):
    r = client.post("/api/items/tasks", json={"title": "Laundry", "day": "2026-02-11"}, headers=ALICE)
    item = r.json()["item"]
    assert client.get("/api/items", headers=ALICE).json()["items"][0]["id"] == item["id"]
    done = client.post(f"/api/items/{item['id']}/complete", headers=ALICE).json()
    assert done["alreadyCompleted"] is False
    assert done["grant"]["status"] == "granted"
    assert client.post("/api/items/nope/complete", headers=ALICE).status_code == 404
    bad = client.post("/api/items/reminders", json={"title": "x", "time": "9am", "weekdays": [1]}, headers=ALICE)
    assert bad.status_code == 400


def test_stats_endpoints(client):
    assert client.get("/api/stats/focus", params={"period": "weekly"}, headers=ALICE).json()["focusPhases"] == 0
    assert client.get("/api/stats/focus", params={"period": "hourly"}, headers=ALICE).status_code == 400
    assert client.get("/api/stats/decomposed", headers=ALICE).json()["sessions"] == 0
    assert client.get("/api/stats/totals", headers=ALICE).json()["focusPhasesCompleted"] == 0
