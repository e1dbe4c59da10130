from datetime import datetime, timedelta, timezone
from typing import Optional

from apps.api.app.models.audit_log import AuditLog
from apps.api.app.models.idempotency_key import IdempotencyKey
from apps.api.app.models.user import User


ENTRY_PRICE = 10_000


def _login(client, username: str, password: str):
    return client.post("/auth/login", data={"username": username, "password": password})


def _token(client, username: str, password: str) -> str:
    resp = _login(client, username, password)
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _trade_payload(
    opened_at: datetime,
    pnl: Optional[float],
    *,
    direction: str = "long",
    symbol: str = "es",
    entry_price: float = ENTRY_PRICE,
) -> dict:
    # size 1: exit price encodes the desired pnl and stays non-negative for losses below the entry
    payload = {
        "opened_at": _iso(opened_at),
        "symbol": symbol,
        "asset_class": "futures",
        "direction": direction,
        "entry_price": entry_price,
        "size": 1,
        "fees": 0,
    }
    if pnl is not None:
        payload["exit_price"] = entry_price + pnl if direction == "long" else entry_price - pnl
        payload["closed_at"] = _iso(opened_at + timedelta(minutes=5))
    return payload


def _post_trade(client, token: str, opened_at: datetime, pnl: Optional[float], **kwargs):
    return client.post("/trades", headers=_auth(token), json=_trade_payload(opened_at, pnl, **kwargs))


def _put_settings(client, token: str, **patch):
    resp = client.put("/risk-settings", headers=_auth(token), json=patch)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _trade_count(client, token: str) -> int:
    resp = client.get("/trades", headers=_auth(token))
    assert resp.status_code == 200, resp.text
    return len(resp.json()["trades"])


def test_create_trade_computes_pnl_and_reports_no_trigger(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")

    resp = _post_trade(client, token, clock.now - timedelta(hours=1), 12.5)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["riskTriggered"] is None
    assert body["trade"]["pnl"] == 12.5
    assert body["trade"]["symbol"] == "ES"

    short = client.post(
        "/trades",
        headers=_auth(token),
        json={
            **_trade_payload(clock.now - timedelta(minutes=30), None, direction="short", entry_price=100),
            "exit_price": 90,
            "size": 2,
            "fees": 1.25,
        },
    )
    assert short.status_code == 201, short.text
    assert short.json()["trade"]["pnl"] == 18.75

    still_open = _post_trade(client, token, clock.now - timedelta(minutes=10), None)
    assert still_open.status_code == 201
    assert still_open.json()["trade"]["pnl"] is None


def test_null_fees_default_to_zero(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")

    resp = client.post(
        "/trades",
        headers=_auth(token),
        json={**_trade_payload(clock.now - timedelta(minutes=20), 15), "fees": None},
    )
    assert resp.status_code == 201, resp.text
    trade = resp.json()["trade"]
    assert trade["fees"] == 0.0
    assert trade["pnl"] == 15.0


def test_daily_max_loss_triggers_lockout(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    base = clock.now.replace(hour=9, minute=0)

    # yesterday's loss lands before the rule exists and must never be summed into today
    yesterday = _post_trade(client, token, base - timedelta(days=1), -5000)
    assert yesterday.status_code == 201
    _put_settings(client, token, daily_max_loss=1000)

    first = _post_trade(client, token, base, -400)
    second = _post_trade(client, token, base + timedelta(minutes=10), -300)
    assert first.json()["riskTriggered"] is None
    assert second.json()["riskTriggered"] is None

    third = _post_trade(client, token, base + timedelta(minutes=20), -350)
    assert third.status_code == 201, third.text
    trigger = third.json()["riskTriggered"]
    assert trigger["reason"] == "daily_max_loss"
    assert _parse(trigger["lockoutUntil"]) == clock.now + timedelta(minutes=45)

    status_resp = client.get("/risk-settings", headers=_auth(token))
    status_body = status_resp.json()
    assert status_body["status"]["isLocked"] is True
    assert status_body["status"]["reason"] == "daily_max_loss"
    assert status_body["settings"]["last_trigger_reason"] == "daily_max_loss"


def test_daily_loss_is_per_calendar_day(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    _put_settings(client, token, daily_max_loss=1000)

    late = datetime(2026, 3, 9, 23, 59, tzinfo=timezone.utc)
    early = datetime(2026, 3, 10, 0, 1, tzinfo=timezone.utc)

    for opened_at in (late, early):
        resp = _post_trade(client, token, opened_at, -600)
        assert resp.status_code == 201, resp.text
        assert resp.json()["riskTriggered"] is None

    same_day = _post_trade(client, token, early + timedelta(hours=1), -400)
    assert same_day.status_code == 201, same_day.text
    trigger = same_day.json()["riskTriggered"]
    assert trigger["reason"] == "daily_max_loss"
    assert _parse(trigger["lockoutUntil"]) == clock.now + timedelta(minutes=45)


def test_loss_streak_triggers_on_trailing_losses_only(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    _put_settings(client, token, max_consecutive_losses=3)
    base = clock.now.replace(hour=8, minute=0)

    for i, pnl in enumerate([-1, -1, 5, -10, -20]):
        resp = _post_trade(client, token, base + timedelta(minutes=i), pnl)
        assert resp.status_code == 201, resp.text
        assert resp.json()["riskTriggered"] is None

    resp = _post_trade(client, token, base + timedelta(minutes=10), -50)
    assert resp.status_code == 201, resp.text
    trigger = resp.json()["riskTriggered"]
    assert trigger["reason"] == "loss_streak"
    assert _parse(trigger["lockoutUntil"]) == clock.now + timedelta(minutes=45)


def test_open_trades_do_not_break_or_extend_streak(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    _put_settings(client, token, max_consecutive_losses=3)
    base = clock.now.replace(hour=8, minute=0)

    assert _post_trade(client, token, base, -10).json()["riskTriggered"] is None
    assert _post_trade(client, token, base + timedelta(minutes=1), -10).json()["riskTriggered"] is None
    assert _post_trade(client, token, base + timedelta(minutes=2), None).json()["riskTriggered"] is None

    resp = _post_trade(client, token, base + timedelta(minutes=3), -10)
    assert resp.json()["riskTriggered"]["reason"] == "loss_streak"


def test_both_rules_breached_report_combined(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    _put_settings(client, token, daily_max_loss=100, max_consecutive_losses=2, cooldown_minutes=30)
    base = clock.now.replace(hour=9, minute=0)

    assert _post_trade(client, token, base, -60).json()["riskTriggered"] is None
    resp = _post_trade(client, token, base + timedelta(minutes=5), -60)
    trigger = resp.json()["riskTriggered"]
    assert trigger["reason"] == "combined"
    assert _parse(trigger["lockoutUntil"]) == clock.now + timedelta(minutes=30)


def test_lockout_rejects_until_cooldown_expires(client, clock, db):
    token = _token(client, "pro@test.com", "ProPass123!")
    _put_settings(client, token, max_consecutive_losses=2, cooldown_minutes=45)
    base = clock.now.replace(hour=9, minute=0)
    triggered_at = clock.now

    _post_trade(client, token, base, -10)
    resp = _post_trade(client, token, base + timedelta(minutes=1), -10)
    assert resp.json()["riskTriggered"]["reason"] == "loss_streak"
    count_after_trigger = _trade_count(client, token)

    clock.advance(minutes=44)
    blocked = _post_trade(client, token, clock.now, 25)
    assert blocked.status_code == 423, blocked.text
    blocked_body = blocked.json()
    assert blocked_body["reason"] == "loss_streak"
    assert _parse(blocked_body["lockoutUntil"]) == triggered_at + timedelta(minutes=45)
    assert "lockout active" in blocked_body["detail"]["message"]
    assert _trade_count(client, token) == count_after_trigger

    clock.advance(minutes=2)
    status_body = client.get("/risk-settings", headers=_auth(token)).json()
    assert status_body["status"] == {"isLocked": False, "lockoutUntil": None, "reason": None}

    admitted = _post_trade(client, token, clock.now, 25)
    assert admitted.status_code == 201, admitted.text
    assert admitted.json()["riskTriggered"] is None

    actions = {row.action for row in db.query(AuditLog).all()}
    assert {"trade.create", "trade.blocked.lockout", "risk.lockout.triggered"} <= actions


def test_unlock_clears_lockout_but_keeps_thresholds(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    _put_settings(client, token, daily_max_loss=50, max_consecutive_losses=4, cooldown_minutes=90)
    resp = _post_trade(client, token, clock.now - timedelta(minutes=5), -80)
    assert resp.json()["riskTriggered"]["reason"] == "daily_max_loss"

    unlocked = client.post("/risk-settings/unlock", headers=_auth(token))
    assert unlocked.status_code == 200, unlocked.text
    body = unlocked.json()
    assert body["status"]["isLocked"] is False
    assert body["settings"]["lockout_until"] is None
    assert body["settings"]["last_trigger_reason"] is None
    assert body["settings"]["daily_max_loss"] == 50
    assert body["settings"]["max_consecutive_losses"] == 4
    assert body["settings"]["cooldown_minutes"] == 90
    assert body["settings"]["enabled"] is True

    # even a winner re-triggers while the day's sum stays below the threshold
    again = _post_trade(client, token, clock.now - timedelta(minutes=1), 1)
    assert again.status_code == 201
    assert again.json()["riskTriggered"]["reason"] == "daily_max_loss"


def test_disabled_guardrails_skip_evaluation_and_clear_lockout(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    _put_settings(client, token, max_consecutive_losses=1)
    resp = _post_trade(client, token, clock.now - timedelta(minutes=10), -10)
    assert resp.json()["riskTriggered"]["reason"] == "loss_streak"

    body = _put_settings(client, token, enabled=False, cooldown_minutes=15)
    assert body["settings"]["enabled"] is False
    assert body["settings"]["lockout_until"] is None
    assert body["settings"]["last_trigger_reason"] is None
    assert body["settings"]["cooldown_minutes"] == 15
    assert body["status"]["isLocked"] is False

    again = _post_trade(client, token, clock.now - timedelta(minutes=5), -10)
    assert again.status_code == 201
    assert again.json()["riskTriggered"] is None


def test_free_plan_quota_blocks_before_insert(client, clock, monkeypatch):
    import apps.api.app.services.plan as plan

    monkeypatch.setattr(plan.settings, "FREE_TRADE_LIMIT", 2)
    token = _token(client, "free@test.com", "FreePass123!")

    assert _post_trade(client, token, clock.now - timedelta(minutes=2), 5).status_code == 201
    assert _post_trade(client, token, clock.now - timedelta(minutes=1), 5).status_code == 201

    blocked = _post_trade(client, token, clock.now, 5)
    assert blocked.status_code == 402
    assert "Free plan limited to 2 trades" in blocked.json()["detail"]
    assert _trade_count(client, token) == 2

    me = client.get("/me", headers=_auth(token)).json()["user"]
    assert me["tradeCount"] == 2
    assert me["tradeLimit"] == 2
    assert me["freeExpired"] is False

    pro_token = _token(client, "pro@test.com", "ProPass123!")
    for i in range(3):
        assert _post_trade(client, pro_token, clock.now - timedelta(minutes=i), 5).status_code == 201


def test_quota_is_checked_before_lockout(client, clock, monkeypatch):
    import apps.api.app.services.plan as plan

    token = _token(client, "free@test.com", "FreePass123!")
    _put_settings(client, token, max_consecutive_losses=1)
    assert _post_trade(client, token, clock.now - timedelta(minutes=1), -5).json()["riskTriggered"]

    monkeypatch.setattr(plan.settings, "FREE_TRADE_LIMIT", 1)
    blocked = _post_trade(client, token, clock.now, 5)
    assert blocked.status_code == 402


def test_expired_free_plan_is_read_only(client, clock, db):
    token = _token(client, "free@test.com", "FreePass123!")
    assert _post_trade(client, token, clock.now - timedelta(minutes=1), 5).status_code == 201

    user = db.query(User).filter(User.email == "free@test.com").first()
    user.created_at = clock.now - timedelta(days=60)
    db.commit()

    blocked = _post_trade(client, token, clock.now, 5)
    assert blocked.status_code == 402
    assert "expired" in blocked.json()["detail"]

    assert client.get("/trades", headers=_auth(token)).status_code == 200
    me = client.get("/me", headers=_auth(token)).json()["user"]
    assert me["freeExpired"] is True
    assert me["freeDaysRemaining"] == 0


def test_idempotent_trade_creation(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    headers = {**_auth(token), "X-Idempotency-Key": "trade-key-1"}
    payload = _trade_payload(clock.now - timedelta(minutes=3), -20)

    first = client.post("/trades", headers=headers, json=payload)
    second = client.post("/trades", headers=headers, json=payload)
    assert first.status_code == 201, first.text
    assert second.status_code == 201, second.text
    assert first.json() == second.json()
    assert _trade_count(client, token) == 1

    conflict = client.post("/trades", headers=headers, json={**payload, "size": 2})
    assert conflict.status_code == 409
    assert "different payload" in conflict.json()["detail"]


def test_key_taken_mid_request_rolls_back_the_trade(client, clock, db, monkeypatch):
    import apps.api.app.api.trades as trades_api
    from apps.api.app.services import idempotency

    token = _token(client, "pro@test.com", "ProPass123!")
    user = db.query(User).filter(User.email == "pro@test.com").first()
    real_consume = trades_api.consume_idempotent_response
    calls = []

    def racing_consume(session, **kwargs):
        calls.append(kwargs["idempotency_key"])
        if len(calls) > 1:
            return real_consume(session, **kwargs)
        # another request stores the same key with a different payload after our lookup
        db.add(
            IdempotencyKey(
                user_id=user.id,
                endpoint=trades_api.CREATE_ENDPOINT,
                key_hash=idempotency._sha256("race-key"),
                request_hash=idempotency._sha256("another payload"),
                response_json="{}",
                status_code=201,
            )
        )
        db.commit()
        return None

    monkeypatch.setattr(trades_api, "consume_idempotent_response", racing_consume)

    resp = client.post(
        "/trades",
        headers={**_auth(token), "X-Idempotency-Key": "race-key"},
        json=_trade_payload(clock.now - timedelta(minutes=5), -20),
    )
    assert resp.status_code == 409, resp.text
    assert len(calls) == 2
    assert _trade_count(client, token) == 0
    db.expire_all()
    assert not db.query(AuditLog).filter(AuditLog.action == "trade.create").count()


def test_invalid_trade_payload_is_rejected(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    payload = {**_trade_payload(clock.now, 5), "direction": "sideways", "size": 0}

    resp = client.post("/trades", headers=_auth(token), json=payload)
    assert resp.status_code == 400
    fields = {tuple(err["loc"])[-1] for err in resp.json()["errors"]}
    assert {"direction", "size"} <= fields
    assert _trade_count(client, token) == 0


def test_update_and_delete_trade(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    other = _token(client, "other@test.com", "OtherPass123!")

    created = _post_trade(client, token, clock.now - timedelta(minutes=30), None, entry_price=100).json()["trade"]
    trade_id = created["id"]

    empty = client.put(f"/trades/{trade_id}", headers=_auth(token), json={})
    assert empty.status_code == 400

    closed = client.put(
        f"/trades/{trade_id}",
        headers=_auth(token),
        json={"exit_price": 104.5, "fees": 0.5, "notes": "  took profit  "},
    )
    assert closed.status_code == 200, closed.text
    trade = closed.json()["trade"]
    assert trade["pnl"] == 4.0
    assert trade["notes"] == "took profit"

    flipped = client.put(f"/trades/{trade_id}", headers=_auth(token), json={"direction": "short"})
    assert flipped.json()["trade"]["pnl"] == -5.0

    assert client.get(f"/trades/{trade_id}", headers=_auth(other)).status_code == 404
    assert client.delete(f"/trades/{trade_id}", headers=_auth(other)).status_code == 404

    deleted = client.delete(f"/trades/{trade_id}", headers=_auth(token))
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}
    assert client.get(f"/trades/{trade_id}", headers=_auth(token)).status_code == 404


def test_list_trades_filters(client, clock):
    token = _token(client, "pro@test.com", "ProPass123!")
    base = clock.now - timedelta(hours=5)
    _post_trade(client, token, base, 5, symbol="nq")
    _post_trade(client, token, base + timedelta(hours=1), -5, symbol="es")
    client.post(
        "/trades",
        headers=_auth(token),
        json={**_trade_payload(base + timedelta(hours=2), 3, symbol="es"), "setup": "ORB", "notes": "breakout"},
    )

    all_rows = client.get("/trades", headers=_auth(token)).json()["trades"]
    assert [t["symbol"] for t in all_rows] == ["ES", "ES", "NQ"]

    es_rows = client.get("/trades", headers=_auth(token), params={"symbol": "es"}).json()["trades"]
    assert len(es_rows) == 2

    searched = client.get("/trades", headers=_auth(token), params={"search": "break"}).json()["trades"]
    assert len(searched) == 1 and searched[0]["setup"] == "ORB"

    windowed = client.get(
        "/trades",
        headers=_auth(token),
        params={"from": _iso(base + timedelta(minutes=30))},
    ).json()["trades"]
    assert len(windowed) == 2


def test_logout_revokes_token(client):
    token = _token(client, "pro@test.com", "ProPass123!")
    assert client.post("/auth/logout", headers=_auth(token)).status_code == 200
    assert client.get("/me", headers=_auth(token)).status_code == 401
