"""
HTTP API Tests
==============
Sessions, role checks and a full presale round-trip through the FastAPI app.
Run with: python3 -m pytest tests/test_api.py -v
"""

import asyncio
import os
import sys

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from presale_app.config import Settings
from presale_app.main import create_app
from presale_app.services.oracle import HttpPriceFeed
from presale_app.services.runtime import ManualClock
from presale_app.services.units import WAD, normalize_address, parse_ether

OPERATOR = normalize_address("0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1")
OPERATOR_PASSWORD = "operator-secret"
BUYER = normalize_address("0x" + f"{20:040x}")
BUYER_PASSWORD = "buyer-secret"
STAGE1_PRICE = parse_ether("0.0025")


# ── Helpers ──────────────────────────────────────────────────────────────────

def make_settings(**overrides) -> Settings:
    kwargs = dict(
        _env_file=None,
        OPERATOR_ADDRESS=OPERATOR,
        OPERATOR_PASSWORD=OPERATOR_PASSWORD,
        PASSWORD_ITERATIONS=1_000,
        LOG_LEVEL="WARNING",
    )
    kwargs.update(overrides)
    return Settings(**kwargs)


@pytest.fixture
def env():
    clock = ManualClock()
    app = create_app(make_settings(), clock=clock)
    return app, clock


def login(app, address, password) -> TestClient:
    client = TestClient(app)
    resp = client.post("/auth/login", json={"address": address, "password": password})
    assert resp.status_code == 200, resp.text
    return client


def operator_client(app) -> TestClient:
    return login(app, OPERATOR, OPERATOR_PASSWORD)


def buyer_client(app) -> TestClient:
    client = TestClient(app)
    resp = client.post("/auth/register", json={"address": BUYER, "password": BUYER_PASSWORD})
    assert resp.status_code == 200, resp.text
    return login(app, BUYER, BUYER_PASSWORD)


def fund_buyer(operator, amount=10 * WAD):
    resp = operator.post("/api/wallet/credit", json={"to": BUYER, "amount": amount})
    assert resp.status_code == 200, resp.text


# ── Sessions ─────────────────────────────────────────────────────────────────

def test_health_is_public(env):
    app, _ = env
    resp = TestClient(app).get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_mutation_requires_session(env):
    app, _ = env
    resp = TestClient(app).post("/api/stages", json={"price": STAGE1_PRICE})
    assert resp.status_code == 401


def test_wrong_password_rejected(env):
    app, _ = env
    resp = TestClient(app).post("/auth/login", json={"address": OPERATOR, "password": "not-the-password"})
    assert resp.status_code == 401


def test_duplicate_registration(env):
    app, _ = env
    resp = TestClient(app).post("/auth/register", json={"address": OPERATOR, "password": "whatever-123"})
    assert resp.status_code == 409


def test_register_rejects_bad_address(env):
    app, _ = env
    resp = TestClient(app).post("/auth/register", json={"address": "0x123", "password": "long-enough"})
    assert resp.status_code == 422


def test_logout_ends_session(env):
    app, _ = env
    operator = operator_client(app)
    assert operator.post("/auth/logout").status_code == 200
    assert operator.post("/api/stages", json={"price": STAGE1_PRICE}).status_code == 401


# ── Role checks and error mapping ────────────────────────────────────────────

def test_non_owner_cannot_create_stage(env):
    app, _ = env
    buyer = buyer_client(app)
    resp = buyer.post("/api/stages", json={"price": STAGE1_PRICE})
    assert resp.status_code == 403
    assert resp.json()["code"] == "Unauthorized"


def test_only_operator_credits_wallets(env):
    app, _ = env
    buyer = buyer_client(app)
    resp = buyer.post("/api/wallet/credit", json={"to": BUYER, "amount": WAD})
    assert resp.status_code == 403


def test_bare_deposit_rejected(env):
    app, _ = env
    buyer = buyer_client(app)
    resp = buyer.post("/api/receive", json={"value": 1})
    assert resp.status_code == 400
    assert resp.json()["code"] == "InvalidPurchaseAmount"


def test_purchase_without_stage(env):
    app, _ = env
    operator = operator_client(app)
    fund_buyer(operator)
    buyer = buyer_client(app)
    resp = buyer.post("/api/purchase", json={"token_amount": 1000 * WAD, "value": WAD})
    assert resp.status_code == 409
    assert resp.json()["code"] == "NoActiveStage"


def test_invalid_address_in_path(env):
    app, _ = env
    resp = TestClient(app).get("/api/wallet/not-an-address")
    assert resp.status_code == 400
    assert resp.json()["code"] == "InvalidAddress"


# ── Full round-trip ──────────────────────────────────────────────────────────

def test_presale_round_trip(env):
    app, clock = env
    operator = operator_client(app)
    buyer = buyer_client(app)
    tokens = 1000 * WAD

    resp = operator.post("/api/stages", json={"price": STAGE1_PRICE})
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"id": 1, "price": STAGE1_PRICE, "active": True}
    fund_buyer(operator)

    quote = TestClient(app).get("/api/quote", params={"token_amount": tokens}).json()
    assert int(quote["required_native"]) == parse_ether("0.00125")

    resp = buyer.post("/api/purchase", json={"token_amount": tokens, "value": parse_ether("0.002")})
    assert resp.status_code == 200, resp.text
    receipt = resp.json()
    assert receipt["buyer"] == BUYER
    assert int(receipt["token_amount"]) == tokens   # above 2**53, rendered as a string
    assert int(receipt["refund"]) == parse_ether("0.00075")

    wallet = buyer.get(f"/api/wallet/{BUYER}").json()
    assert int(wallet["balance"]) == 10 * WAD - parse_ether("0.00125")
    assert wallet["formatted"] == "9.99875"

    ent = buyer.get(f"/api/entitlements/{BUYER}").json()
    assert int(ent["token_amount"]) == tokens
    assert ent["claimed"] is False
    assert buyer.get(f"/api/entitlements/{OPERATOR}").status_code == 404

    resp = buyer.post("/api/claim")
    assert resp.status_code == 409
    assert resp.json()["code"] == "ClaimingNotEnabled"

    resp = operator.post("/api/end")
    assert resp.status_code == 200
    status = buyer.get("/api/status").json()
    assert status["is_presale_ended"] is True
    assert status["is_claiming_enabled"] is False

    clock.advance(24 * 60 * 60)
    resp = buyer.post("/api/claim")
    assert resp.status_code == 200, resp.text
    assert int(resp.json()["token_amount"]) == tokens

    balance = buyer.get(f"/api/ledger/balances/{BUYER}").json()
    assert int(balance["balance"]) == tokens
    assert buyer.post("/api/claim").json()["code"] == "AlreadyClaimed"

    resp = operator.post("/api/withdraw/payment")
    assert int(resp.json()["amount"]) == parse_ether("0.00125")

    stages = buyer.get("/api/reports/stages").json()
    assert stages["summary"]["total_tokens_sold"] == pytest.approx(1000.0)
    assert stages["summary"]["outstanding_entitlements"] == 0.0

    dist = buyer.get("/api/reports/distribution").json()
    assert dist["reserves"]["presale"]["pct_of_initial_supply"] == pytest.approx(55.0, abs=1e-3)

    events = buyer.get("/api/events", params={"name": "TokensPurchased"}).json()["events"]
    assert len(events) == 1
    assert events[0]["args"]["buyer"] == BUYER


def test_ledger_controls_via_api(env):
    app, _ = env
    operator = operator_client(app)
    buyer = buyer_client(app)

    ledger = buyer.get("/api/ledger").json()
    assert ledger["transfer_locked"] is True
    assert set(ledger["reserves"]) == {"presale", "marketing", "exchange", "rewards", "team", "burn"}
    assert int(ledger["reserves"]["presale"]) == 550_000_000 * WAD

    resp = buyer.post("/api/ledger/burn", json={"amount": 0})
    assert resp.status_code == 409
    assert resp.json()["code"] == "TransferLocked"

    # owner is exempt from the lock but holds no tokens
    resp = operator.post("/api/ledger/transfer", json={"to": BUYER, "amount": WAD})
    assert resp.status_code == 400
    assert resp.json()["code"] == "InsufficientBalance"

    assert buyer.post("/api/ledger/lock", json={"locked": False}).status_code == 403
    resp = operator.post("/api/ledger/lock", json={"locked": False})
    assert resp.json() == {"transfer_locked": False}
    assert buyer.post("/api/ledger/burn", json={"amount": 0}).status_code == 200


# ── Price reference ──────────────────────────────────────────────────────────

def test_operator_refreshes_static_price(env):
    app, clock = env
    operator = operator_client(app)
    buyer = buyer_client(app)
    assert operator.post("/api/stages", json={"price": STAGE1_PRICE}).status_code == 200
    fund_buyer(operator)
    order = {"token_amount": 1000 * WAD, "value": parse_ether("0.002")}

    clock.advance(3601)
    resp = buyer.post("/api/purchase", json=order)
    assert resp.status_code == 503
    assert resp.json()["code"] == "InvalidPriceData"

    resp = buyer.post("/api/price", json={"rate": 210_000_000_000})
    assert resp.status_code == 403

    resp = operator.post("/api/price", json={"rate": 200_000_000_000})
    assert resp.status_code == 200, resp.text
    assert resp.json() == {
        "rate": 200_000_000_000,
        "decimals": 8,
        "updated_at": clock.now(),
        "formatted": "2000",
    }

    resp = buyer.post("/api/purchase", json=order)
    assert resp.status_code == 200, resp.text
    assert int(resp.json()["native_paid"]) == parse_ether("0.00125")


def test_price_rejects_non_positive_rate(env):
    app, _ = env
    operator = operator_client(app)
    assert operator.post("/api/price", json={"rate": 0}).status_code == 422


def make_http_feed_app(clock, seen):
    def handler(request):
        try:
            asyncio.get_running_loop()
            seen.append("event-loop")
        except RuntimeError:
            seen.append("worker")
        return httpx.Response(200, json={"rate": 200_000_000_000, "decimals": 8, "updated_at": clock.now()})

    feed = HttpPriceFeed("https://feeds.test/eth-usd", client=httpx.Client(transport=httpx.MockTransport(handler)))
    app = create_app(make_settings(PRICE_FEED="http", PRICE_FEED_URL=feed.url), clock=clock, price_reader=feed)
    return app, feed


def test_http_feed_read_off_event_loop():
    clock = ManualClock()
    seen = []
    app, _ = make_http_feed_app(clock, seen)

    resp = TestClient(app).get("/api/price")
    assert resp.status_code == 200, resp.text
    assert resp.json()["formatted"] == "2000"
    assert seen == ["worker"]


def test_http_feed_cannot_be_set_by_operator():
    app, _ = make_http_feed_app(ManualClock(), [])
    resp = operator_client(app).post("/api/price", json={"rate": 1})
    assert resp.status_code == 409
    assert resp.json()["code"] == "PriceFeedReadOnly"


def test_http_feed_closed_on_shutdown():
    app, feed = make_http_feed_app(ManualClock(), [])
    with TestClient(app) as client:
        assert client.get("/api/health").status_code == 200
        assert not feed._client.is_closed
    assert feed._client.is_closed


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
