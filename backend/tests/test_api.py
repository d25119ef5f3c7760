"""HTTP surface tests against a temporary database and a scripted oracle."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from api import create_app
from config import EngineConfig
from market.models import utc_now

ADMIN = {"X-Admin-Key": "test-admin-key"}


@pytest.fixture
def client(manager):
    config = EngineConfig(admin_api_key="test-admin-key", leaderboard_ttl_seconds=3600)
    app = create_app(config, manager=manager, run_scheduler=False)
    with TestClient(app) as c:
        yield c


def as_user(user_id):
    return {"X-User-Id": user_id}


def open_market(manager, labels=("Yes", "No"), initial_points=None):
    return manager.create_market(
        title="Will it rain in Mumbai tomorrow?",
        outcome_labels=list(labels),
        closes_at=utc_now() + timedelta(days=7),
        initial_points=initial_points
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["oracle_configured"] is True


def test_requests_without_identity_are_unauthenticated(client, manager):
    market = open_market(manager)

    assert client.post("/rewards/daily").status_code == 401
    response = client.post("/bets", json={"outcome_id": market.outcomes[0].outcome_id, "amount": 10})
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "unauthenticated"
    assert client.get("/users/me").status_code == 401


def test_provision_claim_and_claim_again(client):
    headers = as_user("auth0|alice")
    created = client.post("/users", json={"name": "Alice"}, headers=headers)
    assert created.status_code == 200
    assert created.json()["user"]["balance"] == 0

    first = client.post("/rewards/daily", headers=headers)
    assert first.status_code == 200
    assert first.json()["points_awarded"] == 100
    assert first.json()["new_streak"] == 1

    second = client.post("/rewards/daily", headers=headers)
    assert second.status_code == 409
    detail = second.json()["detail"]
    assert detail["error"] == "already_claimed_today"
    assert detail["already_claimed"] is True
    assert detail["next_claim_at"].endswith("T00:00:00+00:00")

    me = client.get("/users/me", headers=headers).json()
    assert me["user"]["balance"] == 100


def test_bet_updates_balance_and_refreshes_leaderboard(client, manager):
    headers = as_user("auth0|bob")
    client.post("/users", json={"name": "Bob"}, headers=headers)
    client.post("/rewards/daily", headers=headers)
    market = open_market(manager)

    board = client.get("/leaderboard").json()["users"]
    assert [(u["name"], u["balance"]) for u in board] == [("Bob", 100)]

    response = client.post(
        "/bets", json={"outcome_id": market.outcomes[1].outcome_id, "amount": 40}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["new_balance"] == 60

    # Cached for an hour, but the wager invalidated it
    board = client.get("/leaderboard").json()["users"]
    assert board[0]["balance"] == 60

    too_much = client.post(
        "/bets", json={"outcome_id": market.outcomes[1].outcome_id, "amount": 61}, headers=headers
    )
    assert too_much.status_code == 409
    assert too_much.json()["detail"]["error"] == "insufficient_balance"


def test_bet_on_unknown_outcome_is_404(client):
    headers = as_user("auth0|carol")
    client.post("/users", json={"name": "Carol"}, headers=headers)
    client.post("/rewards/daily", headers=headers)
    response = client.post("/bets", json={"outcome_id": "OUT_NOPE", "amount": 1}, headers=headers)
    assert response.status_code == 404


def test_market_listing_and_quote(client, manager):
    market = open_market(manager, initial_points=[3000, 7000])

    listing = client.get("/markets").json()
    assert listing["total"] == 1
    pricing = listing["markets"][0]["pricing"]
    assert [o["price"] for o in pricing] == [0.7, 0.3]

    quote = client.get(
        f"/markets/{market.market_id}/quote",
        params={"outcome_id": market.outcomes[0].outcome_id, "stake": 100}
    ).json()["quote"]
    assert quote["potential_payout"] == 143
    assert quote["net_profit"] == 43

    assert client.get("/markets/MKT_NOPE").status_code == 404


def test_admin_endpoints_need_the_key(client):
    response = client.post("/admin/markets/MKT_ANY/close")
    assert response.status_code == 403
    response = client.post("/admin/markets/MKT_ANY/close", headers={"X-Admin-Key": "wrong"})
    assert response.status_code == 403


def test_admin_market_flow(client, manager, llm):
    created = client.post("/admin/markets", headers=ADMIN, json={
        "title": "Will the Sensex close above 80,000 on Friday?",
        "category": "Finance",
        "closes_at": (utc_now() + timedelta(days=2)).isoformat(),
        "outcomes": ["Yes", "No"]
    })
    assert created.status_code == 200
    market = created.json()["market"]
    market_id = market["market_id"]
    yes_id = market["outcomes"][0]["outcome_id"]

    headers = as_user("auth0|dave")
    client.post("/users", json={"name": "Dave"}, headers=headers)
    client.post("/rewards/daily", headers=headers)
    client.post("/bets", json={"outcome_id": yes_id, "amount": 100}, headers=headers)

    early = client.post(f"/admin/markets/{market_id}/resolve", headers=ADMIN)
    assert early.status_code == 409

    assert client.post(f"/admin/markets/{market_id}/close", headers=ADMIN).json()["status"] == "CLOSED"
    news = client.post(
        f"/admin/markets/{market_id}/news", headers=ADMIN,
        json={"news_summary": "The Sensex closed at 80,412 on Friday."}
    )
    assert news.status_code == 200

    llm.answer(yes_id, confidence=0.95)
    resolved = client.post(f"/admin/markets/{market_id}/resolve", headers=ADMIN)
    assert resolved.status_code == 200
    body = resolved.json()
    assert body["status"] == "RESOLVED"
    assert body["resolution"]["winner_outcome_id"] == yes_id
    assert [p["amount"] for p in body["payouts"]] == [100]

    detail = client.get(f"/markets/{market_id}").json()
    assert detail["market"]["status"] == "RESOLVED"
    assert detail["resolution"]["confidence"] == 0.95
    assert client.get("/users/me", headers=headers).json()["user"]["balance"] == 100


def test_oracle_timeout_maps_to_503(client, manager, llm):
    market = open_market(manager)
    manager.close_market(market.market_id)
    manager.set_news_summary(market.market_id, "Light showers in the evening.")
    llm.delay = 2.0

    response = client.post(f"/admin/markets/{market.market_id}/resolve", headers=ADMIN)

    assert response.status_code == 503
    assert response.json()["detail"]["retriable"] is True
    assert manager.get_market(market.market_id).status.value == "CLOSED"


def test_create_market_rejects_duplicate_labels(client):
    response = client.post("/admin/markets", headers=ADMIN, json={
        "title": "Duplicate outcomes",
        "closes_at": (utc_now() + timedelta(days=2)).isoformat(),
        "outcomes": ["Yes", "Yes"]
    })
    assert response.status_code == 422
