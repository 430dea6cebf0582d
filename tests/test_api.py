"""End-to-end tests for the REST API."""
from decimal import Decimal

import httpx
import pytest

from dexmirror.config import Settings
from dexmirror.main import app, build_dispatcher, get_dispatcher, get_store

TX_HASH = "0x" + "cd" * 32


@pytest.fixture
def dispatcher(sql_store):
    return build_dispatcher(sql_store, Settings(fanout_subscriber_timeout=5))


@pytest.fixture
async def client(sql_store, dispatcher):
    app.dependency_overrides[get_store] = lambda: sql_store
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
async def trader(client):
    response = await client.post(
        "/api/traders",
        json={"user_id": "0xtrader", "username": "alpha", "subscription_price": "25"}
    )
    assert response.status_code == 201
    return response.json()["trader"]


async def subscribe(client, copier_id, trader_id):
    response = await client.post(
        "/api/subscriptions", json={"copier_id": copier_id, "trader_id": trader_id}
    )
    assert response.status_code == 201
    return response.json()["subscription"]


def trade_payload(**overrides):
    payload = {
        "token_in": "usdc",
        "token_out": "eth",
        "amount_in": "1000",
        "amount_out": "0.31",
        "usd_value": "1000",
        "tx_hash": TX_HASH
    }
    payload.update(overrides)
    return payload


async def test_status(client):
    response = await client.get("/api/status")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_trade_is_copied_to_subscribers(client, dispatcher, trader):
    await subscribe(client, "alice", trader["id"])

    response = await client.post(f"/api/traders/{trader['id']}/trades", json=trade_payload())
    assert response.status_code == 201
    trade = response.json()["trade"]
    assert trade["token_in"] == "USDC"

    await dispatcher.drain()

    copies = (await client.get("/api/copy-trades", params={"copier_id": "alice"})).json()["copy_trades"]
    assert len(copies) == 1
    assert copies[0]["original_trade_id"] == trade["id"]
    assert Decimal(copies[0]["amount_copied"]) == Decimal("1000")

    notifications = (await client.get("/api/notifications", params={"user_id": "alice"})).json()
    messages = {n["type"]: n["message"] for n in notifications["notifications"]}
    assert messages == {
        "SUBSCRIPTION_STARTED": "You are now subscribed to alpha",
        "TRADE_COPIED": "Trade copied: USDC → ETH ($1000.00)",
        "NEW_TRADE": "alpha made a new trade: USDC → ETH",
    }


async def test_trade_for_unknown_trader(client):
    response = await client.post("/api/traders/missing/trades", json=trade_payload())
    assert response.status_code == 404


async def test_duplicate_transaction_rejected(client, dispatcher, trader):
    url = f"/api/traders/{trader['id']}/trades"
    assert (await client.post(url, json=trade_payload())).status_code == 201
    assert (await client.post(url, json=trade_payload())).status_code == 409
    await dispatcher.drain()


@pytest.mark.parametrize("overrides", [
    {"tx_hash": "0x1234"},
    {"token_in": "US-DC"},
    {"amount_in": "-5"},
    {"amount_out": "0"},
])
async def test_invalid_trade_rejected(client, trader, overrides):
    response = await client.post(f"/api/traders/{trader['id']}/trades", json=trade_payload(**overrides))
    assert response.status_code == 422


async def test_cannot_subscribe_to_yourself_or_twice(client, trader):
    response = await client.post(
        "/api/subscriptions", json={"copier_id": "0xtrader", "trader_id": trader["id"]}
    )
    assert response.status_code == 400

    await subscribe(client, "alice", trader["id"])
    response = await client.post(
        "/api/subscriptions", json={"copier_id": "alice", "trader_id": trader["id"]}
    )
    assert response.status_code == 400


async def test_cancelled_subscription_cannot_resume(client, trader):
    subscription = await subscribe(client, "alice", trader["id"])
    url = f"/api/subscriptions/{subscription['id']}"

    response = await client.patch(url, json={"copier_id": "bob", "status": "PAUSED"})
    assert response.status_code == 403

    response = await client.patch(url, json={"copier_id": "alice", "status": "CANCELLED"})
    assert response.status_code == 200
    assert response.json()["subscription"]["status"] == "CANCELLED"

    response = await client.patch(url, json={"copier_id": "alice", "status": "ACTIVE"})
    assert response.status_code == 409

    notifications = (await client.get("/api/notifications", params={"user_id": "alice"})).json()
    assert "SUBSCRIPTION_ENDED" in {n["type"] for n in notifications["notifications"]}


async def test_copy_settings_update(client, dispatcher, trader):
    subscription = await subscribe(client, "alice", trader["id"])
    url = f"/api/copy-settings/{subscription['id']}"

    response = await client.patch(url, json={
        "copier_id": "alice",
        "copy_amount_type": "FIXED",
        "copy_amount": "50",
        "excluded_tokens": ["eth"]
    })
    assert response.status_code == 200
    saved = response.json()["copy_settings"]
    assert saved["sizing"]["mode"] == "FIXED"
    assert saved["excluded_tokens"] == ["ETH"]

    response = await client.get(url, params={"copier_id": "bob"})
    assert response.status_code == 403

    # Excluded token: nothing is copied, the trade is still broadcast
    await client.post(f"/api/traders/{trader['id']}/trades", json=trade_payload())
    await dispatcher.drain()

    copies = (await client.get("/api/copy-trades", params={"copier_id": "alice"})).json()
    assert copies["copy_trades"] == []


async def test_mark_notifications_read(client, trader):
    await subscribe(client, "alice", trader["id"])

    response = await client.patch("/api/notifications", json={"user_id": "alice"})
    assert response.json() == {"success": True, "updated": 1}

    unread = await client.get("/api/notifications", params={"user_id": "alice", "unread_only": True})
    assert unread.json()["notifications"] == []


async def test_trade_history_pagination(client, dispatcher, trader):
    url = f"/api/traders/{trader['id']}/trades"
    for i in range(3):
        await client.post(url, json=trade_payload(tx_hash="0x" + f"{i:02d}" * 32))
    await dispatcher.drain()

    response = await client.get("/api/trades", params={"trader_id": trader["id"], "limit": 2})
    body = response.json()
    assert len(body["trades"]) == 2
    assert body["pagination"] == {"total": 3, "limit": 2, "offset": 0, "has_more": True}


async def test_deleting_a_trade_keeps_its_copies(client, dispatcher, trader):
    await subscribe(client, "alice", trader["id"])
    trade = (await client.post(f"/api/traders/{trader['id']}/trades", json=trade_payload())).json()["trade"]
    await dispatcher.drain()
    url = f"/api/trades/{trade['id']}"

    response = await client.delete(url, params={"user_id": "alice"})
    assert response.status_code == 403

    response = await client.delete(url, params={"user_id": "0xtrader"})
    assert response.status_code == 200
    assert (await client.get(url)).status_code == 404
    assert (await client.delete(url, params={"user_id": "0xtrader"})).status_code == 404

    copies = (await client.get("/api/copy-trades", params={"copier_id": "alice"})).json()["copy_trades"]
    assert [c["original_trade_id"] for c in copies] == [trade["id"]]
    assert Decimal(copies[0]["amount_copied"]) == Decimal("1000")


async def test_editing_a_trade(client, dispatcher, trader):
    await subscribe(client, "alice", trader["id"])
    url = f"/api/traders/{trader['id']}/trades"
    trade = (await client.post(url, json=trade_payload())).json()["trade"]
    other_hash = "0x" + "ef" * 32
    await client.post(url, json=trade_payload(tx_hash=other_hash))
    await dispatcher.drain()
    trade_url = f"/api/trades/{trade['id']}"

    edit = trade_payload(user_id="0xtrader", usd_value="5", notes="fat finger")

    response = await client.put(trade_url, json={**edit, "user_id": "alice"})
    assert response.status_code == 403

    response = await client.put("/api/trades/missing", json=edit)
    assert response.status_code == 404

    response = await client.put(trade_url, json={**edit, "tx_hash": other_hash})
    assert response.status_code == 409

    response = await client.put(trade_url, json=edit)
    assert response.status_code == 200
    assert response.json()["trade"]["notes"] == "fat finger"

    fetched = (await client.get(trade_url)).json()["trade"]
    assert Decimal(fetched["usd_value"]) == Decimal("5")

    # Copies made before the edit keep their original size
    copies = (await client.get("/api/copy-trades", params={"copier_id": "alice"})).json()["copy_trades"]
    by_trade = {c["original_trade_id"]: Decimal(c["amount_copied"]) for c in copies}
    assert by_trade[trade["id"]] == Decimal("1000")
