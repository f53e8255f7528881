from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from starlette.testclient import TestClient

from backroom.config import Settings
from backroom.ledger import SqliteInventoryStore
from backroom.services import build_services
from backroom.web import create_app


class FakeChannel:
    def __init__(self) -> None:
        self.replies = []
        self.sent = []

    def send_reply(self, to, body, message_id):
        self.replies.append((to, body, message_id))
        return True

    def send_message(self, to, body):
        self.sent.append((to, body))
        return True

    def download_media(self, media_id):
        return b"", None


@pytest.fixture
def services(tmp_path: Path):
    settings = Settings(
        db_path=str(tmp_path / "inventory.sqlite3"),
        account="shop",
        whatsapp_verify_token="verify-me",
        dashboard_api_token="s3cret",
    )
    svc = build_services(settings, offline=True, store=SqliteInventoryStore(settings.db_path))
    yield svc
    svc.close()


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services=services, allow_origins=["*"]))


AUTH = {"Authorization": "Bearer s3cret"}


def test_health(client: TestClient):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_webhook_verification(client: TestClient):
    ok = client.get(
        "/webhook/whatsapp",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
    )
    assert ok.status_code == 200
    assert ok.text == "12345"

    bad = client.get(
        "/webhook/whatsapp",
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"},
    )
    assert bad.status_code == 403


def test_webhook_message_runs_pipeline_and_replies(services, client: TestClient):
    channel = FakeChannel()
    services.whatsapp = channel
    body = {
        "entry": [{"changes": [{"value": {
            "messages": [{"from": "27821234567", "id": "wamid.1", "type": "text",
                          "text": {"body": "Added 10 boxes of nails"}}],
        }}]}]
    }

    r = client.post("/webhook/whatsapp", json=body)

    assert r.status_code == 200
    assert services.ledger.find("nails").quantity == 10.0
    assert len(channel.replies) == 1
    to, text, message_id = channel.replies[0]
    assert (to, message_id) == ("27821234567", "wamid.1")
    assert "Added" in text


def test_webhook_acknowledges_status_callbacks_and_garbage(client: TestClient):
    status = {"entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.1", "status": "delivered"}]}}]}]}
    assert client.post("/webhook/whatsapp", json=status).status_code == 200
    assert client.post("/webhook/whatsapp/status", json=status).status_code == 200
    assert client.post("/webhook/whatsapp", content=b"not json").status_code == 200


def test_dashboard_requires_token(client: TestClient):
    assert client.get("/api/inventory").status_code == 401
    assert client.get("/api/inventory", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_inventory_crud(client: TestClient):
    created = client.post("/api/inventory", json={"name": "Gloves", "quantity": 4, "unit": "pairs"}, headers=AUTH)
    assert created.status_code == 201
    assert created.json()["name"] == "gloves"

    dup = client.post("/api/inventory", json={"name": "gloves", "quantity": 1}, headers=AUTH)
    assert dup.status_code == 409

    invalid = client.post("/api/inventory", json={"name": "tape", "quantity": -2}, headers=AUTH)
    assert invalid.status_code == 400

    patched = client.patch("/api/inventory/gloves", json={"quantity": 10}, headers=AUTH)
    assert patched.status_code == 200
    assert patched.json()["quantity"] == 10.0
    assert patched.json()["unit"] == "pairs"

    assert client.patch("/api/inventory/unicorn", json={"quantity": 1}, headers=AUTH).status_code == 404

    listed = client.get("/api/inventory", params={"search": "glo"}, headers=AUTH).json()
    assert listed["count"] == 1

    history = client.get("/api/transactions", params={"item": "gloves"}, headers=AUTH).json()["items"]
    assert [t["action"] for t in history] == ["ADJUST", "ADD"]

    assert client.delete("/api/inventory/gloves", headers=AUTH).status_code == 200
    assert client.delete("/api/inventory/gloves", headers=AUTH).status_code == 404


def test_messages_endpoint_runs_pipeline(client: TestClient):
    r = client.post("/api/messages", json={"text": "hi"}, headers=AUTH)
    assert r.status_code == 200
    assert "Welcome to The Backroom" in r.json()["reply"]

    r = client.post("/api/messages", json={"text": "Got 3 bags of cement", "user": "ops"}, headers=AUTH)
    assert "cement" in r.json()["reply"]

    assert client.post("/api/messages", json={"text": 5}, headers=AUTH).status_code == 400


def test_dashboard_audit_writes_run_off_the_event_loop(services, monkeypatch):
    on_loop = []
    original = services.transactions.append

    def recording_append(transaction):
        try:
            asyncio.get_running_loop()
            on_loop.append(transaction.action)
        except RuntimeError:
            pass
        return original(transaction)

    monkeypatch.setattr(services.transactions, "append", recording_append)
    client = TestClient(create_app(services=services, allow_origins=["*"]))

    assert client.post("/api/inventory", json={"name": "tape", "quantity": 2}, headers=AUTH).status_code == 201
    assert client.patch("/api/inventory/tape", json={"quantity": 5}, headers=AUTH).status_code == 200

    assert on_loop == []
    history = client.get("/api/transactions", params={"item": "tape"}, headers=AUTH).json()["items"]
    assert [t["action"] for t in history] == ["ADJUST", "ADD"]
