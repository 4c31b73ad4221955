"""API integration tests."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from chat_archive.api import dependencies as deps
from chat_archive.app import app
from chat_archive.core.errors import RateLimitedError
from conftest import FakeProvider, make_message

CHAT = 77


@pytest.fixture
def provider(monkeypatch: pytest.MonkeyPatch) -> FakeProvider:
    monkeypatch.setenv("CHARC_EMBEDDING_DIM", "16")
    monkeypatch.setenv("CHARC_TAKEOUT_FINISH_WAIT", "0")
    contents = ["quarterly budget review", "budget approved", "see you at the lake", "lake trip photos"]
    fake = FakeProvider(
        {CHAT: [make_message(CHAT, mid, content) for mid, content in enumerate(contents, start=1)]}
    )
    deps.set_provider(fake)
    return fake


@pytest.fixture
def client(provider: FakeProvider) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_sync_embed_search_flow(client: TestClient, provider: FakeProvider) -> None:
    sync_resp = client.post("/sync", json={"chat_id": CHAT, "page_size": 2})
    assert sync_resp.status_code == 200
    sync_data = sync_resp.json()
    assert sync_data["status"] == "completed"
    assert sync_data["result"] == "success"
    assert sync_data["metadata"]["processedMessages"] == 4
    assert sync_data["events"][0]["percent"] == 0
    assert provider.finished == [(1, True)]

    embed_resp = client.post("/embed", json={"chat_id": CHAT, "batch_size": 3, "concurrency": 2})
    assert embed_resp.status_code == 200
    assert embed_resp.json()["metadata"]["processed"] == 4

    search_resp = client.post("/search", json={"query": "budget", "chat_id": CHAT, "limit": 1})
    assert search_resp.status_code == 200
    payload = search_resp.json()
    assert payload["total"] == 2
    assert payload["vector_used"] is False
    assert payload["items"][0]["source"] == "lexical"
    assert "budget" in payload["items"][0]["message"]["content"]

    chats = client.get("/chats").json()
    assert chats == [{"id": CHAT, "title": f"Chat {CHAT}", "type": "user", "message_count": 4}]

    cursor = client.get(f"/chats/{CHAT}/cursor").json()
    assert cursor["last_message_id"] == 4

    job = client.get(f"/jobs/{sync_data['job_id']}").json()
    assert job["result"] == "success"


def test_rate_limited_sync_reports_wait(client: TestClient, provider: FakeProvider) -> None:
    provider.page_errors = {1: RateLimitedError(42)}
    data = client.post("/sync", json={"chat_id": CHAT}).json()
    assert data["status"] == "failed"
    assert data["result"] == "aborted"
    assert data["metadata"]["type"] == "waiting"
    assert data["metadata"]["waitSeconds"] == 42


def test_cursor_admin(client: TestClient) -> None:
    assert client.get(f"/chats/{CHAT}/cursor").status_code == 404
    client.post("/sync", json={"chat_id": CHAT, "method": "getMessage"})
    assert client.delete(f"/chats/{CHAT}/cursor").json() == {"status": "ok", "deleted": 1}
    assert client.delete(f"/chats/{CHAT}/cursor").json() == {"status": "noop", "deleted": 0}


def test_folder_scope_and_missing_folder(client: TestClient) -> None:
    client.post("/sync", json={"chat_id": CHAT})
    folder = client.put("/folders/3", json={"title": "Personal", "chat_ids": [CHAT]}).json()
    assert folder["chat_ids"] == [CHAT]
    hits = client.post("/search", json={"query": "lake", "folder_id": 3, "limit": 1}).json()
    assert hits["total"] == 2
    assert client.post("/search", json={"query": "lake", "folder_id": 99}).status_code == 404


def test_invalid_requests_rejected(client: TestClient) -> None:
    assert client.post("/embed", json={"chat_id": CHAT, "concurrency": 11}).status_code == 422
    assert client.post("/search", json={"query": ""}).status_code == 422


def test_metrics_endpoint(client: TestClient) -> None:
    client.post("/sync", json={"chat_id": CHAT})
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "charc_messages_fetched_total" in resp.text


def test_missing_provider_is_unavailable() -> None:
    deps.set_provider(None)
    with TestClient(app) as client:
        assert client.post("/sync", json={"chat_id": 1}).status_code == 503


def test_sync_to_json_file(client: TestClient, tmp_path) -> None:
    resp = client.post(
        "/sync",
        json={"chat_id": CHAT, "format": "json", "export_path": str(tmp_path / "dump")},
    )
    assert resp.status_code == 200
    metadata = resp.json()["metadata"]
    assert metadata["format"] == "json"
    assert metadata["processedMessages"] == 4
    assert metadata["outputFile"].startswith(str(tmp_path / "dump"))
    assert client.get("/chats").json() == []
