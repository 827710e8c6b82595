"""Tests for the application wiring in helpdesk_kb.main."""

import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from helpdesk_kb import main
from helpdesk_kb.config import settings


@pytest_asyncio.fixture
async def running_app(tmp_path, monkeypatch):
    """The real application with its lifespan, on SQLite and the mock provider."""
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setattr(settings, "embedding_provider", "mock")
    monkeypatch.setattr(settings, "embedding_dimension", 256)
    monkeypatch.setattr(settings, "flag_reaper_interval_seconds", 0)
    monkeypatch.setattr(settings, "editor_tokens", {"editor-token": "agent-1"})

    async with main.lifespan(main.app):
        yield main.app


@pytest_asyncio.fixture
async def client(running_app):
    async with AsyncClient(transport=ASGITransport(app=running_app), base_url="http://test") as client:
        yield client


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"] == "connected"
    assert body["checks"]["embedding_provider"] == "mock"
    assert body["checks"]["embedding_workers"].startswith("running")
    assert body["checks"]["flag_reaper"] == "stopped"


async def test_root(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["service"] == "Knowledge Base Service"
    assert "X-Correlation-ID" in response.headers
    assert "X-Response-Time" in response.headers


async def test_create_and_search_end_to_end(client, running_app):
    headers = {"Authorization": "Bearer editor-token"}
    created = await client.post("/knowledge-base", headers=headers, json={
        "method": "POST",
        "path": "articles",
        "body": {
            "title": "Reset Password",
            "slug": "reset-password",
            "content": "Click forgot password on the login page.",
            "status": "published"
        }
    })
    assert created.status_code == 201

    await running_app.state.embedding_jobs.join()

    response = await client.post("/knowledge-base", json={
        "method": "POST",
        "path": "search",
        "body": {"query": "I forgot my password", "similarityThreshold": 0.1}
    })
    assert response.status_code == 200
    assert response.json()[0]["id"] == created.json()["id"]


async def test_errors_use_error_envelope(client):
    response = await client.post("/knowledge-base", json={"method": "GET", "path": "nowhere"})

    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}
