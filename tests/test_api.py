"""Tests for the FastAPI surface."""

import pytest
from fastapi.testclient import TestClient

import main
from visibility_engine.prompt_generation import PromptGenerator
from visibility_engine.visibility_run import VisibilityRunOrchestrator

from conftest import answer_json

OK = '{"status": "ok"}'


@pytest.fixture
def client(monkeypatch, orchestrator, gemini, sleep):
    engine = VisibilityRunOrchestrator(orchestrator, prompt_generator=PromptGenerator(gemini), sleep=sleep)
    monkeypatch.setattr(main, "ENGINE", engine)
    return TestClient(main.app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_analyze_returns_report(client, gemini):
    gemini.default = answer_json("Cited.", ["https://example.com"])

    response = client.post("/api/analyze", json={"url": "https://www.example.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["report"]["domain"] == "example.com"
    assert body["report"]["total_score"] == 9
    assert body["report"]["percentage"] == 100
    assert len(body["report"]["details"]) == 3


def test_analyze_invalid_url(client, gemini):
    response = client.post("/api/analyze", json={"url": "not a url"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert gemini.calls == []


def test_model_health_refresh(client, gemini, openrouter):
    gemini.default = OK
    openrouter.default = OK

    response = client.get("/api/health/models", params={"refresh": "true"})

    assert response.status_code == 200
    body = response.json()
    assert body["last_checked_at"] is not None
    assert "gemini" in body["healthy_models"]
    assert "huggingface_bge" not in body["healthy_models"]
    assert body["models"]["openrouter_deepseek"]["deprecated"] is True
    assert body["healthy_count"] == len(body["healthy_models"])


def test_model_health_before_first_check(client):
    body = client.get("/api/health/models").json()
    assert body["last_checked_at"] is None
    assert body["healthy_count"] == 0
