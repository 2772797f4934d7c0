import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import config
from core.errors import NotFoundError, UnexpectedError, ValidationError, register_exception_handlers


@pytest.fixture
def failing_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/api/reports/crash")
    async def build_report():
        raise RuntimeError("connection reset by peer")

    @app.get("/api/reports/storage")
    async def read_storage():
        raise UnexpectedError()

    @app.get("/api/reports/missing")
    async def find_report():
        raise NotFoundError("Report not found")

    @app.post("/api/reports")
    async def save_report():
        raise ValidationError("Report period is invalid", errors=[{"field": "period"}])

    return TestClient(app, raise_server_exceptions=False)


def test_unexpected_error_defaults():
    error = UnexpectedError()
    assert error.status_code == 500
    assert error.detail == "Failed to process request"


def test_unhandled_exception_becomes_500_envelope(failing_client):
    response = failing_client.get("/api/reports/crash")
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Failed to build report"
    assert "RuntimeError" in body["error"]


def test_stack_is_hidden_in_production(failing_client, monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "production")
    body = failing_client.get("/api/reports/crash").json()
    assert body["message"] == "Failed to build report"
    assert "RuntimeError" not in str(body)


def test_raised_unexpected_error_keeps_envelope(failing_client):
    response = failing_client.get("/api/reports/storage")
    assert response.status_code == 500
    assert response.json()["message"] == "Failed to process request"


def test_domain_errors_map_to_status(failing_client):
    missing = failing_client.get("/api/reports/missing")
    assert missing.status_code == 404
    assert missing.json()["message"] == "Report not found"

    invalid = failing_client.post("/api/reports")
    assert invalid.status_code == 400
    assert invalid.json()["data"] == {"errors": [{"field": "period"}]}
