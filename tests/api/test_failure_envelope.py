import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def assert_failure_envelope(body: dict):
    """
    Enforces the minimal failure response contract.
    """
    assert isinstance(body, dict), "Failure response must be a JSON object"
    assert "error" in body, "Missing 'error' key in failure response"

    error = body["error"]
    assert isinstance(error, dict), "'error' must be an object"

    assert "type" in error, "Missing 'error.type'"
    assert "message" in error, "Missing 'error.message'"

    assert isinstance(error["type"], str), "'error.type' must be a string"
    assert isinstance(error["message"], str), "'error.message' must be a string"


PAYLOAD = {
    "query_text": "Show variance for cost center 101",
    "identity": {"user_id": "u-analyst", "roles": ["analyst"]},
}


# ------------------------------------------------------------
# Tests
# ------------------------------------------------------------

def test_pipeline_unavailable_returns_failure_envelope(client):
    """
    Pipeline not initialised (startup failed or not run).
    Must return a structured 503.
    """
    with patch("API_LAYER.app.orchestrator", new=None):
        response = client.post("/process", json=PAYLOAD)

    assert response.status_code == 503
    assert_failure_envelope(response.json())


def test_request_timeout_returns_504(client):
    async def slow(query):
        await asyncio.sleep(5)

    mock_orchestrator = MagicMock()
    mock_orchestrator.handle_user_query = slow

    with patch("API_LAYER.app.orchestrator", new=mock_orchestrator), \
         patch("API_LAYER.app.REQUEST_TIMEOUT_S", new=0.05):
        response = client.post("/process", json=PAYLOAD)

    assert response.status_code == 504
    body = response.json()
    assert_failure_envelope(body)
    assert body["error"]["type"] == "timeout"


def test_unhandled_exception_returns_failure_envelope(client):
    mock_orchestrator = MagicMock()
    mock_orchestrator.handle_user_query = AsyncMock(side_effect=RuntimeError("boom"))

    with patch("API_LAYER.app.orchestrator", new=mock_orchestrator), \
         patch("API_LAYER.app.DEBUG", new=False):
        response = client.post("/process", json=PAYLOAD)

    assert response.status_code == 500
    body = response.json()
    assert_failure_envelope(body)
    assert "boom" not in body["error"]["message"]


@pytest.mark.parametrize("query_text", ["", "   "])
def test_empty_query_is_a_bad_request(client, wired, query_text):
    response = client.post("/process", json={**PAYLOAD, "query_text": query_text})

    assert response.status_code == 400
    assert_failure_envelope(response.json())


def test_audit_lookup_requires_token(client, wired):
    with patch("API_LAYER.app.AUDIT_API_TOKEN", new="s3cret"):
        missing = client.get("/audit/abc")
        wrong = client.get("/audit/abc", headers={"X-Audit-Token": "guess"})

    assert missing.status_code == 403
    assert wrong.status_code == 403
    assert_failure_envelope(wrong.json())


def test_audit_lookup_disabled_without_configured_token(client, wired):
    with patch("API_LAYER.app.AUDIT_API_TOKEN", new=None):
        response = client.get("/audit/abc", headers={"X-Audit-Token": ""})

    assert response.status_code == 403
