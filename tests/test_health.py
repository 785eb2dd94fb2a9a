"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version and backend fields
  - No authentication required
"""

from __future__ import annotations

from api.main import API_VERSION


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and backend."""
    client, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == API_VERSION
    assert data["backend"] == "sql"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without the admin key."""
    client, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_host_rejected(api_client):
    """TrustedHostMiddleware refuses Host headers outside the allow list."""
    client, _ = api_client
    resp = client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
