"""
tests/test_health.py -- Integration tests for GET /api/v1/health and app-wide error handling.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the store answers, 'error' otherwise
  - No authentication required
  - Unknown routes use the standard error envelope
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_reports_degraded_database(api_client, monkeypatch):
    """A failing ping degrades the status instead of failing the health check."""

    def broken_ping():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(api_client.users, "ping", broken_ping)
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["components"]["database"] == "error"


def test_unknown_route_uses_error_envelope(api_client):
    resp = api_client.client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"


def test_wrong_method_uses_error_envelope(api_client):
    resp = api_client.client.delete("/api/v1/health")
    assert resp.status_code == 405
    assert resp.json()["error"]["code"] == "http_405"
