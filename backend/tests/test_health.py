"""Tests for the healthcheck endpoint."""

from __future__ import annotations


def test_health_endpoint_returns_ok(client):
    """The healthcheck endpoint should report status ok and the scheduler backlog."""

    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "pending_steps": 0}
