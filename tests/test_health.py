from __future__ import annotations


def test_health_check(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["status"] == "ok"
    assert payload["data"]["service"] == "Agency Coaching Backend"
    assert payload["pagination"] is None
    assert payload["meta"]["source"] == "system"


def test_liveness_check(client):
    response = client.get("/api/v1/healthz")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "ok"
