"""
Tests for the health and metrics endpoints.
"""


def test_liveness(client):
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readiness_reports_message_count(client):
    client.post("/sync", json={"messages": [
        {"id": "m1", "device_id": "dev-a", "content": "one", "timestamp": "2024-01-01T00:00:00Z"},
        {"id": "m2", "device_id": "dev-a", "content": "two", "timestamp": "2024-01-01T00:00:00Z"},
    ]})

    response = client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["database"] == "connected"
    assert data["total_messages"] == 2


def test_readiness_fails_without_schema(client, monkeypatch):
    monkeypatch.setattr("meshsync.main.check_db_health", lambda: False)

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


def test_metrics_count_sync_outcomes(client):
    client.post("/sync", json={"messages": [
        {"id": "m1", "device_id": "dev-a", "content": "one", "timestamp": "2024-01-01T00:00:00Z"},
    ]})
    client.post("/sync", json={"messages": [
        {"id": "m1", "device_id": "dev-a", "content": "one", "timestamp": "2024-01-01T00:00:00Z"},
    ], "conflict_strategy": "latest"})

    response = client.get("/metrics")

    assert response.status_code == 200
    body = response.text
    assert 'sync_records_total{outcome="saved"}' in body
    assert 'sync_records_total{outcome="skipped"}' in body
    assert 'sync_conflicts_total{strategy="latest"}' in body
    assert 'http_requests_total{method="POST",path="/sync"' in body


def test_request_id_header(client):
    first = client.get("/health/live")
    second = client.get("/health/live")

    assert first.headers["X-Request-ID"]
    assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]
