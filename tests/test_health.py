"""Health endpoint tests."""


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["service"] == "calmnotes-api"
    assert "uptime_s" in body


def test_ready(client):
    response = client.get("/api/health/ready")
    assert response.status_code == 200
    body = response.json()
    assert body["components"]["database"] == "ok"
    assert body["components"]["billing"] == "configured"


def test_correlation_headers(client):
    response = client.get("/api/health", headers={"x-request-id": "req-123"})
    assert response.headers["x-request-id"] == "req-123"
    assert response.headers["x-correlation-id"]
