import pytest
from fastapi.testclient import TestClient

from facegate.main import app


@pytest.fixture(scope="module")
def client():
    return TestClient(app)


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"


def test_openapi_json(client):
    resp = client.get("/openapi.json")
    assert resp.status_code == 200
    paths = resp.json()["paths"]
    assert "/face-recognition/enroll" in paths
    assert "/face-recognition/webhook" in paths
    assert "/hikvision/event-listener" in paths


def test_docs_page(client):
    resp = client.get("/docs")
    assert resp.status_code == 200
    assert "text/html" in resp.headers.get("content-type", "")


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "text" in resp.headers.get("content-type", "").lower()
    assert "facegate_device_requests_total" in resp.text


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/no-such-route")
    assert resp.status_code == 404
    assert resp.json()["path"] == "/no-such-route"
