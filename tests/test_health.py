def test_health_endpoint_returns_ok(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert "service" in body
    assert "version" in body
    assert "environment" in body
    assert body["queue_running"] is False


def test_health_is_degraded_when_transport_is_missing(monkeypatch):
    from fastapi.testclient import TestClient

    from courier.core.settings import get_settings

    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("COURIER_AUTOSTART", "true")
    monkeypatch.setenv("DELIVERY_BACKEND", "smtp")
    monkeypatch.delenv("SMTP_HOST", raising=False)
    get_settings.cache_clear()

    from courier.main import app

    with TestClient(app) as test_client:
        body = test_client.get("/health").json()

    get_settings.cache_clear()

    assert body["status"] == "degraded"
    assert "SMTP_HOST" in body["error"]
    assert body["queue_running"] is False
    assert body["scheduler_running"] is False
