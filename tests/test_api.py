"""Tests for the FastAPI routes.

Covers:
- GET /health — liveness check
- /queue — stats, enqueue, item status, cancel, dead-letter retry/purge
- /scheduler — jobs, toggle, run, executions, dead letters, dedup status

``get_admin`` is overridden with an AdminService over an in-memory
database and a scripted adapter; nothing is delivered for real.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from courier.admin.service import AdminService
from courier.core.constants import ItemStatus, NotificationType, Priority
from courier.queue.models import AttemptRecord, DeadLetterEntry, QueuedItem, Recipient
from courier.scheduler.job_scheduler import JobScheduler
from courier.scheduler.schedule import Schedule
from courier.tracking.tracker import IdempotencyTracker


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def admin(make_queue, session_factory, clock) -> AdminService:
    scheduler = JobScheduler(session_factory, failure_threshold=1, clock=clock)
    tracker = IdempotencyTracker(session_factory, clock=clock)
    return AdminService(make_queue(), scheduler, tracker)


@pytest.fixture()
def api(admin: AdminService, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("COURIER_AUTOSTART", "false")

    from courier.core.settings import get_settings

    get_settings.cache_clear()

    from courier.api.deps import get_admin
    from courier.api.main import app

    app.dependency_overrides[get_admin] = lambda: admin
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _payload(**overrides) -> dict:
    body = {
        "type": "general",
        "recipient": {"email": "ops@example.com", "name": "Ops"},
        "subject": "Disk almost full",
        "body_html": "<p>92% used</p>",
        "priority": "high",
    }
    body.update(overrides)
    return body


def _dead_letter(admin: AdminService, item_id: str = "notif_dead1") -> None:
    at = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)
    item = QueuedItem(
        id=item_id,
        type=NotificationType.PAYROLL_CREATED,
        recipient=Recipient("payroll@example.com"),
        subject="Payroll ready",
        body_html="<p>ready</p>",
        body_text=None,
        priority=Priority.NORMAL,
        status=ItemStatus.DEAD,
        attempts=3,
        max_attempts=3,
        next_attempt_at=at,
        created_at=at,
        seq=1,
        last_error="timeout",
    )
    history = [AttemptRecord(attempt=n, at=at, error="timeout") for n in (1, 2, 3)]
    admin.queue.dead_letters.put(DeadLetterEntry(item=item, attempt_history=history, failed_at=at))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Queue routes
# ---------------------------------------------------------------------------


class TestQueueRoutes:
    def test_enqueue_then_get_status(self, api):
        response = api.post("/queue/items", json=_payload())
        assert response.status_code == 201
        item_id = response.json()["id"]

        item = api.get(f"/queue/items/{item_id}").json()
        assert item["status"] == "pending"
        assert item["priority"] == "high"
        assert api.get("/queue/stats").json()["pending"] == 1

    def test_enqueue_rejects_unknown_type(self, api):
        response = api.post("/queue/items", json=_payload(type="carrier_pigeon"))
        assert response.status_code == 422

    def test_enqueue_rejects_blank_body(self, api):
        response = api.post("/queue/items", json=_payload(body_html="   "))
        assert response.status_code == 422
        assert "body_html" in response.json()["detail"]

    def test_unknown_item_is_404(self, api):
        assert api.get("/queue/items/notif_nope").status_code == 404

    def test_cancel(self, api):
        item_id = api.post("/queue/items", json=_payload()).json()["id"]

        first = api.delete(f"/queue/items/{item_id}").json()
        second = api.delete(f"/queue/items/{item_id}").json()

        assert first["cancelled"] is True
        assert second["cancelled"] is False

    def test_dead_letter_list_retry_and_purge(self, api, admin):
        _dead_letter(admin, "notif_dead1")
        _dead_letter(admin, "notif_dead2")

        listed = api.get("/queue/dead-letters").json()
        assert {entry["item"]["id"] for entry in listed} == {"notif_dead1", "notif_dead2"}
        assert len(listed[0]["attempt_history"]) == 3

        retried = api.post("/queue/dead-letters/notif_dead1/retry")
        assert retried.status_code == 200
        assert api.get("/queue/items/notif_dead1").json()["attempts"] == 0

        assert api.delete("/queue/dead-letters/notif_dead2").status_code == 200
        assert api.delete("/queue/dead-letters/notif_dead2").status_code == 404
        assert api.post("/queue/dead-letters/notif_dead2/retry").status_code == 404
        assert api.get("/queue/dead-letters").json() == []

    def test_retry_all(self, api, admin):
        _dead_letter(admin, "notif_a")
        _dead_letter(admin, "notif_b")

        assert api.post("/queue/dead-letters/retry-all").json() == {"retried": 2}
        assert api.get("/queue/stats").json()["pending"] == 2


# ---------------------------------------------------------------------------
# Scheduler routes
# ---------------------------------------------------------------------------


class TestSchedulerRoutes:
    def test_jobs_toggle_and_run(self, api, admin):
        admin.scheduler.register_job("nightly", Schedule("0 3 * * *"), lambda: {"ok": True})

        assert [job["id"] for job in api.get("/scheduler/jobs").json()] == ["nightly"]
        assert api.get("/scheduler/jobs/nightly").json()["schedule"]["expression"] == "0 3 * * *"

        toggled = api.post("/scheduler/jobs/nightly/toggle", json={"is_active": False}).json()
        assert toggled["is_active"] is False

        run = api.post("/scheduler/jobs/nightly/run").json()
        assert run["outcome"] == "success"
        assert run["result"] == {"ok": True}

        executions = api.get("/scheduler/executions", params={"limit": 5}).json()
        assert executions[0]["job_id"] == "nightly"
        assert executions[0]["trigger"] == "manual"

    def test_unknown_job_is_404(self, api):
        assert api.get("/scheduler/jobs/missing").status_code == 404
        assert api.post("/scheduler/jobs/missing/run").status_code == 404
        assert api.post("/scheduler/jobs/missing/toggle", json={"is_active": True}).status_code == 404
        assert api.post("/scheduler/dead-letters/missing/retry").status_code == 404

    def test_dead_letter_routes(self, api, admin):
        def broken():
            raise RuntimeError("upstream report API down")

        admin.scheduler.register_job("nightly", Schedule("0 3 * * *"), broken)
        api.post("/scheduler/jobs/nightly/run")

        [entry] = api.get("/scheduler/dead-letters").json()
        assert entry["error"] == "upstream report API down"

        retried = api.post("/scheduler/dead-letters/nightly/retry").json()
        assert retried["retried"] is True

        assert api.delete("/scheduler/dead-letters").json() == {"cleared": 1}
        assert api.post("/scheduler/dead-letters/nightly/retry").status_code == 404

    def test_status_and_dedup(self, api, admin):
        admin.tracker.mark_as_sent("weekly_report", 4)

        assert api.get("/scheduler/status").json()["running"] is False
        dedup = api.get("/scheduler/dedup").json()
        assert dedup["types"]["weekly_report"]["sent"] is True


def test_configuration_error_maps_to_503(api, admin, monkeypatch):
    from courier.core.errors import ConfigurationError

    def missing_transport():
        raise ConfigurationError("SMTP_HOST is not set")

    monkeypatch.setattr(admin, "get_queue_stats", missing_transport)

    response = api.get("/queue/stats")
    assert response.status_code == 503
    assert response.json()["detail"] == "SMTP_HOST is not set"
