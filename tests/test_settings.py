import pytest
from pydantic import ValidationError

from courier.core.settings import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("QUEUE_CONCURRENCY", raising=False)
    settings = Settings(_env_file=None)

    assert settings.queue_concurrency == 3
    assert settings.queue_default_max_attempts == 3
    assert settings.queue_base_delay_ms == 1000
    assert settings.scheduler_timezone == "Asia/Riyadh"
    assert settings.delivery_backend == "smtp"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("QUEUE_CONCURRENCY", "8")
    monkeypatch.setenv("DELIVERY_BACKEND", "resend")
    monkeypatch.setenv("COURIER_AUTOSTART", "false")

    settings = Settings(_env_file=None)

    assert settings.queue_concurrency == 8
    assert settings.delivery_backend == "resend"
    assert settings.autostart is False


def test_invalid_values_are_rejected(monkeypatch):
    monkeypatch.setenv("QUEUE_CONCURRENCY", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
