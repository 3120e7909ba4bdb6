"""Delivery adapters — the abstract "send" capability behind the queue."""
from __future__ import annotations

from courier.core.errors import ConfigurationError
from courier.core.settings import Settings
from courier.delivery.base import DeliveryAdapter, DeliveryResult
from courier.delivery.resend import ResendAdapter
from courier.delivery.smtp import SmtpAdapter

__all__ = [
    "DeliveryAdapter",
    "DeliveryResult",
    "ResendAdapter",
    "SmtpAdapter",
    "build_adapter",
]


def build_adapter(settings: Settings, *, check: bool = True) -> DeliveryAdapter:
    """Return the configured adapter.

    With *check* the transport configuration is validated immediately and
    ``ConfigurationError`` is raised if it is unusable; otherwise validation
    is deferred to ``DeliveryQueue.start()``.
    """
    backend = settings.delivery_backend.lower()
    if backend == "smtp":
        adapter: DeliveryAdapter = SmtpAdapter(
            settings.smtp_host,
            settings.smtp_port,
            mail_from=settings.mail_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.queue_send_timeout_seconds,
        )
    elif backend == "resend":
        adapter = ResendAdapter(
            settings.resend_api_key,
            mail_from=settings.mail_from,
            base_url=settings.resend_base_url,
            timeout=settings.queue_send_timeout_seconds,
        )
    else:
        raise ConfigurationError(
            f"Unknown DELIVERY_BACKEND {settings.delivery_backend!r}; must be one of ['resend', 'smtp']"
        )
    if check:
        adapter.check()
    return adapter
