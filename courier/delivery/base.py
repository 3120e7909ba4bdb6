"""Delivery adapter contract.

The queue only depends on ``send(recipient, subject, body_html)``; the
transport behind it (SMTP relay, HTTP e-mail API, SMS gateway) is chosen
at startup.  Adapters report failures either by returning a
``DeliveryResult`` with ``success=False`` or by raising a
``DeliveryError``; ``permanent=True`` skips the remaining retry budget.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    id: str | None = None
    error: str | None = None
    permanent: bool = False

    @classmethod
    def ok(cls, message_id: str | None = None) -> DeliveryResult:
        return cls(success=True, id=message_id)

    @classmethod
    def failed(cls, error: str, *, permanent: bool = False) -> DeliveryResult:
        return cls(success=False, error=error, permanent=permanent)


@runtime_checkable
class DeliveryAdapter(Protocol):
    async def send(
        self,
        recipient: str,
        subject: str,
        body_html: str,
        body_text: str | None = None,
    ) -> DeliveryResult:
        """Deliver one message."""
        ...

    def check(self) -> None:
        """Raise ``ConfigurationError`` if the transport cannot be used."""
        ...
