"""Resend HTTP e-mail API adapter.

``POST {base_url}/emails`` with a bearer API key.  Status classification:

- 2xx          : delivered; the provider id is returned
- 400/403/422  : permanent (invalid recipient, unverified domain, bad payload)
- 429, 5xx     : transient
- transport    : transient (connect/read errors)
"""
from __future__ import annotations

import logging

import httpx

from courier.core.errors import ConfigurationError
from courier.delivery.base import DeliveryResult

logger = logging.getLogger(__name__)

_PERMANENT_STATUS = frozenset({400, 401, 403, 404, 422})


class ResendAdapter:
    """Send notification e-mails through the Resend REST API."""

    BASE_URL = "https://api.resend.com"

    def __init__(
        self,
        api_key: str | None,
        *,
        mail_from: str,
        base_url: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.mail_from = mail_from
        self.base_url = base_url or self.BASE_URL
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def check(self) -> None:
        if not self.api_key:
            raise ConfigurationError("RESEND_API_KEY is not configured")

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        recipient: str,
        subject: str,
        body_html: str,
        body_text: str | None = None,
    ) -> DeliveryResult:
        payload = {
            "from": self.mail_from,
            "to": [recipient],
            "subject": subject,
            "html": body_html,
        }
        if body_text:
            payload["text"] = body_text

        client = self._ensure_client()
        try:
            response = await client.post("/emails", json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Resend transport error: %s", type(exc).__name__)
            return DeliveryResult.failed(f"{type(exc).__name__}: {exc}")

        if response.is_success:
            body = response.json() if response.content else {}
            return DeliveryResult.ok(body.get("id"))

        message = _error_message(response)
        permanent = response.status_code in _PERMANENT_STATUS
        logger.warning("Resend rejected message: status=%d permanent=%s", response.status_code, permanent)
        return DeliveryResult.failed(f"HTTP {response.status_code}: {message}", permanent=permanent)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)
