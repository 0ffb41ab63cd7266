"""
Webhook notifier that reports notifications and recognition results.

Payloads are plain JSON objects, e.g. ``{"type": "notification", "event":
"motion"}`` or ``{"type": "recognition", "result": {...}}``, POSTed to the
configured URL. Delivery failures raise `WebhookSendError`; callers decide
whether to swallow them.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ...core.config import WebhookSettings

logger = logging.getLogger(__name__)


class WebhookSendError(RuntimeError):
    """Raised when dispatching a webhook fails."""


class WebhookClient(Protocol):
    """Protocol implemented by concrete HTTP clients."""

    async def send_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> None: ...


class HttpxWebhookClient:
    """Webhook client implemented with httpx."""

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._verify = verify
        self._transport = transport

    async def send_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> None:
        if not url:
            raise WebhookSendError("Webhook URL is required.")
        async with httpx.AsyncClient(
            timeout=self._timeout, verify=self._verify, transport=self._transport
        ) as client:
            try:
                response = await client.request(method, url, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                raise WebhookSendError(str(exc)) from exc
        if response.is_error:
            raise WebhookSendError(
                f"Webhook responded with {response.status_code}: {response.text}"
            )


class WebhookNotifier:
    """Send JSON payloads to the configured webhook endpoint."""

    def __init__(
        self,
        settings: WebhookSettings,
        *,
        client: WebhookClient | None = None,
    ) -> None:
        self._url = self._validate_url(settings.url, settings.require_https)
        self._method = settings.method
        self._headers = dict(settings.headers)
        self._client = client or HttpxWebhookClient(
            timeout=settings.timeout, verify=settings.verify_ssl
        )

    @property
    def url(self) -> str | None:
        return self._url

    async def send(self, payload: dict[str, Any]) -> None:
        if not self._url:
            logger.debug("Skipping webhook %s because no URL is configured.", payload.get("type"))
            return
        await self._client.send_json(
            url=self._url,
            payload=payload,
            method=self._method,
            headers=self._headers,
        )
        logger.info("Webhook delivered %s to %s", payload.get("type"), self._url)

    @staticmethod
    def _validate_url(url: str | None, require_https: bool) -> str | None:
        if url is None:
            return None
        if require_https and not url.lower().startswith("https://"):
            raise ValueError("Webhook URL must use https:// when require_https is enabled.")
        return url


__all__ = [
    "HttpxWebhookClient",
    "WebhookClient",
    "WebhookNotifier",
    "WebhookSendError",
]
