"""
Wasender Transport — WhatsApp gateway used for all outbound notifications.

Call flow:
1. send() POSTs {"to", "text"} to {base_url}/send-message with a bearer key
2. 2xx → SendResult with the provider message id
3. 422, an unknown-number body or a known permanent phrase → permanent
4. 429, 5xx, network errors → TransientTransportError (the queue retries)

Connection-level failures get one quick retry here before surfacing.
"""
from __future__ import annotations

import structlog
from typing import Any, Iterable, Optional

import httpx
from tenacity import (
    retry, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from channels.base import (
    MessageTransport, PermanentTransportError, TransientTransportError,
)
from config.settings import DEFAULT_PERMANENT_SIGNATURES, TransportConfig
from models.schemas import SendResult

logger = structlog.get_logger()

UNKNOWN_NUMBER_MARKERS = ("does not exist on whatsapp", "not on whatsapp")


class WasenderTransport(MessageTransport):
    """REST client for the Wasender WhatsApp API."""

    name = "wasender"

    def __init__(
        self,
        config: TransportConfig,
        client: Optional[httpx.AsyncClient] = None,
        permanent_signatures: Optional[Iterable[str]] = None,
    ):
        self.config = config
        self.enabled = config.enabled
        self.api_key = config.api_key
        self.base_url = config.base_url.rstrip("/")
        self._client = client
        if permanent_signatures is None:
            permanent_signatures = DEFAULT_PERMANENT_SIGNATURES
        self._permanent_markers = UNKNOWN_NUMBER_MARKERS + tuple(
            s.lower() for s in permanent_signatures
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.config.timeout, connect=10.0),
            )
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        reraise=True,
    )
    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(path, json=body)

    async def send(
        self, destination: str, payload: str, metadata: dict[str, Any]
    ) -> SendResult:
        if not self.enabled or not self.api_key:
            logger.warning("wasender_disabled", destination=destination)
            raise PermanentTransportError("service_disabled", self.name)

        try:
            resp = await self._post(
                "/send-message", {"to": destination, "text": payload}
            )
        except httpx.TimeoutException as e:
            raise TransientTransportError(f"timeout: {e}", self.name) from e
        except httpx.TransportError as e:
            raise TransientTransportError(f"network error: {e}", self.name) from e

        return self._interpret(resp, destination)

    def _is_permanent_text(self, text: str) -> bool:
        text = text.lower()
        return any(m in text for m in self._permanent_markers)

    def _interpret(self, resp: httpx.Response, destination: str) -> SendResult:
        body_text = resp.text[:500]

        if resp.status_code >= 400:
            logger.error("wasender_api_error",
                         status=resp.status_code,
                         body=body_text,
                         destination=destination)
            if resp.status_code == 422:
                raise PermanentTransportError(
                    f"status 422: {body_text}", self.name
                )
            if self._is_permanent_text(body_text):
                raise PermanentTransportError(body_text, self.name)
            raise TransientTransportError(
                f"status {resp.status_code}: {body_text}", self.name
            )

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if data.get("success") is False:
            message = data.get("message") or data.get("error") or "send rejected"
            return SendResult.failed(
                str(message), permanent=self._is_permanent_text(str(message))
            )

        inner = data.get("data") or {}
        msg_id = inner.get("msgId") or inner.get("id")
        return SendResult.ok(
            str(msg_id) if msg_id is not None else None,
            rate_limit_remaining=resp.headers.get("x-ratelimit-remaining"),
        )

    async def health_check(self) -> dict[str, Any]:
        return {
            "transport": self.name,
            "enabled": self.enabled,
            "configured": bool(self.api_key),
            "base_url": self.base_url,
        }

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
