"""
Transport boundary — the narrow interface the dispatch queue sends through.

Provides:
- TransportError: structured error hierarchy (permanent vs transient)
- MessageTransport: abstract base every outbound transport implements
- LogTransport: development transport that only logs the send
"""
from __future__ import annotations

import abc
import uuid
import structlog
from typing import Any

from models.schemas import SendResult

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class TransportError(Exception):
    """Base exception for all transport operations."""

    def __init__(self, message: str, transport: str = "", retryable: bool = True):
        self.transport = transport
        self.retryable = retryable
        super().__init__(message)


class PermanentTransportError(TransportError):
    """The destination or the transport itself can never accept this send."""

    def __init__(self, message: str, transport: str = ""):
        super().__init__(message, transport, retryable=False)


class TransientTransportError(TransportError):
    """Network hiccup, throttling or a temporary provider fault."""

    def __init__(self, message: str, transport: str = ""):
        super().__init__(message, transport, retryable=True)


# ══════════════════════════════════════════════════════════════
#  TRANSPORT — Abstract Base
# ══════════════════════════════════════════════════════════════

class MessageTransport(abc.ABC):
    """
    Performs the actual delivery of one message.

    Implementations either return a SendResult (success or a classified
    failure) or raise a TransportError. Anything else they raise is treated
    by the queue as an unclassified error.
    """

    name: str = "transport"

    @abc.abstractmethod
    async def send(
        self, destination: str, payload: str, metadata: dict[str, Any]
    ) -> SendResult:
        ...

    async def health_check(self) -> dict[str, Any]:
        return {"transport": self.name}

    async def close(self) -> None:
        pass


class LogTransport(MessageTransport):
    """Logs every message instead of delivering it. Used in development."""

    name = "log"

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def send(
        self, destination: str, payload: str, metadata: dict[str, Any]
    ) -> SendResult:
        msg_id = f"log.{uuid.uuid4().hex[:20]}"
        self.sent.append({
            "destination": destination,
            "payload": payload,
            "metadata": metadata,
            "message_id": msg_id,
        })
        logger.info("log_transport_sent",
                    destination=destination,
                    msg_id=msg_id,
                    chars=len(payload))
        return SendResult.ok(msg_id)

    async def health_check(self) -> dict[str, Any]:
        return {"transport": self.name, "messages_logged": len(self.sent)}

