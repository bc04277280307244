"""
Transport Factory — instantiates the configured outbound transport.

"log" is the default so a development process never talks to the gateway.
"""
from __future__ import annotations

import structlog
from typing import Iterable, Optional

from channels.base import LogTransport, MessageTransport
from config.settings import TransportConfig

logger = structlog.get_logger()

SUPPORTED_PROVIDERS = ("log", "wasender")


def create_transport(
    config: TransportConfig,
    permanent_signatures: Optional[Iterable[str]] = None,
) -> MessageTransport:
    """
    Create a transport from config. `permanent_signatures` lets the gateway
    transport classify rejection messages the same way the queue does.

    Raises:
        ValueError: If the provider name is not supported.
    """
    provider = (config.provider or "log").lower()

    if provider == "wasender":
        from channels.wasender import WasenderTransport
        transport = WasenderTransport(config, permanent_signatures=permanent_signatures)
        logger.info("transport_created", provider="wasender",
                    enabled=config.enabled)
        return transport

    elif provider == "log":
        logger.info("transport_created", provider="log")
        return LogTransport()

    raise ValueError(
        f"Unsupported transport provider: {config.provider}. "
        f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
    )
