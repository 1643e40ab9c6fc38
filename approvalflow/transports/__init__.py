"""Signal transports and the factory that picks one from configuration."""

from __future__ import annotations

import os
from typing import Callable, Dict, Optional

from ..config import ApprovalFlowConfig, load_config
from .base import Delivery, SignalTransport, dead_letter_topic
from .inmemory import InMemoryTransport

TRANSPORT_ENV = "APPROVALFLOW_TRANSPORT"


def _inmemory(config: ApprovalFlowConfig) -> SignalTransport:
    return InMemoryTransport(max_attempts=config.transport.max_attempts)


def _redis(config: ApprovalFlowConfig) -> SignalTransport:
    # redis is only imported when it is selected
    from .redis import RedisTransport

    return RedisTransport.from_config(config.transport)


_BACKENDS: Dict[str, Callable[[ApprovalFlowConfig], SignalTransport]] = {
    "inmemory": _inmemory,
    "redis": _redis,
}


def get_transport(
    backend: Optional[str] = None, config: Optional[ApprovalFlowConfig] = None
) -> SignalTransport:
    """Build the transport named by ``backend``, the environment or the config."""
    config = config or load_config()
    name = (backend or os.getenv(TRANSPORT_ENV) or config.transport.backend).lower()
    try:
        build = _BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unsupported transport backend: {name}") from None
    return build(config)


__all__ = [
    "Delivery",
    "InMemoryTransport",
    "SignalTransport",
    "dead_letter_topic",
    "get_transport",
]
