"""Transport registry."""

from __future__ import annotations

from ..config import Settings
from .base import SessionTransport, TransportRegistry
from .mock import MockTransport
from .websocket import WebSocketTransport


def default_registry(settings: Settings | None = None) -> TransportRegistry:
    resolved = settings or Settings()
    return TransportRegistry(
        [
            WebSocketTransport(resolved.backend_ws_url),
            MockTransport(),
        ]
    )


def transport_for(settings: Settings) -> SessionTransport:
    registry = default_registry(settings)
    transport = registry.get(settings.resolved_transport)
    if transport is None:
        raise RuntimeError(f"No transport available for {settings.resolved_transport}")
    return transport
