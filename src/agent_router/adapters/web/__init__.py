"""Web adapter for HTTP and WebSocket endpoints.

This module provides the FastAPI application that HUD clients subscribe to
and that external callers submit agent actions through.
"""

from agent_router.adapters.web.hub import (
    BroadcastHub,
    Subscriber,
    WebSocketSubscriber,
)
from agent_router.adapters.web.server import WebAdapter, create_web_adapter

__all__ = [
    "BroadcastHub",
    "Subscriber",
    "WebAdapter",
    "WebSocketSubscriber",
    "create_web_adapter",
]
