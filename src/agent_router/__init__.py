"""agent_router - Real-time agent state router for heads-up displays.

agent_router keeps the authoritative status of every AI coding agent,
enforces the legal action transitions between statuses and fans every
change out to connected HUD clients over WebSocket.
"""

__version__ = "0.1.0"

# Core exports
from .core import (
    FAKE_AGENTS,
    ActionGateway,
    AgentRegistry,
    AgentSimulator,
    ChangeNotifier,
    FakeAgentProfile,
)
from .schemas import (
    ActionResponse,
    AgentAction,
    AgentRecord,
    AgentStatus,
    legal_actions,
)

__all__ = [
    "FAKE_AGENTS",
    "ActionGateway",
    "ActionResponse",
    "AgentAction",
    "AgentRecord",
    "AgentRegistry",
    "AgentSimulator",
    "AgentStatus",
    "ChangeNotifier",
    "FakeAgentProfile",
    "__version__",
    "legal_actions",
]
