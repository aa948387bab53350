# Core state engine components

from .gateway import ActionGateway
from .registry import AgentRegistry, ChangeNotifier
from .simulator import FAKE_AGENTS, AgentSimulator, FakeAgentProfile

__all__ = [
    "FAKE_AGENTS",
    "ActionGateway",
    "AgentRegistry",
    "AgentSimulator",
    "ChangeNotifier",
    "FakeAgentProfile",
]
