"""Data models and type definitions for the agent router."""

from .messages import (
    ActionRequest,
    ActionResponse,
    ActionResultMessage,
    AgentRecord,
    AgentUpdateMessage,
    ErrorMessage,
    SnapshotMessage,
    encode_message,
    encode_snapshot,
    encode_update,
    now_ms,
)
from .types import (
    ACTION_SUMMARIES,
    ACTION_TRANSITIONS,
    LEGAL_ACTIONS,
    AgentAction,
    AgentActionRequest,
    AgentStatus,
    legal_actions,
    parse_action,
    parse_status,
    resulting_status,
)

__all__ = [
    "ACTION_SUMMARIES",
    "ACTION_TRANSITIONS",
    "LEGAL_ACTIONS",
    "ActionRequest",
    "ActionResponse",
    "ActionResultMessage",
    "AgentAction",
    "AgentActionRequest",
    "AgentRecord",
    "AgentStatus",
    "AgentUpdateMessage",
    "ErrorMessage",
    "SnapshotMessage",
    "encode_message",
    "encode_snapshot",
    "encode_update",
    "legal_actions",
    "now_ms",
    "parse_action",
    "parse_status",
    "resulting_status",
]
