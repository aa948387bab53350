"""Pydantic models for agent records and the JSON wire protocol.

Every message that leaves the server goes through :func:`encode_message`, so
the snapshot, update and action-result shapes cannot drift between call sites.
"""

import time
from collections.abc import Iterable
from typing import Any, Literal

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_router.schemas.types import AgentAction, AgentStatus


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class AgentRecord(BaseModel):
    """Authoritative state of one agent as held by the registry."""

    agent_id: str = Field(
        description="Opaque stable identifier, unique key",
        min_length=1,
        json_schema_extra={"example": "agent-1"},
    )
    name: str = Field(
        default="",
        description="Display label",
        json_schema_extra={"example": "Frontend"},
    )
    status: AgentStatus = Field(description="Current lifecycle status")
    summary: str = Field(default="", description="One-line current-state text")
    detail: str = Field(default="", description="Longer multi-line description")
    ts: int = Field(
        default=0,
        ge=0,
        description="Epoch milliseconds of the last mutation, set by the registry",
    )
    actions: list[AgentAction] = Field(
        default_factory=list,
        description="Actions legal from the current status, derived by the registry",
    )
    link: str | None = Field(
        default=None,
        description="Optional external reference (PR, issue, build log)",
    )

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "agent_id": "agent-1",
                    "name": "Frontend",
                    "status": "RUNNING",
                    "summary": "Implementing auth flow...",
                    "detail": "",
                    "ts": 1700000000000,
                    "actions": ["pause"],
                }
            ]
        },
    )

    @field_validator("detail", mode="before")
    @classmethod
    def normalize_detail(cls, v: Any) -> Any:
        """Treat a missing detail as the empty string."""
        return "" if v is None else v

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with unset optional fields omitted."""
        return self.model_dump(mode="json", exclude_none=True)


class SnapshotMessage(BaseModel):
    """Full agent list, sent once to each subscriber right after it joins."""

    type: Literal["snapshot"] = "snapshot"
    ts: int = Field(default_factory=now_ms)
    agents: list[AgentRecord] = Field(default_factory=list)


class AgentUpdateMessage(AgentRecord):
    """One committed mutation of one agent."""

    type: Literal["agent_update"] = "agent_update"


class ActionRequest(BaseModel):
    """Inbound action request body.

    Field types are loose: only an absent or empty ``agent_id`` or
    ``action`` makes a request malformed. Any other value reaches the
    registry, which reports it as an unknown agent or an unknown action.
    """

    agent_id: Any = None
    action: Any = None
    payload: Any = None

    model_config = ConfigDict(extra="ignore")


class ActionResponse(BaseModel):
    """Outcome of an action request."""

    success: bool
    agent_id: str | None = None
    new_status: AgentStatus | None = None
    error: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ActionResultMessage(ActionResponse):
    """Action outcome pushed back over the subscriber's own connection."""

    type: Literal["action_result"] = "action_result"


class ErrorMessage(BaseModel):
    """Protocol-level error on a persistent connection."""

    type: Literal["error"] = "error"
    error: str


WireMessage = SnapshotMessage | AgentUpdateMessage | ActionResultMessage | ErrorMessage


def snapshot_message(records: Iterable[AgentRecord], ts: int | None = None) -> SnapshotMessage:
    """Build a snapshot message from registry records."""
    return SnapshotMessage(ts=now_ms() if ts is None else ts, agents=list(records))


def update_message(record: AgentRecord) -> AgentUpdateMessage:
    """Build an agent_update message from a registry record."""
    return AgentUpdateMessage(**record.model_dump())


def encode_message(message: WireMessage) -> str:
    """Serialize any outbound message to its JSON text form."""
    return orjson.dumps(message.model_dump(mode="json", exclude_none=True)).decode()


def encode_update(record: AgentRecord) -> str:
    """Serialize the agent_update message for ``record``."""
    return encode_message(update_message(record))


def encode_snapshot(records: Iterable[AgentRecord], ts: int | None = None) -> str:
    """Serialize the snapshot message for ``records``."""
    return encode_message(snapshot_message(records, ts))
