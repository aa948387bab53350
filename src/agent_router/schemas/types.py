"""Core enums and the static agent transition table."""

from enum import Enum
from typing import Annotated, Any, TypedDict


class AgentStatus(str, Enum):
    """Lifecycle status of an agent."""

    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    ERROR = "ERROR"
    DONE = "DONE"


class AgentAction(str, Enum):
    """Actions an external caller can request on an agent."""

    PAUSE = "pause"
    RESUME = "resume"
    APPROVE = "approve"
    DENY = "deny"
    ACK = "ack"
    RETRY = "retry"


# Legal actions per status, in display order. DONE is terminal.
LEGAL_ACTIONS: dict[AgentStatus, tuple[AgentAction, ...]] = {
    AgentStatus.RUNNING: (AgentAction.PAUSE,),
    AgentStatus.PAUSED: (AgentAction.RESUME,),
    AgentStatus.WAITING_APPROVAL: (AgentAction.APPROVE, AgentAction.DENY),
    AgentStatus.ERROR: (AgentAction.ACK, AgentAction.RETRY),
    AgentStatus.DONE: (),
}

ACTION_TRANSITIONS: dict[AgentAction, AgentStatus] = {
    AgentAction.PAUSE: AgentStatus.PAUSED,
    AgentAction.RESUME: AgentStatus.RUNNING,
    AgentAction.APPROVE: AgentStatus.RUNNING,
    AgentAction.DENY: AgentStatus.PAUSED,
    AgentAction.ACK: AgentStatus.PAUSED,
    AgentAction.RETRY: AgentStatus.RUNNING,
}

ACTION_SUMMARIES: dict[AgentAction, str] = {
    AgentAction.PAUSE: "Paused by user",
    AgentAction.RESUME: "Resumed, working...",
    AgentAction.APPROVE: "Proceeding with approved action...",
    AgentAction.DENY: "Action denied, paused",
    AgentAction.ACK: "Error acknowledged, paused",
    AgentAction.RETRY: "Retrying...",
}


def legal_actions(status: AgentStatus) -> list[AgentAction]:
    """Return a fresh list of the actions legal from ``status``."""
    return list(LEGAL_ACTIONS[status])


def resulting_status(action: AgentAction) -> AgentStatus:
    """Return the status an agent moves to after ``action``."""
    return ACTION_TRANSITIONS[action]


def parse_status(value: Any) -> AgentStatus | None:
    """Coerce ``value`` to an AgentStatus, or None if it is not one."""
    if isinstance(value, AgentStatus):
        return value
    try:
        return AgentStatus(value)
    except ValueError:
        return None


def parse_action(value: Any) -> AgentAction | None:
    """Coerce ``value`` to an AgentAction, or None if it is not one."""
    if isinstance(value, AgentAction):
        return value
    try:
        return AgentAction(value)
    except ValueError:
        return None


class AgentActionRequest(TypedDict, total=False):
    """Action request as received from a HUD or an HTTP caller."""

    type: Annotated[str, "Message type, 'agent_action' on persistent connections"]
    agent_id: Annotated[str, "Target agent identifier"]
    action: Annotated[str, "Requested action name"]
    payload: Annotated[dict[str, Any] | None, "Optional action-specific data"]
    ts: Annotated[int, "Client timestamp in epoch milliseconds"]
