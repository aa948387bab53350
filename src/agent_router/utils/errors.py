"""Structured error types for the agent router.

Every error carries a wire ``code`` (the string reported to callers in
``{"success": false, "error": ...}``) and a suggested recovery action.
Nothing here is fatal to the process: each error is scoped to one request
or one subscriber.
"""

from enum import Enum
from typing import Any


class RecoveryAction(Enum):
    """Recovery actions for error handling."""

    REJECT = "reject"
    RESYNC = "resync"
    PRUNE = "prune"
    IGNORE = "ignore"


class RouterError(Exception):
    """Base exception for agent router errors."""

    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        recovery_action: RecoveryAction = RecoveryAction.REJECT,
        code: str | None = None,
    ):
        """Initialize router error.

        Args:
            message: Human-readable error message
            recovery_action: Suggested recovery action
            code: Wire error code, defaults to the class code
        """
        super().__init__(message)
        self.recovery_action = recovery_action
        if code is not None:
            self.code = code


class RequestValidationError(RouterError):
    """Error raised when an action request body is malformed.

    Rejected before the registry is touched.
    """

    code = "Missing agent_id or action"

    def __init__(self, missing_fields: list[str]):
        """Initialize request validation error.

        Args:
            missing_fields: Names of the required fields that were absent
        """
        self.missing_fields = missing_fields
        fields = ", ".join(missing_fields)
        super().__init__(f"Request is missing required fields: {fields}")


class AuthError(RouterError):
    """Error raised when the shared secret is missing or wrong.

    The message never includes the presented token.
    """

    code = "INVALID_TOKEN"

    def __init__(self, reason: str = "invalid token"):
        super().__init__(reason)


class StateError(RouterError):
    """Base for errors caused by the current state of an agent."""


class UnknownAgentError(StateError):
    """Error raised when no record exists for the requested agent id."""

    code = "INVALID_AGENT"

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found", RecoveryAction.RESYNC)


class IllegalActionError(StateError):
    """Error raised when an action is not legal from the agent's current status.

    This usually means the caller acted on a stale view of the agent; the
    HUD should resync from the next update it receives.
    """

    def __init__(self, agent_id: str, action: str, status: str):
        """Initialize illegal action error.

        Args:
            agent_id: Agent identifier
            action: Rejected action
            status: Agent status at the time the action was checked
        """
        self.agent_id = agent_id
        self.action = action
        self.status = status
        message = f"{action} not valid for status {status}"
        super().__init__(
            message, RecoveryAction.RESYNC, code=f"INVALID_ACTION: {message}"
        )


class UnknownActionError(StateError):
    """Error raised when the action is not a recognised action name at all."""

    def __init__(self, agent_id: str, action: Any):
        self.agent_id = agent_id
        self.action = action
        message = f"unknown action {action}"
        super().__init__(message, code=f"INVALID_ACTION: {message}")


class InvalidStatusError(RouterError):
    """Error raised when an upserted record carries a status outside the enum."""

    code = "INVALID_STATUS"

    def __init__(self, agent_id: Any, status: Any):
        self.agent_id = agent_id
        self.status = status
        super().__init__(f"Agent {agent_id} has invalid status {status!r}")


class RecordValidationError(RouterError):
    """Error raised when an upserted record fails model validation."""

    code = "INVALID_RECORD"

    def __init__(self, agent_id: Any, validation_errors: list[str]):
        self.agent_id = agent_id
        self.validation_errors = validation_errors
        errors_str = "; ".join(validation_errors)
        super().__init__(f"Record for agent {agent_id} is invalid: {errors_str}")


class TransportError(RouterError):
    """Error raised when delivery to one subscriber fails.

    Isolated to that subscriber: it is logged and the subscriber pruned,
    never surfaced to the mutating caller.
    """

    code = "TRANSPORT_ERROR"

    def __init__(self, subscriber: str, reason: str):
        """Initialize transport error.

        Args:
            subscriber: Description of the subscriber connection
            reason: Why delivery failed
        """
        self.subscriber = subscriber
        self.reason = reason
        super().__init__(
            f"Delivery to subscriber {subscriber} failed: {reason}",
            RecoveryAction.PRUNE,
        )
