# Shared utilities and helpers

from .errors import (
    AuthError,
    IllegalActionError,
    InvalidStatusError,
    RecordValidationError,
    RecoveryAction,
    RequestValidationError,
    RouterError,
    StateError,
    TransportError,
    UnknownActionError,
    UnknownAgentError,
)

__all__ = [
    "AuthError",
    "IllegalActionError",
    "InvalidStatusError",
    "RecordValidationError",
    "RecoveryAction",
    "RequestValidationError",
    "RouterError",
    "StateError",
    "TransportError",
    "UnknownActionError",
    "UnknownAgentError",
]
