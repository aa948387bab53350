"""Action gateway: the request/response surface for agent actions.

The gateway is transport-neutral. HTTP handlers and persistent-connection
handlers both call :meth:`ActionGateway.respond`; the registry performs the
legal-action check and the commit atomically.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from agent_router.core.registry import AgentRegistry
from agent_router.schemas.messages import ActionRequest, ActionResponse
from agent_router.schemas.types import AgentAction, parse_action
from agent_router.utils.errors import RequestValidationError, StateError
from agent_router.utils.telemetry import PerformanceTimer, get_logger, record_action


class ActionGateway:
    """Validates inbound actions against current agent state and applies them."""

    def __init__(self, registry: AgentRegistry):
        self.registry = registry
        self._logger = get_logger("agent_router.gateway")

    def handle(
        self,
        agent_id: str,
        action: AgentAction | str,
        payload: Mapping[str, Any] | None = None,
    ) -> ActionResponse:
        """Apply ``action`` to ``agent_id``.

        Args:
            agent_id: Target agent
            action: Requested action
            payload: Optional action data

        Returns:
            Successful response carrying the agent id and its new status

        Raises:
            UnknownAgentError: No record exists for ``agent_id``
            IllegalActionError: ``action`` is not legal from the current status
            UnknownActionError: ``action`` is not a recognised action
        """
        parsed = parse_action(action)
        # Unrecognised names share one label to bound metric cardinality.
        action_name = parsed.value if parsed is not None else "unknown"

        with PerformanceTimer(
            "apply_action", agent_id=agent_id, logger=self._logger
        ):
            try:
                record = self.registry.apply_action(agent_id, action, payload)
            except StateError as e:
                record_action(action_name, e.code.split(":", 1)[0])
                raise

        record_action(action_name, "success")
        return ActionResponse(
            success=True, agent_id=record.agent_id, new_status=record.status
        )

    def respond(self, body: Any) -> ActionResponse:
        """Handle a raw request body and always return a response.

        Malformed bodies and state errors become failure responses carrying
        the wire error code; other exceptions propagate.

        Args:
            body: Decoded JSON request body

        Returns:
            Success or failure response
        """
        try:
            request = self.parse_request(body)
        except RequestValidationError as e:
            self._logger.info(
                "Rejected malformed action request",
                missing_fields=e.missing_fields,
            )
            return ActionResponse(success=False, error=e.code)

        try:
            return self.handle(request.agent_id, request.action, request.payload)
        except StateError as e:
            return ActionResponse(success=False, error=e.code)

    @staticmethod
    def parse_request(body: Any) -> ActionRequest:
        """Validate the shape of an action request body.

        Only an absent, null or empty-string ``agent_id`` or ``action`` is
        malformed. Values of any other type are kept so the registry can
        reject them as an unknown agent or action. A ``payload`` that is not
        an object is dropped.

        Raises:
            RequestValidationError: If agent_id or action is missing or empty
        """
        if not isinstance(body, Mapping):
            raise RequestValidationError(["agent_id", "action"])

        try:
            request = ActionRequest.model_validate(dict(body))
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise RequestValidationError(fields or ["agent_id", "action"]) from e

        missing = [
            name
            for name in ("agent_id", "action")
            if getattr(request, name) in (None, "")
        ]
        if missing:
            raise RequestValidationError(missing)

        if request.payload is not None and not isinstance(request.payload, Mapping):
            get_logger("agent_router.gateway").debug(
                "Ignoring non-object payload",
                agent_id=request.agent_id,
                payload_type=type(request.payload).__name__,
            )
            request = request.model_copy(update={"payload": None})
        return request
