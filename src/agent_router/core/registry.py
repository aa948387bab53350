"""Agent registry and change notification.

The registry is the single source of truth for agent state. It owns the
id -> record map, enforces the transition table on every action, and
publishes each committed mutation to its :class:`ChangeNotifier`.

Mutations and notification dispatch share one re-entrant lock, so the
effect of concurrent calls always matches some serial order and observers
see mutations in exactly the order they committed. Observers run while the
lock is held and must therefore return quickly; the broadcast hub only
enqueues pre-serialized messages.
"""

import threading
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pydantic import ValidationError

from agent_router.schemas.messages import AgentRecord, now_ms
from agent_router.schemas.types import (
    ACTION_SUMMARIES,
    AgentAction,
    legal_actions,
    parse_action,
    parse_status,
    resulting_status,
)
from agent_router.utils.errors import (
    IllegalActionError,
    InvalidStatusError,
    RecordValidationError,
    UnknownActionError,
    UnknownAgentError,
)
from agent_router.utils.telemetry import (
    get_logger,
    record_agent_update,
    record_observer_failure,
)

ChangeCallback = Callable[[AgentRecord], Any]
T = TypeVar("T")


class ChangeNotifier:
    """Observer list the registry publishes every committed mutation to."""

    def __init__(self) -> None:
        self._callbacks: list[ChangeCallback] = []
        self._lock = threading.Lock()
        self._logger = get_logger("agent_router.notifier")

    def subscribe(self, callback: ChangeCallback) -> None:
        """Register ``callback`` for every future mutation.

        Args:
            callback: Called synchronously with the committed record
        """
        with self._lock:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        """Remove a previously registered callback; no-op if absent."""
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def notify(self, record: AgentRecord) -> None:
        """Deliver ``record`` to every observer.

        A failing observer is logged and skipped; it never prevents delivery
        to the others and the exception never reaches the mutator.
        """
        with self._lock:
            callbacks = list(self._callbacks)

        for callback in callbacks:
            try:
                callback(record)
            except Exception as e:
                record_observer_failure()
                self._logger.error(
                    "Change observer failed",
                    agent_id=record.agent_id,
                    status=record.status.value,
                    observer=getattr(callback, "__qualname__", repr(callback)),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)


class AgentRegistry:
    """Authoritative in-memory map from agent id to agent record.

    Records are never handed out by reference: every read returns a copy,
    so callers can never observe a later mutation through an earlier result.
    """

    def __init__(
        self,
        notifier: ChangeNotifier | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the registry.

        Args:
            notifier: Notifier to publish mutations to (a new one if omitted)
            clock: Source of epoch-millisecond timestamps
        """
        self._agents: dict[str, AgentRecord] = {}
        self._lock = threading.RLock()
        self._notifier = notifier or ChangeNotifier()
        self._clock = clock
        self._logger = get_logger("agent_router.registry")

    @property
    def notifier(self) -> ChangeNotifier:
        return self._notifier

    def upsert(self, record: AgentRecord | Mapping[str, Any]) -> AgentRecord:
        """Insert or fully replace the record for ``record.agent_id``.

        ``ts`` is set to now and ``actions`` recomputed from ``status``;
        caller-supplied values for both are ignored.

        Args:
            record: Full agent record, as a model or a mapping

        Returns:
            Copy of the stored record

        Raises:
            InvalidStatusError: If status is not one of the known statuses
            RecordValidationError: If the record fails model validation
        """
        candidate = self._coerce(record)

        with self._lock:
            is_new = candidate.agent_id not in self._agents
            committed = self._commit(candidate)
            self._logger.debug(
                "Agent upserted",
                agent_id=committed.agent_id,
                status=committed.status.value,
                new_agent=is_new,
            )
            return committed.model_copy(deep=True)

    def get(self, agent_id: str) -> AgentRecord | None:
        """Return a copy of the record for ``agent_id``, or None if unknown."""
        with self._lock:
            record = self._lookup(agent_id)
            return record.model_copy(deep=True) if record is not None else None

    def count(self) -> int:
        """Number of agents currently held."""
        with self._lock:
            return len(self._agents)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, agent_id: object) -> bool:
        with self._lock:
            return agent_id in self._agents

    def with_snapshot(self, fn: Callable[[list[AgentRecord]], T]) -> T:
        """Run ``fn`` with a point-in-time copy of all records.

        The mutation lock is held for the duration of ``fn``, so no mutation
        can commit (and no notification can fire) between the snapshot and
        whatever ``fn`` registers. ``fn`` must not block.
        """
        with self._lock:
            return fn([record.model_copy(deep=True) for record in self._agents.values()])

    def update(
        self, agent_id: str, fn: Callable[[AgentRecord], AgentRecord | None]
    ) -> AgentRecord | None:
        """Read, modify and write one record as a single atomic step.

        ``fn`` receives a copy of the current record and returns the
        replacement, or None to leave the record untouched. It runs under the
        mutation lock, so no other mutation can commit between the read and
        the write; ``fn`` must not block.

        Returns:
            Copy of the committed record, or None if the agent is unknown or
            ``fn`` declined to change it

        Raises:
            InvalidStatusError: If the replacement carries an unknown status
        """
        with self._lock:
            current = self._lookup(agent_id)
            if current is None:
                return None

            candidate = fn(current.model_copy(deep=True))
            if candidate is None:
                return None

            # The record keeps its id whatever fn returns.
            candidate = self._coerce(candidate).model_copy(
                update={"agent_id": current.agent_id}
            )
            committed = self._commit(candidate)
            self._logger.debug(
                "Agent updated",
                agent_id=committed.agent_id,
                from_status=current.status.value,
                to_status=committed.status.value,
            )
            return committed.model_copy(deep=True)

    def apply_action(
        self,
        agent_id: str,
        action: AgentAction | str,
        payload: Mapping[str, Any] | None = None,
    ) -> AgentRecord:
        """Validate ``action`` against the agent's current status and apply it.

        The legal-action check and the commit happen under the same lock, so
        the status checked is the status the transition is applied to.

        Args:
            agent_id: Target agent
            action: Requested action
            payload: Optional action data (accepted, not interpreted)

        Returns:
            Copy of the updated record

        Raises:
            UnknownAgentError: If no record exists for ``agent_id``
            UnknownActionError: If ``action`` is not a known action
            IllegalActionError: If ``action`` is not legal from the current status
        """
        parsed = parse_action(action)

        with self._lock:
            current = self._lookup(agent_id)
            if current is None:
                raise UnknownAgentError(agent_id)

            if parsed is None:
                raise UnknownActionError(agent_id, action)

            if parsed not in legal_actions(current.status):
                raise IllegalActionError(agent_id, parsed.value, current.status.value)

            updated = current.model_copy(
                update={
                    "status": resulting_status(parsed),
                    "summary": ACTION_SUMMARIES[parsed],
                }
            )
            committed = self._commit(updated)

            self._logger.info(
                "Agent action applied",
                agent_id=agent_id,
                action=parsed.value,
                from_status=current.status.value,
                to_status=committed.status.value,
                payload_keys=sorted(payload) if payload else [],
            )
            return committed.model_copy(deep=True)

    def _lookup(self, agent_id: Any) -> AgentRecord | None:
        """Stored record for ``agent_id``. Caller holds the lock."""
        if not isinstance(agent_id, str):
            return None
        return self._agents.get(agent_id)

    def _commit(self, candidate: AgentRecord) -> AgentRecord:
        """Stamp, store and publish ``candidate``. Caller holds the lock."""
        stored = candidate.model_copy(
            update={
                "ts": self._clock(),
                "actions": legal_actions(candidate.status),
            },
            deep=True,
        )
        # Reinsertion keeps the original insertion position.
        self._agents[stored.agent_id] = stored
        record_agent_update(stored.status.value, len(self._agents))
        self._notifier.notify(stored.model_copy(deep=True))
        return stored

    def _coerce(self, record: AgentRecord | Mapping[str, Any]) -> AgentRecord:
        if isinstance(record, AgentRecord):
            status = parse_status(record.status)
            if status is None:
                raise InvalidStatusError(record.agent_id, record.status)
            return record.model_copy(update={"status": status})

        agent_id = record.get("agent_id")
        status = record.get("status")
        if parse_status(status) is None:
            raise InvalidStatusError(agent_id, status)

        try:
            return AgentRecord.model_validate(dict(record))
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise RecordValidationError(agent_id, errors) from e

    # Kept last so the method name does not shadow the builtin in annotations.
    def list(self) -> list[AgentRecord]:
        """Return a point-in-time copy of all records in insertion order."""
        with self._lock:
            return [record.model_copy(deep=True) for record in self._agents.values()]
