"""Broadcast hub: fans committed agent changes out to live subscribers.

Each subscriber gets a bounded FIFO outbox and a sender task that drains it.
The registry's notifier calls :meth:`BroadcastHub.broadcast`, which only
serializes once and enqueues, so a slow or broken subscriber can never
block a registry mutation or delivery to anyone else.

Joining is atomic with respect to mutations: the snapshot is placed first in
the new outbox and the outbox is registered while the registry's mutation
lock is held, so every later update lands behind the snapshot and none that
the snapshot already reflects is delivered again.
"""

import asyncio
import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from starlette.websockets import WebSocket, WebSocketState

from agent_router.core.registry import AgentRegistry
from agent_router.schemas.messages import AgentRecord, encode_snapshot, encode_update
from agent_router.utils.errors import TransportError
from agent_router.utils.telemetry import (
    get_logger,
    record_broadcast,
    record_subscriber_pruned,
    update_subscriber_count,
)

GOING_AWAY = 1001
TRY_AGAIN_LATER = 1013


@runtime_checkable
class Subscriber(Protocol):
    """A live persistent connection that receives serialized messages."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class WebSocketSubscriber:
    """Subscriber backed by a Starlette/FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close(code=code, reason=reason)

    def __repr__(self) -> str:
        client = self.websocket.client
        peer = f"{client.host}:{client.port}" if client else "unknown"
        return f"WebSocketSubscriber({peer})"


class _Outbox:
    """Bounded FIFO of serialized messages for one subscriber."""

    def __init__(
        self,
        subscriber: Subscriber,
        loop: asyncio.AbstractEventLoop,
        max_depth: int,
    ):
        self.subscriber = subscriber
        self.loop = loop
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_depth)
        self.task: asyncio.Task[None] | None = None
        self.closed = False
        # Offers scheduled on the loop but not yet put on the queue.
        self.pending = 0
        self._pending_lock = threading.Lock()

    def on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self.loop
        except RuntimeError:
            return False

    def offer(self, data: str, on_overflow: Callable[[], None]) -> bool:
        """Enqueue without blocking the caller.

        Every offer goes through the loop's callback queue, whichever thread
        it comes from, so messages keep the order they were offered in.
        Overflow is reported through ``on_overflow`` once the put runs.

        Returns:
            False if the loop is no longer running
        """

        def put() -> None:
            with self._pending_lock:
                self.pending -= 1
            if not self._put(data):
                on_overflow()

        with self._pending_lock:
            self.pending += 1
        try:
            self.loop.call_soon_threadsafe(put)
        except RuntimeError:
            with self._pending_lock:
                self.pending -= 1
            return False
        return True

    def _put(self, data: str) -> bool:
        if self.closed:
            return True
        try:
            self.queue.put_nowait(data)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Stop the sender and discard anything still queued."""
        if self.on_loop_thread():
            self._close()
            return
        try:
            self.loop.call_soon_threadsafe(self._close)
        except RuntimeError:
            # Loop already closed; nothing left to drain or cancel.
            self.closed = True

    def _close(self) -> None:
        self.closed = True
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.queue.task_done()

        if self.task is not None and self.task is not asyncio.current_task():
            self.task.cancel()


class BroadcastHub:
    """Owns the subscriber set and delivers every change to each subscriber."""

    def __init__(
        self,
        registry: AgentRegistry,
        max_queue_depth: int = 256,
        send_timeout: float = 5.0,
    ):
        """Initialize the hub.

        Args:
            registry: Registry to snapshot from and observe
            max_queue_depth: Outbox size; a subscriber that falls this far
                behind is pruned
            send_timeout: Seconds a single send may take before the
                subscriber is treated as failed
        """
        self.registry = registry
        self.max_queue_depth = max_queue_depth
        self.send_timeout = send_timeout
        self._outboxes: dict[Subscriber, _Outbox] = {}
        self._lock = threading.Lock()
        self._closing: set[asyncio.Task[None]] = set()
        self._attached = False
        self._logger = get_logger("agent_router.hub")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._outboxes)

    def subscribers(self) -> list[Subscriber]:
        with self._lock:
            return list(self._outboxes)

    def attach(self) -> None:
        """Start observing registry mutations."""
        if not self._attached:
            self.registry.notifier.subscribe(self.broadcast)
            self._attached = True

    def detach(self) -> None:
        """Stop observing registry mutations."""
        if self._attached:
            self.registry.notifier.unsubscribe(self.broadcast)
            self._attached = False

    async def on_connect(self, subscriber: Subscriber) -> None:
        """Register ``subscriber`` and queue its snapshot ahead of any update."""
        loop = asyncio.get_running_loop()
        outbox = _Outbox(subscriber, loop, self.max_queue_depth)

        def register(records: list[AgentRecord]) -> int:
            outbox.queue.put_nowait(encode_snapshot(records))
            with self._lock:
                self._outboxes[subscriber] = outbox
                return len(self._outboxes)

        count = self.registry.with_snapshot(register)
        outbox.task = loop.create_task(self._pump(outbox))

        update_subscriber_count(count)
        self._logger.info(
            "Subscriber connected", subscriber=repr(subscriber), subscribers=count
        )

    async def on_disconnect(self, subscriber: Subscriber) -> None:
        """Deregister ``subscriber``; safe to call more than once."""
        if self._remove(subscriber) is None:
            return

        self._logger.info(
            "Subscriber disconnected",
            subscriber=repr(subscriber),
            subscribers=self.subscriber_count,
        )

    def broadcast(self, record: AgentRecord) -> None:
        """Queue the update for ``record`` to every registered subscriber.

        Subscribers whose connection is no longer open, or whose outbox is
        full, are pruned. Never raises.
        """
        data = encode_update(record)
        with self._lock:
            targets = list(self._outboxes.items())

        queued = skipped = dropped = 0
        for subscriber, outbox in targets:
            if not subscriber.is_open:
                self._prune(subscriber, "closed")
                skipped += 1
                continue

            def overflow(sub: Subscriber = subscriber) -> None:
                self._prune(sub, "overflow", close_code=TRY_AGAIN_LATER)

            if outbox.offer(data, overflow):
                queued += 1
            else:
                overflow()
                dropped += 1

        record_broadcast("queued", queued)
        record_broadcast("skipped", skipped)
        record_broadcast("dropped", dropped)

    def send_to(self, subscriber: Subscriber, data: str) -> bool:
        """Queue a message for one subscriber, behind anything already queued.

        Returns:
            False if the subscriber is not registered
        """
        with self._lock:
            outbox = self._outboxes.get(subscriber)
        if outbox is None:
            return False

        def overflow() -> None:
            self._prune(subscriber, "overflow", close_code=TRY_AGAIN_LATER)

        if not outbox.offer(data, overflow):
            overflow()
            return False
        return True

    async def join(self) -> None:
        """Wait until every outbox has been drained.

        Covers every message offered before the call, from any thread,
        including offers still in flight to the loop. Messages offered while
        waiting extend the wait. A mutation another thread has not yet
        committed when the call returns is not covered; join that thread
        first.
        """
        while True:
            await asyncio.sleep(0)
            with self._lock:
                outboxes = list(self._outboxes.values())
            await asyncio.gather(*(outbox.queue.join() for outbox in outboxes))
            if not any(
                outbox.pending or outbox.queue.qsize() for outbox in outboxes
            ):
                return

    async def close(self) -> None:
        """Close every subscriber connection and stop all senders."""
        for subscriber in self.subscribers():
            self._remove(subscriber)
            await self._safe_close(subscriber, GOING_AWAY, "server shutdown")
        update_subscriber_count(0)
        self._logger.info("Broadcast hub closed")

    async def _pump(self, outbox: _Outbox) -> None:
        subscriber = outbox.subscriber
        while True:
            data = await outbox.queue.get()
            try:
                if not subscriber.is_open:
                    raise TransportError(repr(subscriber), "connection not open")
                await asyncio.wait_for(
                    subscriber.send_text(data), timeout=self.send_timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = (
                    e
                    if isinstance(e, TransportError)
                    else TransportError(repr(subscriber), f"{type(e).__name__}: {e}")
                )
                self._logger.warning(
                    "Subscriber delivery failed",
                    subscriber=repr(subscriber),
                    error=str(error),
                    error_type=type(e).__name__,
                )
                self._prune(subscriber, "send_failed", close_code=TRY_AGAIN_LATER)
                return
            finally:
                outbox.queue.task_done()

    def _remove(self, subscriber: Subscriber) -> _Outbox | None:
        with self._lock:
            outbox = self._outboxes.pop(subscriber, None)
            count = len(self._outboxes)
        if outbox is None:
            return None

        outbox.close()
        update_subscriber_count(count)
        return outbox

    def _prune(
        self, subscriber: Subscriber, reason: str, close_code: int | None = None
    ) -> None:
        outbox = self._remove(subscriber)
        if outbox is None:
            return

        record_subscriber_pruned(reason)
        self._logger.warning(
            "Subscriber pruned", subscriber=repr(subscriber), reason=reason
        )
        if close_code is not None:
            self._schedule_close(outbox, close_code, reason)

    def _schedule_close(self, outbox: _Outbox, code: int, reason: str) -> None:
        def spawn() -> None:
            task = outbox.loop.create_task(
                self._safe_close(outbox.subscriber, code, reason)
            )
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

        try:
            outbox.loop.call_soon_threadsafe(spawn)
        except RuntimeError:
            pass

    async def _safe_close(self, subscriber: Subscriber, code: int, reason: str) -> None:
        try:
            await subscriber.close(code, reason)
        except Exception as e:
            self._logger.debug(
                "Subscriber close failed",
                subscriber=repr(subscriber),
                error=str(e),
                error_type=type(e).__name__,
            )
