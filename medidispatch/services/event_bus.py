import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

REQUEST_CREATED = "request_created"
REQUEST_SELF_ASSIGNED = "request_self_assigned"
REQUEST_STATUS_UPDATED = "request_status_updated"
REQUEST_FORWARDED = "request_forwarded"
HOSPITAL_RESPONDED = "hospital_responded"
AMBULANCE_ASSIGNED = "ambulance_assigned"
REQUEST_MARKED_READ = "request_marked_read"


@dataclass
class DispatchEvent:
    """A committed change to an ambulance request."""

    kind: str
    request_id: int
    actor_id: int | None = None
    payload: dict = field(default_factory=dict)


Listener = Callable[[DispatchEvent], Awaitable[None]]


class DispatchEventBus:
    """In-process pub/sub for ambulance request changes.

    Listeners are awaited inline by ``publish``; global subscribers get
    the event enqueued. A failing listener is logged and never propagates to
    the publisher, whose state change has already been committed.
    """

    def __init__(self) -> None:
        self._global_subscribers: set[asyncio.Queue] = set()
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe_all(self) -> asyncio.Queue:
        """Subscribe to all request events. Returns a queue to await events from."""
        queue: asyncio.Queue = asyncio.Queue()
        self._global_subscribers.add(queue)
        return queue

    def unsubscribe_all(self, queue: asyncio.Queue) -> None:
        self._global_subscribers.discard(queue)

    async def publish(self, event: DispatchEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception(
                    "Listener %r failed for %s on request %s",
                    listener, event.kind, event.request_id,
                )

        for queue in self._global_subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Global event queue full")


event_bus = DispatchEventBus()
