"""Per-run agent event bus.

Agent runs publish ``AgentEvent`` values tagged with their run id.  Consumers
hold an explicit ``EventSubscription`` handle scoped to one run id; each
subscription owns an ``asyncio.Queue`` so events are consumed in publish
order.  Closing a subscription detaches it from the bus immediately: anything
published afterwards for that run is dropped, never buffered for replay.

    bus.publish(AgentEvent)  -->  asyncio.Queue per subscription  -->  consumer
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from time import time
from typing import Any, Literal

logger = logging.getLogger("agw.events")

AgentStream = Literal["assistant", "lifecycle"]


@dataclass(frozen=True)
class AgentEvent:
    run_id: str
    stream: AgentStream
    data: Mapping[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time)

    @property
    def assistant_text(self) -> str:
        """Incremental text carried by an assistant event; ``delta`` wins over ``text``."""
        delta = self.data.get("delta")
        if isinstance(delta, str):
            return delta
        text = self.data.get("text")
        if isinstance(text, str):
            return text
        return ""

    @property
    def phase(self) -> str | None:
        phase = self.data.get("phase")
        return phase if isinstance(phase, str) else None


class EventSubscription:
    def __init__(self, bus: "AgentEventBus", run_id: str) -> None:
        self._bus = bus
        self.run_id = run_id
        self._queue: asyncio.Queue[AgentEvent | None] = asyncio.Queue()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def _offer(self, event: AgentEvent) -> bool:
        if not self._active:
            return False
        self._queue.put_nowait(event)
        return True

    def get_nowait(self) -> AgentEvent | None:
        """Return the next queued event, or ``None`` when nothing is pending."""
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
            if item is not None:
                return item

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus._discard(self)
        # wake a consumer blocked in __anext__
        self._queue.put_nowait(None)

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> AgentEvent:
        if not self._active:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None or not self._active:
            raise StopAsyncIteration
        return item


class AgentEventBus:
    def __init__(self) -> None:
        self._subscriptions: dict[str, set[EventSubscription]] = {}

    def subscribe(self, run_id: str) -> EventSubscription:
        subscription = EventSubscription(self, run_id)
        self._subscriptions.setdefault(run_id, set()).add(subscription)
        return subscription

    def publish(self, event: AgentEvent) -> int:
        """Deliver ``event`` to every live subscription for its run; return the count."""
        subscriptions = self._subscriptions.get(event.run_id)
        if not subscriptions:
            logger.debug(
                "agent_event_dropped",
                extra={"run_id": event.run_id, "stream": event.stream},
            )
            return 0
        return sum(1 for subscription in list(subscriptions) if subscription._offer(event))

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscriptions.get(run_id, ()))

    def _discard(self, subscription: EventSubscription) -> None:
        subscriptions = self._subscriptions.get(subscription.run_id)
        if subscriptions is None:
            return
        subscriptions.discard(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.run_id]
