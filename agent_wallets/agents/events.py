"""
EventChannel - fire-and-forget delivery of agent events to observers.

Listeners never run inside the publisher's call: sync listeners are scheduled
with call_soon, coroutine listeners run as their own tasks. A listener that
raises is logged and otherwise ignored, so observers cannot fail a cycle.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .schemas import AgentEvent

logger = logging.getLogger("agent_wallets.agents.events")

ALL_EVENTS = "*"

Listener = Callable[[AgentEvent], Any]


class Subscription:
    """Handle returned by EventChannel.subscribe."""

    def __init__(self, channel: "EventChannel", event_type: str, listener: Listener):
        self._channel = channel
        self.event_type = event_type
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._channel._remove(self)

    def __repr__(self) -> str:
        return f"Subscription(event_type={self.event_type!r}, active={self.active})"


class EventChannel:
    """In-process publish/subscribe channel for DecisionEvent, ActionEvent, ErrorEvent, FallbackEvent."""

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._pending: Set[asyncio.Task] = set()
        self.published_count = 0
        self.listener_errors = 0

    def subscribe(self, event_type: str, listener: Listener) -> Subscription:
        """
        Register a listener for one event type ("decision", "action", "error",
        "fallback") or ALL_EVENTS.
        """
        sub = Subscription(self, event_type, listener)
        self._subscriptions.setdefault(event_type, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.event_type, [])
        if sub in subs:
            subs.remove(sub)

    def listener_count(self, event_type: Optional[str] = None) -> int:
        if event_type is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._subscriptions.get(event_type, []))

    def publish(self, event: AgentEvent) -> None:
        """Deliver an event to current subscribers without waiting on them."""
        self.published_count += 1
        targets = list(self._subscriptions.get(event.type, [])) + list(
            self._subscriptions.get(ALL_EVENTS, [])
        )
        if not targets:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for sub in targets:
            if loop is None:
                self._deliver(sub, event)
            elif inspect.iscoroutinefunction(sub.listener):
                task = loop.create_task(self._deliver_async(sub, event))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            else:
                loop.call_soon(self._deliver, sub, event)

    def _deliver(self, sub: Subscription, event: AgentEvent) -> None:
        if not sub.active:
            return
        try:
            result = sub.listener(event)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        except Exception as e:
            self.listener_errors += 1
            logger.error(f"Listener for '{event.type}' failed: {e}")

    async def _deliver_async(self, sub: Subscription, event: AgentEvent) -> None:
        if not sub.active:
            return
        try:
            await sub.listener(event)
        except Exception as e:
            self.listener_errors += 1
            logger.error(f"Async listener for '{event.type}' failed: {e}")

    async def drain(self) -> None:
        """Wait until every scheduled delivery has run."""
        await asyncio.sleep(0)
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            await asyncio.sleep(0)
