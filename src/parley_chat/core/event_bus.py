"""
In-process change feed for Parley Chat.

An asynchronous publish/subscribe bus with:
- Glob pattern subscriptions (``db.messages.*``, ``auth.*``)
- Sync and async handlers

Everything runs on the owning event loop.  Plain-function handlers are called
inline by the dispatcher, so state they mutate is only ever touched from the
loop; coroutine handlers are scheduled as tasks and awaited together.
"""

import asyncio
import fnmatch
import itertools
from typing import Any, Dict, List, Optional

from .event import Event, EventHandler
from parley_chat.utils.logger import get_logger

logger = get_logger()

_subscription_ids = itertools.count(1)


class EventBusError(Exception):
    """Base exception for event bus related errors."""
    pass


class EventSubscription:
    """Represents a subscription to events."""

    def __init__(self, pattern: str, handler: EventHandler):
        self.pattern = pattern
        self.handler = handler
        self.subscription_id = next(_subscription_ids)

    def matches(self, event: Event) -> bool:
        """Check if this subscription matches the given event."""
        return fnmatch.fnmatch(event.event_type, self.pattern)


class EventBus:
    """
    Central event bus for asynchronous publish/subscribe communication.

    Events are queued by :meth:`publish` and dispatched in order by a single
    processor task started with :meth:`start`.
    """

    def __init__(self):
        self._subscriptions: List[EventSubscription] = []
        self._running = False
        self._event_queue: Optional[asyncio.Queue] = None
        self._processor_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the event bus processing."""
        if self._running:
            return

        self._running = True
        self._event_queue = asyncio.Queue()
        self._processor_task = asyncio.create_task(self._process_events())
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the event bus, draining events queued before the call."""
        if not self._running:
            return

        self._running = False

        if self._event_queue:
            await self._event_queue.put(None)  # Signal to stop processing

        if self._processor_task:
            try:
                await asyncio.wait_for(self._processor_task, timeout=5.0)
            except asyncio.TimeoutError:
                self._processor_task.cancel()
                try:
                    await self._processor_task
                except asyncio.CancelledError:
                    pass

        self._event_queue = None
        self._processor_task = None
        logger.info("Event bus stopped")

    def subscribe(self, pattern: str, handler: EventHandler) -> int:
        """
        Subscribe to events matching the given pattern.

        Args:
            pattern: Glob pattern for event types (e.g., "db.messages.*")
            handler: Function or coroutine function to handle matching events

        Returns:
            Subscription ID for later unsubscription
        """
        subscription = EventSubscription(pattern, handler)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to pattern '{pattern}' with ID {subscription.subscription_id}")
        return subscription.subscription_id

    def unsubscribe(self, subscription_id: int) -> bool:
        """
        Unsubscribe using the subscription ID.

        Returns:
            True if subscription was found and removed
        """
        for i, subscription in enumerate(self._subscriptions):
            if subscription.subscription_id == subscription_id:
                del self._subscriptions[i]
                logger.debug(f"Unsubscribed subscription ID {subscription_id}")
                return True
        return False

    async def publish(self, event: Event) -> None:
        """
        Queue an event for every matching subscriber.

        Raises:
            EventBusError: if the bus has not been started
        """
        if not self._running or not self._event_queue:
            raise EventBusError("Event bus is not running")

        await self._event_queue.put(event)
        logger.debug(f"Published event: {event.event_type} (ID: {event.event_id})")

    def get_subscriptions(self) -> List[Dict[str, Any]]:
        """Get information about current subscriptions."""
        return [
            {
                "id": sub.subscription_id,
                "pattern": sub.pattern,
                "handler": str(sub.handler)
            }
            for sub in self._subscriptions
        ]

    async def _process_events(self) -> None:
        """Process events from the queue until the stop signal arrives."""
        logger.debug("Event processor started")

        while True:
            event = await self._event_queue.get()
            if event is None:
                break
            try:
                await self._dispatch_event(event)
            except Exception as e:
                logger.exception(f"Error processing event: {e}")

        logger.debug("Event processor stopped")

    async def _dispatch_event(self, event: Event) -> None:
        """Dispatch an event to all matching subscribers."""
        matching_subs = [sub for sub in self._subscriptions if sub.matches(event)]

        if not matching_subs:
            logger.debug(f"No subscribers for event: {event.event_type}")
            return

        tasks = []
        for subscription in matching_subs:
            handler = subscription.handler
            if asyncio.iscoroutinefunction(handler):
                tasks.append(asyncio.create_task(handler(event)))
                continue
            try:
                handler(event)
            except Exception as e:
                logger.exception(f"Error in event handler for {event.event_type}: {e}")

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Async handler failed for {event.event_type}: {result!r}")
