"""Named event channels used by components to publish lifecycle events"""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Set

import structlog

logger = structlog.get_logger()

# Event names shared with external subscribers (UI, websocket stream, logging)
SWAP_STARTED = "swapStarted"
SWAP_COMPLETED = "swapCompleted"
SWAP_FAILED = "swapFailed"
TRANSACTION_SUBMITTED = "transactionSubmitted"
TRANSACTION_COMPLETED = "transactionCompleted"
TRANSACTION_FAILED = "transactionFailed"
TRANSACTION_TIMEOUT = "transactionTimeout"
METRICS_COLLECTED = "metricsCollected"
ALERT_TRIGGERED = "alertTriggered"

# Cache-internal notifications
CACHE_HIT = "hit"
CACHE_MISS = "miss"
CACHE_ERROR = "error"

CORE_EVENTS = (
    SWAP_STARTED,
    SWAP_COMPLETED,
    SWAP_FAILED,
    TRANSACTION_SUBMITTED,
    TRANSACTION_COMPLETED,
    TRANSACTION_FAILED,
    TRANSACTION_TIMEOUT,
    METRICS_COLLECTED,
    ALERT_TRIGGERED,
)

Listener = Callable[..., Any]


class EventChannel:
    """
    Callback registry owned by a single component.

    Listeners may be plain functions or coroutine functions. Coroutine
    listeners are scheduled on the running loop; a listener that raises is
    logged and never affects the publisher or other listeners.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._listeners: Dict[str, List[Listener]] = {}
        self._pending: Set[asyncio.Task] = set()
        self._logger = logger.bind(component="event_channel", channel=name)

    def on(self, event: str, listener: Listener) -> "EventChannel":
        """Subscribe a listener to an event"""
        self._listeners.setdefault(event, []).append(listener)
        return self

    def off(self, event: str, listener: Listener) -> "EventChannel":
        """Unsubscribe a listener; unknown listeners are ignored"""
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> int:
        """
        Deliver an event to every listener.

        Args:
            event: Event name
            *args: Payload passed positionally to listeners

        Returns:
            Number of listeners notified
        """
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                self._logger.error(
                    "event_listener_failed",
                    event_name=event,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return len(listeners)

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning("event_listener_dropped", event_name=event, reason="no_running_loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run_listener(event, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_listener(self, event: str, awaitable: Any) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                "event_listener_failed",
                event_name=event,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for scheduled coroutine listeners to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
