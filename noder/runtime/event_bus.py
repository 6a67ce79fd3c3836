"""
Lifecycle events for workflow runs.

The executor publishes; editors, loggers and tests subscribe by event type
and optionally narrow to one node or one run. ``publish`` returns only
after every matching handler has run, so handlers see events in the order
the executor produced them.
"""

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"

    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"
    NODE_PROGRESS = "node_progress"  # prediction status while polling

    PROGRESS = "progress"  # completed / total nodes of the run


@dataclass
class WorkflowEvent:
    type: EventType
    run_id: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "type": str(self.type),
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[WorkflowEvent], Awaitable[None]]


@dataclass
class Subscription:
    id: str
    event_types: frozenset[EventType]
    handler: EventHandler
    filter_node: str | None = None
    filter_run: str | None = None

    def matches(self, event: WorkflowEvent) -> bool:
        return (
            event.type in self.event_types
            and self.filter_node in (None, event.node_id)
            and self.filter_run in (None, event.run_id)
        )


class EventBus:
    """
    In-process pub/sub for run and node lifecycle events.

        bus = EventBus()

        async def on_done(event: WorkflowEvent):
            print(event.node_id, event.data["duration_ms"])

        bus.subscribe([EventType.NODE_COMPLETED], on_done)
        executor = WorkflowExecutor(invoker, event_bus=bus)

    Handlers run concurrently, at most ``max_concurrent_handlers`` at once.
    A handler that raises is logged and does not affect the run or the
    other handlers.
    """

    def __init__(self, max_history: int = 1000, max_concurrent_handlers: int = 10):
        self._subscriptions: dict[str, Subscription] = {}
        self._history: deque[WorkflowEvent] = deque(maxlen=max_history)
        self._handler_slots = asyncio.Semaphore(max_concurrent_handlers)
        self._ids = itertools.count(1)

    def subscribe(
        self,
        event_types: Iterable[EventType],
        handler: EventHandler,
        filter_node: str | None = None,
        filter_run: str | None = None,
    ) -> str:
        """Register ``handler``; the returned id is passed to ``unsubscribe``."""
        sub = Subscription(
            id=f"sub_{next(self._ids)}",
            event_types=frozenset(event_types),
            handler=handler,
            filter_node=filter_node,
            filter_run=filter_run,
        )
        self._subscriptions[sub.id] = sub
        logger.debug(f"{sub.id} subscribed to {sorted(sub.event_types)}")
        return sub.id

    def unsubscribe(self, subscription_id: str) -> bool:
        removed = self._subscriptions.pop(subscription_id, None) is not None
        if removed:
            logger.debug(f"{subscription_id} unsubscribed")
        return removed

    async def publish(self, event: WorkflowEvent) -> None:
        self._history.append(event)
        handlers = [s.handler for s in self._subscriptions.values() if s.matches(event)]
        if handlers:
            await asyncio.gather(*(self._call(handler, event) for handler in handlers))

    async def _call(self, handler: EventHandler, event: WorkflowEvent) -> None:
        async with self._handler_slots:
            try:
                await handler(event)
            except Exception:
                logger.exception(f"Event handler failed on {event.type}")

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        limit: int | None = None,
    ) -> list[WorkflowEvent]:
        """Recorded events, oldest first."""
        events = [
            event
            for event in self._history
            if event_type in (None, event.type) and run_id in (None, event.run_id)
        ]
        return events[-limit:] if limit else events

    def clear_history(self) -> None:
        self._history.clear()

    # --- emitters used by WorkflowExecutor ---

    async def _emit(
        self,
        event_type: EventType,
        run_id: str,
        data: dict[str, Any],
        node_id: str | None = None,
    ) -> None:
        event = WorkflowEvent(type=event_type, run_id=run_id, node_id=node_id, data=data)
        await self.publish(event)

    async def emit_execution_started(
        self, run_id: str, node_ids: list[str], trigger: str = "manual"
    ) -> None:
        data = {"node_ids": node_ids, "trigger": trigger}
        await self._emit(EventType.EXECUTION_STARTED, run_id, data)

    async def emit_execution_completed(self, run_id: str, summary: dict[str, Any]) -> None:
        await self._emit(EventType.EXECUTION_COMPLETED, run_id, summary)

    async def emit_execution_failed(
        self, run_id: str, error: str, summary: dict[str, Any] | None = None
    ) -> None:
        # the explicit error wins over summary["error"]
        await self._emit(EventType.EXECUTION_FAILED, run_id, {**(summary or {}), "error": error})

    async def emit_node_started(self, run_id: str, node_id: str, node_type: str) -> None:
        await self._emit(EventType.NODE_STARTED, run_id, {"node_type": node_type}, node_id)

    async def emit_node_completed(
        self, run_id: str, node_id: str, output: dict[str, Any], duration_ms: int
    ) -> None:
        data = {"output": output, "duration_ms": duration_ms}
        await self._emit(EventType.NODE_COMPLETED, run_id, data, node_id)

    async def emit_node_failed(
        self, run_id: str, node_id: str, error: str, duration_ms: int
    ) -> None:
        data = {"error": error, "duration_ms": duration_ms}
        await self._emit(EventType.NODE_FAILED, run_id, data, node_id)

    async def emit_node_skipped(self, run_id: str, node_id: str, reason: str) -> None:
        await self._emit(EventType.NODE_SKIPPED, run_id, {"reason": reason}, node_id)

    async def emit_node_progress(
        self, run_id: str, node_id: str, progress: dict[str, Any]
    ) -> None:
        await self._emit(EventType.NODE_PROGRESS, run_id, dict(progress), node_id)

    async def emit_progress(self, run_id: str, completed: int, total: int) -> None:
        """Run progress; ``percentage`` is rounded and 100 for an empty scope."""
        percentage = round(completed / total * 100) if total else 100
        data = {"completed": completed, "total": total, "percentage": percentage}
        await self._emit(EventType.PROGRESS, run_id, data)
