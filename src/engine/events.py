"""Progress events for a presentation layer (chat UI, dashboard)."""
from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from src.core.contracts.events import EventType, ExecutionEvent

log = logging.getLogger("events")

EventHandler = Callable[[ExecutionEvent], Any]


class EventBus:
    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def emit(self, type: EventType, plan_id: str, step_id: str | None = None, **payload: Any) -> ExecutionEvent:
        event = ExecutionEvent(type=type, plan_id=plan_id, step_id=step_id, payload=payload)
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # a broken subscriber must not change the execution outcome
                log.exception("event handler failed for %s", type.value)
        return event


def log_event(event: ExecutionEvent) -> None:
    where = f" {event.step_id}" if event.step_id else ""
    log.info("%s %s%s %s", event.type.value, event.plan_id, where, event.payload or "")
