"""
Structured run events.

Components never log pipeline progress through a hidden global: each one is
handed an ``EventSink`` (any callable taking a ``RunEvent``) when it is built.
``EventBus`` is the usual sink: it logs every event and forwards it to the
subscribers of the current run (usage ledger, websocket stream, tests).
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RunEvent(BaseModel):
    """One observable thing that happened during a run."""
    name: str = Field(..., description="Dotted event name, e.g. 'completion.started'")
    component: str
    run_id: Optional[str] = None
    iteration: Optional[int] = None
    detail: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_failure(self) -> bool:
        return self.name.endswith(".failed")


EventSink = Callable[[RunEvent], None]


def log_event(event: RunEvent) -> None:
    """Default sink: write the event to the module logger."""
    level = logging.ERROR if event.is_failure else logging.INFO
    logger.log(
        level,
        "%s [%s] run=%s iteration=%s %s",
        event.name,
        event.component,
        event.run_id or "-",
        event.iteration if event.iteration is not None else "-",
        event.detail,
    )


class EventBus:
    """
    Fan-out sink for a single run.

    Usage:
        bus = EventBus(run_id="a1b2c3d4")
        bus.subscribe(ledger.record)
        bus(RunEvent(name="research.started", component="research"))

    Events without a run_id are stamped with the bus's run_id before
    dispatch. A subscriber that raises is logged and skipped so one broken
    listener cannot fail the run.
    """

    def __init__(self, run_id: Optional[str] = None, log: bool = True):
        self.run_id = run_id
        self._subscribers: List[EventSink] = []
        self._log = log

    def subscribe(self, sink: EventSink) -> None:
        self._subscribers.append(sink)

    def unsubscribe(self, sink: EventSink) -> bool:
        try:
            self._subscribers.remove(sink)
            return True
        except ValueError:
            return False

    def __call__(self, event: RunEvent) -> None:
        if event.run_id is None and self.run_id is not None:
            event = event.model_copy(update={"run_id": self.run_id})
        if self._log:
            log_event(event)
        for sink in list(self._subscribers):
            try:
                sink(event)
            except Exception:
                logger.exception(f"Event subscriber {sink!r} failed on {event.name}")


class EventRecorder:
    """Sink that keeps every event in memory, in arrival order."""

    def __init__(self):
        self.events: List[RunEvent] = []

    def __call__(self, event: RunEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [e.name for e in self.events]

    def named(self, name: str) -> List[RunEvent]:
        return [e for e in self.events if e.name == name]
