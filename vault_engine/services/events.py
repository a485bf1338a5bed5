"""Domain event bus and sinks."""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any

from ..interfaces.events import EventSink

logger = logging.getLogger(__name__)


class EventBus:
    """Buffers events inside an operation and delivers them on commit."""

    def __init__(self, sinks: list[EventSink] | None = None) -> None:
        self._sinks: list[EventSink] = list(sinks or [])
        self._pending: list[Any] = []
        self._depth = 0

    def subscribe(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def publish(self, event: Any) -> None:
        if self._depth:
            self._pending.append(event)
        else:
            self._deliver([event])

    @contextmanager
    def transaction(self) -> Iterator[None]:
        mark = len(self._pending)
        self._depth += 1
        try:
            yield
        except BaseException:
            del self._pending[mark:]
            raise
        finally:
            self._depth -= 1
        if self._depth == 0:
            pending, self._pending = self._pending, []
            self._deliver(pending)

    def _deliver(self, events: list[Any]) -> None:
        for event in events:
            for sink in self._sinks:
                sink.handle(event)


class LoggingEventSink:
    """Writes every event to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def handle(self, event: Any) -> None:
        logger.log(self._level, "%s %s", type(event).__name__, asdict(event))


class RecordingEventSink:
    """Keeps events in memory, e.g. for indexers or tests."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def handle(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]
