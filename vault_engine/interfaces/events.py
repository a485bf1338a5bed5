"""Event sink protocol — domain event observers."""
from typing import Any, Protocol


class EventSink(Protocol):
    """Receives committed domain events."""

    def handle(self, event: Any) -> None: ...
