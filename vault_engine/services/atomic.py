"""All-or-nothing operation scope.

An operation either commits every ledger, store and state change it made and
publishes its events, or restores all of them and re-raises.
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import Any

from ..interfaces.ledger import Ledger
from ..interfaces.store import KeyedStore
from .events import EventBus


@contextmanager
def rollback_on_error(*entities: Any) -> Iterator[None]:
    """Restore the attributes of ``entities`` if the block raises."""
    saved = [(entity, dict(vars(entity))) for entity in entities]
    try:
        yield
    except BaseException:
        for entity, state in saved:
            vars(entity).clear()
            vars(entity).update(state)
        raise


@contextmanager
def atomic_operation(
    ledger: Ledger,
    events: EventBus,
    *entities: Any,
    store: KeyedStore | None = None,
) -> Iterator[None]:
    with ExitStack() as stack:
        stack.enter_context(events.transaction())
        stack.enter_context(ledger.atomic())
        if store is not None:
            stack.enter_context(store.atomic())
        stack.enter_context(rollback_on_error(*entities))
        yield
