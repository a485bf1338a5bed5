"""Unit tests for event buffering and atomic operations."""
from __future__ import annotations

import logging

import pytest

from vault_engine.ledger import InMemoryLedger
from vault_engine.models import FeesAccrued
from vault_engine.services import EventBus, LoggingEventSink, RecordingEventSink
from vault_engine.services.atomic import atomic_operation, rollback_on_error


def _event(amount: int = 1) -> FeesAccrued:
    return FeesAccrued("SUI", "test", amount, 0, amount)


class TestEventBus:
    def test_publish_outside_transaction_delivers_immediately(
        self, bus: EventBus, recorder: RecordingEventSink
    ) -> None:
        bus.publish(_event())
        assert len(recorder.events) == 1

    def test_transaction_buffers_until_commit(
        self, bus: EventBus, recorder: RecordingEventSink
    ) -> None:
        with bus.transaction():
            bus.publish(_event())
            with bus.transaction():
                bus.publish(_event(2))
            assert recorder.events == []
        assert [e.amount for e in recorder.events] == [1, 2]

    def test_failed_transaction_drops_events(
        self, bus: EventBus, recorder: RecordingEventSink
    ) -> None:
        with pytest.raises(RuntimeError):
            with bus.transaction():
                bus.publish(_event())
                raise RuntimeError("boom")
        assert recorder.events == []

    def test_logging_sink(self, caplog: pytest.LogCaptureFixture) -> None:
        bus = EventBus()
        bus.subscribe(LoggingEventSink())
        with caplog.at_level(logging.INFO, logger="vault_engine.services.events"):
            bus.publish(_event(42))
        assert "FeesAccrued" in caplog.text
        assert "'amount': 42" in caplog.text


class TestAtomicOperation:
    def test_rollback_on_error_restores_attributes(self) -> None:
        event = RecordingEventSink()
        event.events.append("keep")
        with pytest.raises(ValueError):
            with rollback_on_error(event):
                event.events = []
                raise ValueError("x")
        assert event.events == ["keep"]

    def test_everything_rolls_back(
        self, ledger: InMemoryLedger, bus: EventBus, recorder: RecordingEventSink
    ) -> None:
        ledger.credit("SUI", "alice", 10)
        with pytest.raises(RuntimeError):
            with atomic_operation(ledger, bus):
                ledger.transfer("SUI", "alice", "bob", 10)
                bus.publish(_event())
                raise RuntimeError("boom")
        assert ledger.balance_of("SUI", "alice") == 10
        assert ledger.balance_of("SUI", "bob") == 0
        assert recorder.events == []
