"""Collaborator interfaces consumed by the engine."""
from .clock import Clock
from .events import EventSink
from .ledger import Ledger
from .lending import LendingPort
from .price_oracle import PriceFeed
from .store import KeyedStore

__all__ = ["Clock", "EventSink", "KeyedStore", "Ledger", "LendingPort", "PriceFeed"]
