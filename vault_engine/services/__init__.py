"""Service modules"""
from .engine import Engine
from .events import EventBus, LoggingEventSink, RecordingEventSink
from .interest import InterestRateModel
from .lending import LendingService
from .liquidation import LiquidationEngine
from .lp import LPPositionManager
from .positions import LeveragedPositionManager
from .vault import VaultService

__all__ = [
    "Engine",
    "EventBus",
    "InterestRateModel",
    "LPPositionManager",
    "LendingService",
    "LeveragedPositionManager",
    "LiquidationEngine",
    "LoggingEventSink",
    "RecordingEventSink",
    "VaultService",
]
