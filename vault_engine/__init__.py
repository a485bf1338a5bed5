"""Pooled-yield vault accounting, lending market and leveraged positions."""

__version__ = "0.1.0"
