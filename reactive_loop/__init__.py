"""Reactive leverage loop engine."""

__version__ = "0.1.0"
