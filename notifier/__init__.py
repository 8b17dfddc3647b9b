"""Asynchronous notification delivery for the scheduling API."""

__version__ = "1.0.0"
