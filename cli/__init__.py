"""Notifier CLI - operate workers and inspect the notification queue."""

__version__ = "1.0.0"
