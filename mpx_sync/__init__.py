"""Notification-driven synchronization of mpx media objects into local records."""

__version__ = "0.1.0"
