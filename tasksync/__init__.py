"""Offline task list with a durable mutation queue and reconciliation."""

__version__ = "0.1.0"
