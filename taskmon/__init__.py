"""Polling monitor for a remote task-scheduling service."""

__version__ = "0.1.0"
