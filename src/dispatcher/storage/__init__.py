"""Durable storage for the dispatcher."""

from dispatcher.storage.database import Database

__all__ = ["Database"]
