"""Persistence for the coordination core."""

from conduit_core.storage.database import Database, now_iso
from conduit_core.storage.feed import ActivityFeed

__all__ = ["ActivityFeed", "Database", "now_iso"]
