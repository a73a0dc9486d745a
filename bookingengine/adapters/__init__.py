"""
Adapters layer - Datastore and configuration collaborators.
"""

from .config_source import ConfigCalendarSource
from .memory_store import InMemoryBookingStore

__all__ = ["ConfigCalendarSource", "InMemoryBookingStore"]
