"""Data store backends."""

from .base import DataStore, Filter, normalize_filters
from .memory import MemoryStore
from .supabase_store import SupabaseStore

__all__ = [
    "DataStore",
    "Filter",
    "normalize_filters",
    "MemoryStore",
    "SupabaseStore",
]
