"""Persistence backends for dispatch data."""

from __future__ import annotations

import logging
from functools import lru_cache

from ..db.supabase import get_supabase_client
from .base import DispatchStore
from .memory import InMemoryDispatchStore
from .supabase_store import SupabaseDispatchStore


@lru_cache()
def get_dispatch_store() -> DispatchStore:
    """Return the process-wide store, falling back to memory without Supabase."""
    client = get_supabase_client()
    if client is None:
        logging.info("Supabase not configured - using in-memory dispatch store")
        return InMemoryDispatchStore()
    return SupabaseDispatchStore(client)


__all__ = ["DispatchStore", "InMemoryDispatchStore", "SupabaseDispatchStore", "get_dispatch_store"]
