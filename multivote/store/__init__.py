"""
Store selection.

Services share one store per process. ``STORE_BACKEND`` picks the backend:
``postgres`` (default) or ``memory``.
"""
import os

from multivote.store.memory import MemoryStore
from multivote.store.postgres import PostgresStore

_store = None


def get_store():
    """Return the process-wide store, creating it on first use."""
    global _store
    if _store is None:
        backend = os.getenv("STORE_BACKEND", "postgres").lower()
        _store = MemoryStore() if backend == "memory" else PostgresStore()
    return _store


def set_store(store) -> None:
    """Replace the process-wide store (tests, embedding)."""
    global _store
    _store = store


__all__ = ["MemoryStore", "PostgresStore", "get_store", "set_store"]
