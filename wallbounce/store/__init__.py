"""Versioned state store backends."""

from .base import (
    CACHE_NAMESPACE,
    SESSION_NAMESPACE,
    StoredEntry,
    VersionedStateStore,
    cache_key,
    check_write,
    namespaced_key,
    session_key,
)
from .memory import InMemoryStateStore

__all__ = [
    "CACHE_NAMESPACE",
    "SESSION_NAMESPACE",
    "InMemoryStateStore",
    "StoredEntry",
    "VersionedStateStore",
    "cache_key",
    "check_write",
    "namespaced_key",
    "session_key",
]
