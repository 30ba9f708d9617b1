from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from typing import Any

from .base import StoredEntry, VersionedStateStore, check_write

logger = logging.getLogger(__name__)


class InMemoryStateStore(VersionedStateStore):
    """Process-local store; each method is atomic with respect to the event loop."""

    def __init__(self, *, region: str = "local", clock: Callable[[], float] = time.time) -> None:
        self.region = region
        self._clock = clock
        self._entries: dict[str, StoredEntry] = {}

    def _live(self, key: str) -> StoredEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug("Expired entry %s removed", key)
            return None
        return entry

    def _expiry(self, now: float, ttl_seconds: float | None) -> float | None:
        return now + ttl_seconds if ttl_seconds else None

    async def get(self, key: str) -> StoredEntry | None:
        entry = self._live(key)
        return copy.deepcopy(entry) if entry is not None else None

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        expected_version: int | None = None,
        if_not_exists: bool = False,
        ttl_seconds: float | None = None,
    ) -> StoredEntry:
        current = self._live(key)
        current_version = current.version if current else 0
        check_write(
            key, current_version, expected_version=expected_version, if_not_exists=if_not_exists
        )

        now = self._clock()
        entry = StoredEntry(
            key=key,
            value=copy.deepcopy(value),
            version=current_version + 1,
            updated_at=now,
            region=self.region,
            expires_at=self._expiry(now, ttl_seconds),
        )
        self._entries[key] = entry
        return copy.deepcopy(entry)

    async def delete(self, key: str) -> bool:
        if self._live(key) is None:
            return False
        del self._entries[key]
        return True

    async def replicate(
        self,
        key: str,
        value: dict[str, Any],
        *,
        version: int,
        updated_at: float,
        provenance: dict[str, Any],
        expected_version: int,
        ttl_seconds: float | None = None,
    ) -> StoredEntry:
        current = self._live(key)
        check_write(
            key,
            current.version if current else 0,
            expected_version=expected_version,
            if_not_exists=False,
        )
        entry = StoredEntry(
            key=key,
            value=copy.deepcopy(value),
            version=version,
            updated_at=updated_at,
            region=self.region,
            expires_at=self._expiry(self._clock(), ttl_seconds),
            provenance=dict(provenance),
        )
        self._entries[key] = entry
        return copy.deepcopy(entry)

    def __len__(self) -> int:
        return len(self._entries)
