"""Redis-backed versioned store; conditional writes run as one Lua script."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Final

from redis.asyncio import Redis

from ..errors import VersionConflictError
from .base import StoredEntry, VersionedStateStore

logger = logging.getLogger(__name__)

_LUA_PATH: Final[Path] = Path(__file__).parent.parent / "lua" / "versioned_put.lua"


class RedisStateStore(VersionedStateStore):
    """Entries live in one hash per key; expiry is Redis-native (PEXPIRE)."""

    def __init__(
        self,
        redis: Redis,
        *,
        region: str,
        prefix: str = "wallbounce:",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.region = region
        self._redis = redis
        self._prefix = prefix
        self._clock = clock
        self._lua = _LUA_PATH.read_text()

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def _write(
        self,
        key: str,
        value: dict[str, Any],
        *,
        mode: str,
        expected_version: int | None,
        updated_at: float,
        ttl_seconds: float | None,
        explicit_version: int | None = None,
        provenance: dict[str, Any] | None = None,
    ) -> StoredEntry:
        ttl_ms = int(ttl_seconds * 1000) if ttl_seconds else 0
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        status, version = await self._redis.eval(
            self._lua,
            1,
            self._key(key),
            mode,
            "" if expected_version is None else expected_version,
            json.dumps(value),
            repr(updated_at),
            self.region,
            ttl_ms,
            "" if explicit_version is None else explicit_version,
            json.dumps(provenance) if provenance else "",
            "" if expires_at is None else repr(expires_at),
        )
        if int(status) != 1:
            raise VersionConflictError(
                key,
                expected_version=0 if mode == "absent" else expected_version,
                current_version=int(version),
            )
        return StoredEntry(
            key=key,
            value=value,
            version=int(version),
            updated_at=updated_at,
            region=self.region,
            expires_at=expires_at,
            provenance=provenance,
        )

    async def get(self, key: str) -> StoredEntry | None:
        raw = await self._redis.hgetall(self._key(key))
        if not raw:
            return None
        return StoredEntry(
            key=key,
            value=json.loads(raw["value"]),
            version=int(raw["version"]),
            updated_at=float(raw["updated_at"]),
            region=raw.get("region", ""),
            expires_at=float(raw["expires_at"]) if raw.get("expires_at") else None,
            provenance=json.loads(raw["provenance"]) if raw.get("provenance") else None,
        )

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        expected_version: int | None = None,
        if_not_exists: bool = False,
        ttl_seconds: float | None = None,
    ) -> StoredEntry:
        if if_not_exists:
            mode = "absent"
        elif expected_version is not None:
            mode = "expect"
        else:
            mode = "any"
        entry = await self._write(
            key,
            value,
            mode=mode,
            expected_version=expected_version,
            updated_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )
        logger.debug("Stored %s at version %d", key, entry.version)
        return entry

    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(self._key(key)))

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
        return await self._write(
            key,
            value,
            mode="expect",
            expected_version=expected_version,
            updated_at=updated_at,
            ttl_seconds=ttl_seconds,
            explicit_version=version,
            provenance=provenance,
        )

    async def aclose(self) -> None:
        await self._redis.aclose()
