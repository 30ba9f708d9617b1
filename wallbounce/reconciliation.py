"""Cross-region state reconciliation (last write wins on ``updated_at``)."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from .errors import VersionConflictError
from .store.base import StoredEntry, VersionedStateStore

logger = logging.getLogger(__name__)

SyncAction = Literal["updated", "local_newer"]


@dataclass(frozen=True)
class RemoteState:
    """A replica of one key as published by another region."""

    key: str
    value: dict[str, Any]
    version: int
    updated_at: float
    region: str

    @classmethod
    def from_entry(cls, entry: StoredEntry) -> RemoteState:
        return cls(
            key=entry.key,
            value=entry.value,
            version=entry.version,
            updated_at=entry.updated_at,
            region=entry.region,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "version": self.version,
            "updatedAt": self.updated_at,
            "region": self.region,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteState:
        return cls(
            key=data["key"],
            value=data["value"],
            version=int(data["version"]),
            updated_at=float(data["updatedAt"]),
            region=data["region"],
        )


@dataclass(frozen=True)
class SyncOutcome:
    action: SyncAction
    entry: StoredEntry


async def receive_remote_state(
    store: VersionedStateStore,
    remote: RemoteState,
    *,
    ttl_seconds: float | None = None,
    max_attempts: int = 3,
    clock: Callable[[], float] = time.time,
) -> SyncOutcome:
    """Install a remote replica if it is strictly newer than the local copy.

    The overwrite is conditional on the local version that was compared, so a
    local write racing with the sync is never silently lost.
    """
    for attempt in range(1, max_attempts + 1):
        local = await store.get(remote.key)
        if local is not None and remote.updated_at <= local.updated_at:
            logger.debug(
                "Keeping local %s (local %.3f >= remote %.3f)",
                remote.key,
                local.updated_at,
                remote.updated_at,
            )
            return SyncOutcome("local_newer", local)

        provenance = {
            "syncedFrom": remote.region,
            "originalTimestamp": remote.updated_at,
            "syncedAt": clock(),
        }
        try:
            entry = await store.replicate(
                remote.key,
                remote.value,
                version=remote.version,
                updated_at=remote.updated_at,
                provenance=provenance,
                expected_version=local.version if local is not None else 0,
                ttl_seconds=ttl_seconds,
            )
        except VersionConflictError:
            if attempt == max_attempts:
                raise
            logger.info("Local write raced with sync of %s, re-comparing", remote.key)
            continue

        logger.info("Synced %s from %s at version %d", remote.key, remote.region, remote.version)
        return SyncOutcome("updated", entry)

    raise AssertionError("unreachable")
