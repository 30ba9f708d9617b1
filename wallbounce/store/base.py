"""Versioned key-value store contract shared by all backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..errors import VersionConflictError

SESSION_NAMESPACE = "session"
CACHE_NAMESPACE = "cache"


def namespaced_key(kind: str, identifier: str) -> str:
    return f"{kind}#{identifier}"


def session_key(session_id: str) -> str:
    return namespaced_key(SESSION_NAMESPACE, session_id)


def cache_key(key: str) -> str:
    return namespaced_key(CACHE_NAMESPACE, key)


@dataclass(frozen=True)
class StoredEntry:
    """A committed value together with its concurrency metadata."""

    key: str
    value: dict[str, Any]
    version: int
    updated_at: float
    region: str
    expires_at: float | None = None
    provenance: dict[str, Any] | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "version": self.version,
            "updatedAt": self.updated_at,
            "region": self.region,
            "expiresAt": self.expires_at,
            "provenance": self.provenance,
        }


def check_write(
    key: str,
    current_version: int,
    *,
    expected_version: int | None,
    if_not_exists: bool,
) -> None:
    """Raise VersionConflictError if a write's preconditions do not hold.

    An absent (or expired) key has version 0.
    """
    if if_not_exists and current_version != 0:
        raise VersionConflictError(key, expected_version=0, current_version=current_version)
    if expected_version is not None and current_version != expected_version:
        raise VersionConflictError(
            key, expected_version=expected_version, current_version=current_version
        )


class VersionedStateStore(ABC):
    """Optimistic-concurrency key-value store.

    Every accepted ``put`` bumps the version by exactly one. ``replicate`` is the
    only way to install a foreign version number and is reserved for
    cross-region reconciliation.
    """

    region: str

    @abstractmethod
    async def get(self, key: str) -> StoredEntry | None: ...

    @abstractmethod
    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        expected_version: int | None = None,
        if_not_exists: bool = False,
        ttl_seconds: float | None = None,
    ) -> StoredEntry: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
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
    ) -> StoredEntry: ...

    async def aclose(self) -> None:
        return None
