"""SQL-backed versioned store (Postgres in production, sqlite in tests)."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Database
from ..errors import VersionConflictError
from ..models import StateEntry
from .base import StoredEntry, VersionedStateStore, check_write

logger = logging.getLogger(__name__)

# Unconditional puts retry when a concurrent writer slips in between the
# read and the conditional UPDATE.
_UNCONDITIONAL_ATTEMPTS = 5


def _to_entry(row: StateEntry) -> StoredEntry:
    return StoredEntry(
        key=row.key,
        value=row.value,
        version=row.version,
        updated_at=row.updated_at,
        region=row.region,
        expires_at=row.expires_at,
        provenance=row.provenance,
    )


class SqlStateStore(VersionedStateStore):
    """Each write is a conditional ``UPDATE ... WHERE version = :expected``."""

    def __init__(
        self,
        database: Database,
        *,
        region: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.region = region
        self.database = database
        self._clock = clock

    async def _live(self, session: AsyncSession, key: str) -> StateEntry | None:
        row = (
            await session.execute(select(StateEntry).where(StateEntry.key == key))
        ).scalar_one_or_none()
        if row is not None and row.expires_at is not None and row.expires_at <= self._clock():
            await session.execute(
                delete(StateEntry).where(StateEntry.key == key, StateEntry.version == row.version)
            )
            logger.debug("Expired entry %s removed", key)
            return None
        return row

    async def get(self, key: str) -> StoredEntry | None:
        async with self.database.session() as session:
            row = await self._live(session, key)
            return _to_entry(row) if row is not None else None

    async def _write(
        self,
        key: str,
        values: dict[str, Any],
        *,
        expected_version: int | None,
        if_not_exists: bool,
        next_version: Callable[[int], int],
    ) -> StoredEntry:
        try:
            async with self.database.session() as session:
                row = await self._live(session, key)
                current_version = row.version if row is not None else 0
                check_write(
                    key,
                    current_version,
                    expected_version=expected_version,
                    if_not_exists=if_not_exists,
                )
                version = next_version(current_version)
                if row is None:
                    session.add(StateEntry(key=key, version=version, **values))
                    await session.flush()
                else:
                    result = await session.execute(
                        update(StateEntry)
                        .where(StateEntry.key == key, StateEntry.version == current_version)
                        .values(version=version, **values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise VersionConflictError(
                            key,
                            expected_version=current_version,
                            current_version=None,
                        )
        except IntegrityError as exc:
            # Lost an insert race; somebody else created the key.
            raise VersionConflictError(
                key, expected_version=0, current_version=None
            ) from exc
        return StoredEntry(key=key, version=version, **values)

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        expected_version: int | None = None,
        if_not_exists: bool = False,
        ttl_seconds: float | None = None,
    ) -> StoredEntry:
        conditional = if_not_exists or expected_version is not None
        attempts = 1 if conditional else _UNCONDITIONAL_ATTEMPTS
        for attempt in range(1, attempts + 1):
            now = self._clock()
            values = {
                "value": value,
                "updated_at": now,
                "region": self.region,
                "expires_at": now + ttl_seconds if ttl_seconds else None,
                "provenance": None,
            }
            try:
                return await self._write(
                    key,
                    values,
                    expected_version=expected_version,
                    if_not_exists=if_not_exists,
                    next_version=lambda current: current + 1,
                )
            except VersionConflictError:
                if attempt == attempts:
                    raise
                logger.debug("Concurrent write on %s, retrying unconditional put", key)
        raise AssertionError("unreachable")

    async def delete(self, key: str) -> bool:
        async with self.database.session() as session:
            row = await self._live(session, key)
            if row is None:
                return False
            result = await session.execute(
                delete(StateEntry).where(StateEntry.key == key, StateEntry.version == row.version)
            )
            return result.rowcount > 0

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
        values = {
            "value": value,
            "updated_at": updated_at,
            "region": self.region,
            "expires_at": self._clock() + ttl_seconds if ttl_seconds else None,
            "provenance": dict(provenance),
        }
        return await self._write(
            key,
            values,
            expected_version=expected_version,
            if_not_exists=False,
            next_version=lambda _current: version,
        )

    async def aclose(self) -> None:
        await self.database.dispose()
