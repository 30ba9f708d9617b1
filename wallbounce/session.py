"""Session/memory manager: per-session history and context over a versioned store."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Union
from uuid import uuid4

from .cache import BoundedTTLCache
from .errors import SessionNotFoundError, ValidationError, VersionConflictError
from .events import EventBus, EventType
from .prompts import format_exchanges, format_working_context
from .reconciliation import RemoteState, SyncOutcome, receive_remote_state
from .schemas import CollaborationRequest, CollaborationResult, CollaborationRound
from .store.base import StoredEntry, VersionedStateStore, session_key

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"context", "metadata", "history", "user_id"})

SessionUpdates = Union[Mapping[str, Any], Callable[["SessionRecord"], Mapping[str, Any]]]


@dataclass(frozen=True)
class SessionRecord:
    """Committed (or optimistically applied) state of one session."""

    session_id: str
    user_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    history: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    version: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0
    region: str = ""

    @property
    def exchanges(self) -> list[dict[str, Any]]:
        return [h for h in self.history if h.get("kind") == "exchange"]

    def to_value(self) -> dict[str, Any]:
        """Payload persisted in the store; version and region live on the entry."""
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "context": self.context,
            "history": self.history,
            "metadata": self.metadata,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_entry(cls, entry: StoredEntry) -> SessionRecord:
        value = entry.value
        return cls(
            session_id=value["sessionId"],
            user_id=value.get("userId"),
            context=dict(value.get("context") or {}),
            history=list(value.get("history") or []),
            metadata=dict(value.get("metadata") or {}),
            version=entry.version,
            created_at=float(value.get("createdAt", entry.updated_at)),
            updated_at=entry.updated_at,
            region=entry.region,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.to_value(),
            "version": self.version,
            "updatedAt": self.updated_at,
            "region": self.region,
        }


class SessionManager:
    """Reads go through a bounded cache; writes are optimistic and version-checked.

    An update is applied locally first and published to subscribers as
    ``optimistic``; it becomes ``confirmed`` once the conditional store write
    succeeds. On conflict the manager backs off exponentially and re-derives
    the update from freshly read state. When retries run out the optimistic
    state is reverted and ``VersionConflictError`` is raised with the last
    committed record attached.
    """

    def __init__(
        self,
        store: VersionedStateStore,
        *,
        cache: BoundedTTLCache[SessionRecord] | None = None,
        events: EventBus | None = None,
        ttl_seconds: float | None = 24 * 60 * 60,
        max_history: int = 1000,
        max_retries: int = 3,
        retry_backoff: float = 0.1,
        context_exchanges: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.cache = cache if cache is not None else BoundedTTLCache()
        self.events = events
        self.ttl_seconds = ttl_seconds
        self.max_history = max_history
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.context_exchanges = context_exchanges
        self._clock = clock

    @property
    def region(self) -> str:
        return self.store.region

    async def create_session(
        self,
        owner_id: str | None = None,
        working_context: Mapping[str, Any] | None = None,
        *,
        session_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> SessionRecord:
        session_id = session_id or uuid4().hex
        now = self._clock()
        record = SessionRecord(
            session_id=session_id,
            user_id=owner_id,
            context=dict(working_context or {}),
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
            region=self.region,
        )
        entry = await self.store.put(
            session_key(session_id),
            record.to_value(),
            if_not_exists=True,
            ttl_seconds=self.ttl_seconds,
        )
        record = SessionRecord.from_entry(entry)
        self.cache.set(session_id, record)
        logger.info("Created session %s", session_id)
        await self._emit(EventType.SESSION_CREATED, record)
        return record

    async def get_session(self, session_id: str, *, use_cache: bool = True) -> SessionRecord | None:
        if use_cache:
            cached = self.cache.get(session_id)
            if cached is not None:
                return cached
        entry = await self.store.get(session_key(session_id))
        if entry is None:
            self.cache.discard(session_id)
            return None
        record = SessionRecord.from_entry(entry)
        self.cache.set(session_id, record)
        return record

    async def get_or_create_session(
        self, session_id: str, owner_id: str | None = None
    ) -> SessionRecord:
        record = await self.get_session(session_id)
        if record is not None:
            return record
        try:
            return await self.create_session(owner_id, session_id=session_id)
        except VersionConflictError:
            # Created concurrently by another writer.
            record = await self.get_session(session_id, use_cache=False)
            if record is None:
                raise
            return record

    async def update_session(
        self,
        session_id: str,
        updates: SessionUpdates,
        *,
        optimistic: bool = True,
        retry_on_conflict: bool = True,
        max_retries: int | None = None,
        expected_version: int | None = None,
    ) -> SessionRecord:
        """Apply ``updates`` with a version-checked write, retrying on conflict.

        ``updates`` is either a mapping or a callable that derives the mapping
        from the current record. ``context`` and ``metadata`` merge key-wise;
        ``history`` replaces the stored history.
        """
        max_retries = self.max_retries if max_retries is None else max_retries
        current = await self.get_session(session_id)
        if current is None:
            raise SessionNotFoundError(session_id)
        if expected_version is not None and expected_version != current.version:
            current = replace(current, version=expected_version)

        conflicts = 0
        while True:
            changes = updates(current) if callable(updates) else updates
            candidate = self._apply(current, changes)
            try:
                if optimistic:
                    self.cache.set(session_id, candidate)
                    await self._emit(EventType.SESSION_UPDATED, candidate, state="optimistic")
                entry = await self.store.put(
                    session_key(session_id),
                    candidate.to_value(),
                    expected_version=current.version,
                    ttl_seconds=self.ttl_seconds,
                )
            except VersionConflictError as exc:
                conflict = exc
            except BaseException:
                # Cancelled or failed before confirmation.
                if optimistic:
                    self.cache.discard(session_id)
                raise
            else:
                record = SessionRecord.from_entry(entry)
                self.cache.set(session_id, record)
                await self._emit(EventType.SESSION_UPDATED, record, state="confirmed")
                return record

            self.cache.discard(session_id)
            conflicts += 1
            logger.info(
                "Version conflict on session %s (expected %s, found %s), attempt %d",
                session_id,
                conflict.expected_version,
                conflict.current_version,
                conflicts,
            )
            await self._emit(
                EventType.SESSION_CONFLICT,
                candidate,
                expectedVersion=conflict.expected_version,
                currentVersion=conflict.current_version,
            )

            if not retry_on_conflict or conflicts > max_retries:
                committed = await self.get_session(session_id, use_cache=False)
                if optimistic and committed is not None:
                    await self._emit(EventType.SESSION_REVERTED, committed)
                conflict.committed = committed
                logger.warning(
                    "Giving up on session %s after %d conflict(s)", session_id, conflicts
                )
                raise conflict

            await asyncio.sleep(self.retry_backoff * 2 ** (conflicts - 1))
            current = await self.get_session(session_id, use_cache=False)
            if current is None:
                raise SessionNotFoundError(session_id)

    def _apply(self, record: SessionRecord, changes: Mapping[str, Any]) -> SessionRecord:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported session fields: {', '.join(sorted(unknown))}")

        context = dict(record.context)
        context.update(changes.get("context") or {})
        metadata = dict(record.metadata)
        metadata.update(changes.get("metadata") or {})
        history = list(changes["history"]) if "history" in changes else list(record.history)
        if len(history) > self.max_history:
            history = history[-self.max_history :]

        return replace(
            record,
            user_id=changes.get("user_id", record.user_id),
            context=context,
            metadata=metadata,
            history=history,
            updated_at=self._clock(),
        )

    async def add_round_to_history(
        self, session_id: str, round_: CollaborationRound
    ) -> SessionRecord:
        entry = {**round_.to_history(), "timestamp": self._clock()}
        return await self.update_session(
            session_id, lambda record: {"history": [*record.history, entry]}
        )

    async def record_collaboration(
        self,
        session_id: str,
        request: CollaborationRequest,
        result: CollaborationResult,
    ) -> SessionRecord:
        """Append the exchange and its rounds to the session history."""
        now = self._clock()
        entries = [{**r.to_history(), "timestamp": now} for r in result.rounds]
        entries.append(
            {
                "kind": "exchange",
                "query": request.query,
                "response": result.final_response,
                "success": result.success,
                "wallBounceCount": result.wall_bounce_count,
                "quality": result.metadata.quality,
                "timestamp": now,
            }
        )

        def derive(record: SessionRecord) -> dict[str, Any]:
            count = int(record.metadata.get("collaborationCount", 0)) + 1
            return {
                "history": [*record.history, *entries],
                "metadata": {"collaborationCount": count, "lastTaskType": request.task_type},
            }

        return await self.update_session(session_id, derive)

    async def delete_session(self, session_id: str) -> bool:
        self.cache.discard(session_id)
        deleted = await self.store.delete(session_key(session_id))
        if deleted:
            logger.info("Deleted session %s", session_id)
            await self._emit(EventType.SESSION_DELETED, SessionRecord(session_id=session_id))
        return deleted

    def build_context_prompt(self, record: SessionRecord | None) -> str:
        """Render the working context and the latest exchanges for the propose prompt."""
        if record is None:
            return ""
        exchanges = record.exchanges[-self.context_exchanges :] if self.context_exchanges else []
        if not exchanges and not record.context:
            return ""
        return (
            f"WORKING CONTEXT:\n{format_working_context(record.context)}\n\n"
            f"PREVIOUS EXCHANGES:\n{format_exchanges(exchanges)}"
        )

    async def export_replica(self, session_id: str) -> RemoteState | None:
        entry = await self.store.get(session_key(session_id))
        return RemoteState.from_entry(entry) if entry is not None else None

    async def receive_remote(self, remote: RemoteState) -> SyncOutcome:
        outcome = await receive_remote_state(
            self.store, remote, ttl_seconds=self.ttl_seconds, clock=self._clock
        )
        record = SessionRecord.from_entry(outcome.entry)
        if outcome.action == "updated":
            self.cache.discard(record.session_id)
            await self._emit(
                EventType.SESSION_SYNCED, record, syncedFrom=remote.region
            )
        return outcome

    async def _emit(self, type_: EventType, record: SessionRecord, **data: Any) -> None:
        if self.events is None:
            return
        await self.events.publish(
            type_,
            session_id=record.session_id,
            message=f"{type_.value} v{record.version}",
            data={"version": record.version, **data},
        )
