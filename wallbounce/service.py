"""Collaboration service: validate, load context, orchestrate, persist, respond."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from .cache import BoundedTTLCache
from .config import Settings
from .db import Database
from .errors import AllModelsFailedError
from .events import EventBus, RedisEventPublisher
from .gateway_client import HttpModelInvoker
from .invoker import InvocationOptions, ModelInvoker, ScriptedModelInvoker, echo_responder
from .orchestrator import WallBounceOrchestrator
from .rate_limit import RateLimitedInvoker, RateLimiter
from .redis_client import create_redis_client
from .schemas import CollaborationRequest, CollaborationResult
from .session import SessionManager
from .severity import CritiqueSeverityAnalyzer, SeverityConfig
from .store.base import VersionedStateStore
from .store.memory import InMemoryStateStore
from .store.redis import RedisStateStore
from .store.sql import SqlStateStore

logger = logging.getLogger(__name__)


class CollaborationService:
    """Entry point for one collaboration turn within a session."""

    def __init__(
        self,
        orchestrator: WallBounceOrchestrator,
        sessions: SessionManager,
        *,
        events: EventBus | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.sessions = sessions
        self.events = events

    async def collaborate(self, payload: CollaborationRequest | dict[str, Any]) -> CollaborationResult:
        """Run one collaboration turn.

        Raises ``ValidationError`` before any phase for malformed payloads,
        ``AllModelsFailedError`` (carrying the result) when no proposal could be
        produced, and ``VersionConflictError`` when persisting the turn keeps
        conflicting. Partial phase failures are reported in the result.
        """
        request = CollaborationRequest.parse(payload)
        record = await self.sessions.get_or_create_session(request.session_id, request.user_id)
        context = self.sessions.build_context_prompt(record)

        result = await self.orchestrator.run(request, context)
        await self.sessions.record_collaboration(request.session_id, request, result)

        if not result.success:
            raise AllModelsFailedError(result)
        return result

    async def aclose(self) -> None:
        await self.orchestrator.invoker.aclose()
        await self.sessions.store.aclose()

    async def __aenter__(self) -> CollaborationService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def create_invoker(settings: Settings) -> ModelInvoker:
    if settings.invoker == "offline":
        invoker: ModelInvoker = ScriptedModelInvoker(default=echo_responder)
    else:
        invoker = HttpModelInvoker(
            base_url=settings.gateway_url,
            api_key=settings.gateway_api_key,
            timeout_seconds=settings.invocation_timeout,
        )
    if settings.rate_limit_enabled:
        limiter = RateLimiter(
            create_redis_client(settings.redis_url),
            wait_seconds=settings.rate_limit_wait_seconds,
        )
        invoker = RateLimitedInvoker(invoker, limiter)
    return invoker


def create_store(settings: Settings) -> VersionedStateStore:
    if settings.state_backend == "redis":
        return RedisStateStore(
            create_redis_client(settings.redis_url),
            region=settings.region,
            prefix=settings.redis_key_prefix,
        )
    if settings.state_backend == "sql":
        return SqlStateStore(Database(settings.database_url), region=settings.region)
    return InMemoryStateStore(region=settings.region)


def create_analyzer(settings: Settings) -> CritiqueSeverityAnalyzer:
    config = (
        SeverityConfig.from_file(settings.severity_config_path)
        if settings.severity_config_path
        else SeverityConfig()
    )
    if config.revision_threshold != settings.revision_threshold:
        config = dataclasses.replace(config, revision_threshold=settings.revision_threshold)
    return CritiqueSeverityAnalyzer(config)


def create_service(settings: Settings) -> CollaborationService:
    """Wire a service from settings; backends are chosen here, never by fallback."""
    events = EventBus()
    if settings.publish_events:
        events.on_event(RedisEventPublisher(create_redis_client(settings.redis_url)))

    orchestrator = WallBounceOrchestrator(
        create_invoker(settings),
        create_analyzer(settings),
        max_passes=settings.max_passes,
        min_passes=settings.min_passes,
        fan_out_min_successes=settings.fan_out_min_successes,
        invocation_timeout=settings.invocation_timeout,
        phase_timeout=settings.phase_timeout,
        invocation_options=InvocationOptions(
            temperature=settings.temperature, max_tokens=settings.max_tokens
        ),
        events=events,
    )
    sessions = SessionManager(
        create_store(settings),
        cache=BoundedTTLCache(settings.cache_capacity, settings.cache_ttl_seconds),
        events=events,
        ttl_seconds=settings.session_ttl_seconds,
        max_history=settings.max_history,
        max_retries=settings.max_retries,
        retry_backoff=settings.retry_backoff_seconds,
        context_exchanges=settings.context_exchanges,
    )
    logger.debug(
        "Service wired (invoker=%s, backend=%s, region=%s)",
        settings.invoker,
        settings.state_backend,
        settings.region,
    )
    return CollaborationService(orchestrator, sessions, events=events)
