"""Redis-backed rate limiting for model invocations."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Final

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .errors import ProviderError
from .invoker import InvocationOptions, InvocationResult, ModelInvoker
from .model_config import provider_for

logger = logging.getLogger(__name__)

_LUA_PATH: Final[Path] = Path(__file__).with_name("lua") / "rate_limit.lua"

# requests per window, window seconds
PROVIDER_LIMITS: dict[str, tuple[int, int]] = {
    "openai": (60, 60),
    "anthropic": (60, 60),
    "google": (60, 60),
}


def limits_for(api_type: str) -> tuple[int, int]:
    return PROVIDER_LIMITS.get(api_type, (10, 60))


def api_type_for(model: str) -> str:
    try:
        return provider_for(model).value
    except ValueError:
        return model


class RateLimiter:
    """Fixed-window limiter keyed by provider."""

    def __init__(self, redis: Redis, *, wait_seconds: float = 60.0, poll_interval: float = 1.0) -> None:
        self._redis = redis
        self._wait_seconds = wait_seconds
        self._poll_interval = poll_interval
        self._lua = _LUA_PATH.read_text()

    async def acquire(self, api_type: str) -> bool:
        """Acquire a token for the API type. Returns True if allowed."""
        limit, window = limits_for(api_type)
        bucket = int(time.time() // window)
        key = f"ratelimit:{api_type}:{bucket}"
        result = await self._redis.eval(self._lua, 1, key, limit, window)
        return int(result) == 1

    async def wait(self, api_type: str) -> bool:
        """Wait until a token is available or the wait budget runs out."""
        deadline = time.monotonic() + self._wait_seconds
        while time.monotonic() < deadline:
            try:
                if await self.acquire(api_type):
                    return True
            except RedisError as exc:
                # If Redis is unavailable, do not block invocation.
                logger.warning("Rate limiter unavailable, allowing %s: %s", api_type, exc)
                return True

            await asyncio.sleep(self._poll_interval)

        return False


class RateLimitedInvoker(ModelInvoker):
    """Wraps another invoker with a per-provider rate limit."""

    def __init__(self, inner: ModelInvoker, limiter: RateLimiter) -> None:
        self._inner = inner
        self._limiter = limiter

    async def invoke(
        self, model: str, prompt: str, options: InvocationOptions
    ) -> InvocationResult:
        if not await self._limiter.wait(api_type_for(model)):
            raise ProviderError("Rate limit timeout", model=model)
        return await self._inner.invoke(model, prompt, options)

    async def aclose(self) -> None:
        await self._inner.aclose()
