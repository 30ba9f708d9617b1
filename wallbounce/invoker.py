"""Model invocation interface, the timeout guard, and the scripted (offline) invoker."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Union

from .costs import cost_for
from .errors import InvocationTimeoutError, ProviderError
from .schemas import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvocationOptions:
    temperature: float = 0.7
    max_tokens: int = 2048


@dataclass(frozen=True)
class InvocationResult:
    """Result from invoking one model once."""

    model: str
    content: str
    success: bool
    usage: TokenUsage = field(default_factory=TokenUsage)
    cost: Decimal | None = None
    latency: float = 0.0
    error: str | None = None
    timed_out: bool = False

    @classmethod
    def failure(
        cls, model: str, error: str, *, latency: float = 0.0, timed_out: bool = False
    ) -> InvocationResult:
        return cls(
            model=model,
            content="",
            success=False,
            cost=Decimal("0"),
            latency=latency,
            error=error,
            timed_out=timed_out,
        )


class ModelInvoker(ABC):
    """Capability to run a prompt against a model backend.

    Implementations either return an ``InvocationResult`` or raise
    ``ProviderError``; callers go through :func:`invoke_guarded`.
    """

    @abstractmethod
    async def invoke(
        self, model: str, prompt: str, options: InvocationOptions
    ) -> InvocationResult: ...

    async def aclose(self) -> None:
        return None


async def invoke_guarded(
    invoker: ModelInvoker,
    model: str,
    prompt: str,
    options: InvocationOptions,
    *,
    timeout: float,
) -> InvocationResult:
    """Invoke with a hard time budget; never raises for provider-side failures."""
    start = time.perf_counter()
    try:
        result = await asyncio.wait_for(invoker.invoke(model, prompt, options), timeout=timeout)
    except asyncio.TimeoutError:
        err = InvocationTimeoutError(model, timeout)
        logger.warning("%s", err)
        return InvocationResult.failure(
            model, str(err), latency=time.perf_counter() - start, timed_out=True
        )
    except ProviderError as e:
        logger.warning("Invocation of %s failed: %s", model, e)
        return InvocationResult.failure(model, str(e), latency=time.perf_counter() - start)
    except Exception as e:
        logger.exception("Unexpected error invoking %s", model)
        return InvocationResult.failure(
            model, f"{type(e).__name__}: {e}", latency=time.perf_counter() - start
        )

    latency = result.latency or (time.perf_counter() - start)
    if result.success and not result.content.strip():
        return InvocationResult.failure(model, "Empty response", latency=latency)
    cost = result.cost
    if cost is None:
        cost = cost_for(model, result.usage) if result.success else Decimal("0")
    return replace(result, latency=latency, cost=cost)


Responder = Union[str, BaseException, Callable[[str, str], Union[str, Awaitable[str]]]]


def _estimate_tokens(text: str) -> int:
    return max(1, len(text) // 4) if text else 0


def echo_responder(model: str, prompt: str) -> str:
    """Deterministic offline responder used by ``WALLBOUNCE_INVOKER=offline``."""
    first_line = next((line.strip() for line in prompt.splitlines() if line.strip()), "")
    return f"[{model}] {first_line}\n\nThe approach looks correct and accurate; the reasoning is solid."


class ScriptedModelInvoker(ModelInvoker):
    """Invoker that replays scripted responses per model.

    A per-model script is either a single responder (reused on every call) or a
    sequence consumed in order, the last entry repeating once exhausted.
    Exceptions in a script are raised, so failures and timeouts can be staged.
    """

    def __init__(
        self,
        responses: Mapping[str, Responder | Sequence[Responder]] | None = None,
        *,
        default: Responder | None = None,
        delays: Mapping[str, float] | None = None,
    ) -> None:
        self._scripts: dict[str, deque[Responder]] = {}
        for model, script in (responses or {}).items():
            if isinstance(script, (str, BaseException)) or callable(script):
                self._scripts[model] = deque([script])
            else:
                self._scripts[model] = deque(script)
        self._default = default
        self._delays = dict(delays or {})
        self.calls: list[tuple[str, str]] = []

    def _next_responder(self, model: str) -> Responder | None:
        script = self._scripts.get(model)
        if not script:
            return self._default
        if len(script) > 1:
            return script.popleft()
        return script[0]

    async def invoke(
        self, model: str, prompt: str, options: InvocationOptions
    ) -> InvocationResult:
        self.calls.append((model, prompt))
        start = time.perf_counter()

        delay = self._delays.get(model)
        if delay:
            await asyncio.sleep(delay)

        responder = self._next_responder(model)
        if responder is None:
            raise ProviderError(f"No scripted response for {model}", model=model)
        if isinstance(responder, BaseException):
            raise responder
        if callable(responder):
            content = responder(model, prompt)
            if inspect.isawaitable(content):
                content = await content
        else:
            content = responder

        usage = TokenUsage(
            prompt_tokens=_estimate_tokens(prompt),
            completion_tokens=min(_estimate_tokens(content), options.max_tokens),
        )
        return InvocationResult(
            model=model,
            content=content,
            success=True,
            usage=usage,
            latency=time.perf_counter() - start,
        )
