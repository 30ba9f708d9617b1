import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from wallbounce.errors import ProviderError
from wallbounce.gateway_client import HttpModelInvoker
from wallbounce.invoker import (
    InvocationOptions,
    InvocationResult,
    ModelInvoker,
    ScriptedModelInvoker,
    invoke_guarded,
)
from wallbounce.schemas import TokenUsage

OPTIONS = InvocationOptions()


class RaisingInvoker(ModelInvoker):
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc

    async def invoke(self, model, prompt, options) -> InvocationResult:
        raise self.exc


@pytest.mark.asyncio
async def test_guard_turns_timeout_into_failed_result() -> None:
    invoker = ScriptedModelInvoker({"gpt-5": "late"}, delays={"gpt-5": 1.0})
    result = await invoke_guarded(invoker, "gpt-5", "p", OPTIONS, timeout=0.01)

    assert result.success is False
    assert result.timed_out is True
    assert "timed out" in result.error
    assert result.cost == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc, fragment",
    [
        (ProviderError("quota exceeded"), "quota exceeded"),
        (KeyError("boom"), "KeyError"),
    ],
)
async def test_guard_reports_failures(exc: BaseException, fragment: str) -> None:
    result = await invoke_guarded(RaisingInvoker(exc), "gpt-5", "p", OPTIONS, timeout=1)
    assert result.success is False
    assert result.timed_out is False
    assert fragment in result.error


@pytest.mark.asyncio
async def test_guard_propagates_cancellation() -> None:
    with pytest.raises(asyncio.CancelledError):
        await invoke_guarded(
            RaisingInvoker(asyncio.CancelledError()), "gpt-5", "p", OPTIONS, timeout=1
        )


@pytest.mark.asyncio
async def test_empty_content_is_a_failure() -> None:
    result = await invoke_guarded(
        ScriptedModelInvoker({"gpt-5": "   "}), "gpt-5", "p", OPTIONS, timeout=1
    )
    assert result.success is False
    assert result.error == "Empty response"


@pytest.mark.asyncio
async def test_success_is_priced_from_usage() -> None:
    result = await invoke_guarded(
        ScriptedModelInvoker({"gpt-5": "an answer"}), "gpt-5", "prompt", OPTIONS, timeout=1
    )
    assert result.success is True
    assert result.usage.total_tokens > 0
    assert result.cost > 0


@pytest.mark.asyncio
async def test_scripted_sequence_repeats_last_entry() -> None:
    invoker = ScriptedModelInvoker({"m": ["one", "two"]})
    outputs = [(await invoker.invoke("m", "p", OPTIONS)).content for _ in range(3)]
    assert outputs == ["one", "two", "two"]

    with pytest.raises(ProviderError):
        await invoker.invoke("unscripted", "p", OPTIONS)


def _gateway(handler) -> HttpModelInvoker:
    return HttpModelInvoker(
        base_url="http://gateway.test/v1", api_key="k", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_gateway_success() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": " Reverse with slicing. "}}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 4},
            },
        )

    invoker = _gateway(handler)
    try:
        result = await invoker.invoke("claude-4", "How?", InvocationOptions(max_tokens=100))
    finally:
        await invoker.aclose()

    assert result.content == "Reverse with slicing."
    assert result.usage == TokenUsage(12, 4)
    assert seen["auth"] == "Bearer k"
    assert seen["body"]["model"] == "claude-sonnet-4-20250514"
    assert seen["body"]["max_tokens"] == 100
    assert seen["body"]["messages"] == [{"role": "user", "content": "How?"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("status, retryable", [(429, True), (503, True), (400, False)])
async def test_gateway_errors_raise_provider_error(status: int, retryable: bool) -> None:
    invoker = _gateway(lambda request: httpx.Response(status, text="nope"))
    try:
        with pytest.raises(ProviderError) as exc_info:
            await invoker.invoke("gpt-5", "p", OPTIONS)
    finally:
        await invoker.aclose()

    assert exc_info.value.model == "gpt-5"
    assert exc_info.value.retryable is retryable
    assert str(status) in str(exc_info.value)


@pytest.mark.asyncio
async def test_gateway_malformed_payload() -> None:
    invoker = _gateway(lambda request: httpx.Response(200, json={"choices": []}))
    try:
        with pytest.raises(ProviderError, match="Unexpected gateway response"):
            await invoker.invoke("gpt-5", "p", OPTIONS)
    finally:
        await invoker.aclose()
