from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from .errors import ProviderError
from .invoker import InvocationOptions, InvocationResult, ModelInvoker
from .model_config import gateway_model_name, provider_for
from .schemas import TokenUsage

logger = logging.getLogger(__name__)

# Status codes worth trying another candidate for; anything else is still a
# ProviderError but flagged as not retryable against the same backend.
_RETRYABLE_STATUS = {408, 409, 425, 429, 500, 502, 503, 504}


def _extract_text(choices: list[dict[str, Any]]) -> str:
    texts: list[str] = []
    for choice in choices:
        message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
        content = message.get("content")
        if isinstance(content, str):
            texts.append(content)
        elif isinstance(content, list):
            # Some gateways return content parts instead of a plain string.
            texts.extend(
                part["text"]
                for part in content
                if isinstance(part, dict) and isinstance(part.get("text"), str)
            )
    return "".join(texts).strip()


def _extract_token_usage(payload: dict[str, Any]) -> TokenUsage:
    usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
    prompt_tokens = usage.get("prompt_tokens") or usage.get("input_tokens") or 0
    completion_tokens = usage.get("completion_tokens") or usage.get("output_tokens") or 0
    return TokenUsage(
        prompt_tokens=int(prompt_tokens) if isinstance(prompt_tokens, (int, float)) else 0,
        completion_tokens=int(completion_tokens)
        if isinstance(completion_tokens, (int, float))
        else 0,
    )


class HttpModelInvoker(ModelInvoker):
    """Async invoker for an OpenAI-compatible chat-completions gateway."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, *, body: Any | None = None) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, json=body)
            resp.raise_for_status()
            return resp
        except httpx.TimeoutException as e:
            raise ProviderError(f"Gateway request timed out ({method} {path}): {e}") from e
        except httpx.RequestError as e:
            raise ProviderError(f"Gateway request failed ({method} {path}): {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            text = e.response.text[:500]
            raise ProviderError(
                f"Gateway error {status} ({method} {path}): {text}",
                retryable=status in _RETRYABLE_STATUS,
            ) from e

    async def health_check(self) -> None:
        await self._request("GET", "/models")

    async def invoke(
        self, model: str, prompt: str, options: InvocationOptions
    ) -> InvocationResult:
        start = time.perf_counter()
        body: dict[str, Any] = {
            "model": gateway_model_name(model),
            "messages": [{"role": "user", "content": prompt}],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        try:
            resp = await self._request("POST", "/chat/completions", body=body)
        except ProviderError as e:
            e.model = model
            raise

        try:
            payload = resp.json()
        except json.JSONDecodeError as exc:
            raise ProviderError(
                f"Invalid JSON response from gateway: {resp.text[:200]}", model=model
            ) from exc

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ProviderError(f"Unexpected gateway response: {payload}", model=model)

        content = _extract_text([c for c in choices if isinstance(c, dict)])
        if not content:
            logger.warning(
                "Gateway returned empty output. Model: %s (%s), Response: %s",
                model,
                provider_for(model).value if _known_provider(model) else "unknown",
                json.dumps(payload)[:500],
            )

        return InvocationResult(
            model=model,
            content=content,
            success=True,
            usage=_extract_token_usage(payload),
            latency=time.perf_counter() - start,
        )


def _known_provider(model: str) -> bool:
    try:
        provider_for(model)
    except ValueError:
        return False
    return True
