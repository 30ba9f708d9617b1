from __future__ import annotations

import os
from collections.abc import Sequence
from enum import StrEnum


class Provider(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


# Preferred candidate order per task type. Models a request names that are not
# listed keep their requested order after the preferred ones.
DEFAULT_PREFERENCES: dict[str, list[str]] = {
    "coding": ["gpt-5", "claude-4", "gemini-2.5-pro"],
    "analysis": ["claude-4", "gemini-2.5-pro", "gpt-5"],
    "general": ["gpt-5", "claude-4", "gemini-2.5-pro"],
}

# Names the gateway expects for the shorthand identifiers callers use.
GATEWAY_MODEL_NAMES: dict[str, str] = {
    "claude-4": "claude-sonnet-4-20250514",
    "claude-sonnet-4": "claude-sonnet-4-20250514",
    "claude-opus-4.1": "claude-opus-4-1-20250805",
    "claude-haiku-3.5": "claude-3-5-haiku-20241022",
}


def get_env_key(task_type: str) -> str:
    return f"WALLBOUNCE_{task_type.upper().replace('-', '_')}_MODELS"


def get_preferences_from_env(task_type: str) -> list[str] | None:
    raw = os.getenv(get_env_key(task_type))
    if not raw:
        return None
    return [m.strip() for m in raw.split(",") if m.strip()]


def resolve_preferences(task_type: str) -> list[str]:
    env_value = get_preferences_from_env(task_type)
    if env_value:
        return env_value
    return DEFAULT_PREFERENCES.get(task_type, DEFAULT_PREFERENCES["general"])


def order_candidates(models: Sequence[str], task_type: str) -> list[str]:
    """Order the requested models by the task type's preference list."""
    preferences = resolve_preferences(task_type)
    requested = list(dict.fromkeys(models))
    preferred = [m for m in preferences if m in requested]
    rest = [m for m in requested if m not in preferred]
    return preferred + rest


def provider_for(model: str) -> Provider:
    name = model.lower()
    if "gpt" in name or name.startswith(("o3", "o4")):
        return Provider.OPENAI
    if "claude" in name:
        return Provider.ANTHROPIC
    if "gemini" in name:
        return Provider.GOOGLE
    raise ValueError(f"Cannot determine provider for model: {model}")


def gateway_model_name(model: str) -> str:
    return GATEWAY_MODEL_NAMES.get(model, model)
