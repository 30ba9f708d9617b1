import pytest

from wallbounce.model_config import (
    Provider,
    gateway_model_name,
    get_env_key,
    order_candidates,
    provider_for,
)


def test_candidates_follow_task_preferences() -> None:
    models = ["gemini-2.5-pro", "custom-model", "gpt-5", "claude-4"]
    assert order_candidates(models, "analysis") == [
        "claude-4",
        "gemini-2.5-pro",
        "gpt-5",
        "custom-model",
    ]
    assert order_candidates(models, "unknown-type") == order_candidates(models, "general")


def test_env_preferences_override(monkeypatch) -> None:
    monkeypatch.setenv(get_env_key("coding"), "claude-4, gpt-5")
    assert order_candidates(["gpt-5", "claude-4"], "coding") == ["claude-4", "gpt-5"]


def test_env_key_format() -> None:
    assert get_env_key("code-review") == "WALLBOUNCE_CODE_REVIEW_MODELS"


@pytest.mark.parametrize(
    "model, provider",
    [
        ("gpt-5", Provider.OPENAI),
        ("o3-mini", Provider.OPENAI),
        ("claude-4", Provider.ANTHROPIC),
        ("gemini-2.5-pro", Provider.GOOGLE),
    ],
)
def test_provider_for(model: str, provider: Provider) -> None:
    assert provider_for(model) is provider


def test_provider_for_unknown_model() -> None:
    with pytest.raises(ValueError):
        provider_for("mystery")


def test_gateway_names() -> None:
    assert gateway_model_name("claude-4") == "claude-sonnet-4-20250514"
    assert gateway_model_name("gpt-5") == "gpt-5"
