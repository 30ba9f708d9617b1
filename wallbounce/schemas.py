"""Request/response contract and the value objects produced by a collaboration run."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .severity import CritiqueScore

Quality = Literal["low", "medium", "high", "excellent"]


class Phase(StrEnum):
    """Wall-bounce phases."""

    PROPOSE = "propose"
    CRITIQUE = "critique"
    REVISE = "revise"


class _ContractModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class CollaborationOptions(_ContractModel):
    verbosity: Literal["low", "medium", "high"] = "medium"
    effort: Literal["minimal", "low", "medium", "high"] = "medium"
    reasoning: str | None = None
    min_wall_bounces: int | None = Field(default=None, ge=1)
    max_wall_bounces: int | None = Field(default=None, ge=1)
    enhanced: bool = False
    critique_model: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> CollaborationOptions:
        if (
            self.min_wall_bounces is not None
            and self.max_wall_bounces is not None
            and self.min_wall_bounces > self.max_wall_bounces
        ):
            raise ValueError("minWallBounces must not exceed maxWallBounces")
        return self


class CollaborationRequest(_ContractModel):
    """A collaboration request as accepted from the transport layer."""

    query: str = Field(min_length=1)
    task_type: str = "general"
    models: list[str] = Field(min_length=1)
    options: CollaborationOptions = Field(default_factory=CollaborationOptions)
    session_id: str = Field(min_length=1)
    user_id: str | None = None

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value

    @field_validator("models")
    @classmethod
    def _dedupe_models(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for model in value:
            model = model.strip()
            if not model:
                raise ValueError("model identifiers must not be blank")
            if model not in cleaned:
                cleaned.append(model)
        return cleaned

    @classmethod
    def parse(cls, payload: CollaborationRequest | dict[str, Any]) -> CollaborationRequest:
        """Validate an incoming payload, raising the engine's ValidationError."""
        if isinstance(payload, CollaborationRequest):
            return payload
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
            raise ValidationError(f"Invalid collaboration request: {summary}", errors=errors) from exc


@dataclass(frozen=True)
class TokenUsage:
    """Token usage from an invocation."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt": self.prompt_tokens,
            "completion": self.completion_tokens,
            "total": self.total_tokens,
        }


@dataclass(frozen=True)
class CollaborationRound:
    """One phase attempt against one model."""

    phase: Phase
    model: str
    input: str
    output: str
    latency: float
    success: bool
    iteration: int
    error: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    cost: Decimal = Decimal("0")

    def to_response(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "response": self.output if self.success else f"Error: {self.error}",
            "latency": round(self.latency * 1000),
            "success": self.success,
            "role": self.phase.value,
            "iteration": self.iteration,
        }

    def to_history(self, max_chars: int = 2000) -> dict[str, Any]:
        return {
            "kind": "round",
            "phase": self.phase.value,
            "model": self.model,
            "iteration": self.iteration,
            "success": self.success,
            "output": self.output[:max_chars],
            "error": self.error,
            "latency": round(self.latency, 3),
            "tokens": self.usage.total_tokens,
            "cost": str(self.cost),
        }


@dataclass
class CollaborationMetadata:
    processing_time: float = 0.0
    models_used: list[str] = field(default_factory=list)
    models_attempted: list[str] = field(default_factory=list)
    successful_models: list[str] = field(default_factory=list)
    failed_models: list[str] = field(default_factory=list)
    abandoned_models: list[str] = field(default_factory=list)
    total_cost: Decimal = Decimal("0")
    total_tokens: int = 0
    quality: Quality = "low"
    consensus: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processingTime": round(self.processing_time * 1000),
            "modelsUsed": list(self.models_used),
            "modelsAttempted": list(self.models_attempted),
            "successfulModels": list(self.successful_models),
            "failedModels": list(self.failed_models),
            "abandonedModels": list(self.abandoned_models),
            "totalCost": float(self.total_cost),
            "totalTokens": self.total_tokens,
            "quality": self.quality,
            "consensus": round(self.consensus, 4),
        }


@dataclass
class CollaborationResult:
    """Terminal outcome of one collaboration run."""

    success: bool
    final_response: str
    wall_bounce_count: int
    rounds: list[CollaborationRound] = field(default_factory=list)
    metadata: CollaborationMetadata = field(default_factory=CollaborationMetadata)
    critique_score: CritiqueScore | None = None
    revised: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "finalResponse": self.final_response,
            "wallBounceCount": self.wall_bounce_count,
            "modelResponses": [r.to_response() for r in self.rounds],
            "metadata": self.metadata.to_dict(),
        }
        if self.critique_score is not None:
            payload["critique"] = self.critique_score.to_dict()
        if self.error:
            payload["error"] = self.error
        return payload
