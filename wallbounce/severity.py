"""
Critique severity scoring and the revise/no-revise decision.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Any


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


BUCKETS: tuple[Severity, ...] = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)

DEFAULT_KEYWORDS: dict[Severity, tuple[str, ...]] = {
    Severity.CRITICAL: (
        "incorrect",
        "wrong",
        "error",
        "false",
        "invalid",
        "dangerous",
        "harmful",
        "security",
    ),
    Severity.HIGH: (
        "improve",
        "missing",
        "incomplete",
        "unclear",
        "confusing",
        "outdated",
        "inefficient",
    ),
    Severity.MEDIUM: (
        "consider",
        "suggest",
        "recommend",
        "alternatively",
        "perhaps",
        "could",
    ),
    Severity.LOW: (
        "minor",
        "style",
        "formatting",
        "preference",
        "cosmetic",
        "good",
        "well",
    ),
}

DEFAULT_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 5,
    Severity.LOW: 1,
}

DEFAULT_POSITIVE_INDICATORS: tuple[str, ...] = (
    "correct",
    "accurate",
    "good",
    "clear",
    "appropriate",
    "sufficient",
)


@dataclass(frozen=True)
class SeverityConfig:
    """Canonical keyword/weight table used by the analyzer."""

    keywords: dict[Severity, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_KEYWORDS)
    )
    weights: dict[Severity, int] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    positive_indicators: tuple[str, ...] = DEFAULT_POSITIVE_INDICATORS
    positive_threshold: int = 3
    positive_reduction: int = 20
    short_text_threshold: int = 200
    short_text_reduction: int = 15
    revision_threshold: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SeverityConfig:
        """Build a config from a (partial) mapping; missing entries keep their defaults."""
        keywords = dict(DEFAULT_KEYWORDS)
        for name, words in (data.get("keywords") or {}).items():
            keywords[Severity(name)] = tuple(str(w).lower() for w in words)

        weights = dict(DEFAULT_WEIGHTS)
        for name, weight in (data.get("weights") or {}).items():
            weights[Severity(name)] = int(weight)

        defaults = cls()
        return cls(
            keywords=keywords,
            weights=weights,
            positive_indicators=tuple(
                str(w).lower()
                for w in data.get("positive_indicators", defaults.positive_indicators)
            ),
            positive_threshold=int(data.get("positive_threshold", defaults.positive_threshold)),
            positive_reduction=int(data.get("positive_reduction", defaults.positive_reduction)),
            short_text_threshold=int(
                data.get("short_text_threshold", defaults.short_text_threshold)
            ),
            short_text_reduction=int(
                data.get("short_text_reduction", defaults.short_text_reduction)
            ),
            revision_threshold=int(data.get("revision_threshold", defaults.revision_threshold)),
        )

    @classmethod
    def from_file(cls, path: Path) -> SeverityConfig:
        return cls.from_dict(json.loads(path.read_text()))


@dataclass(frozen=True)
class CritiqueScore:
    """Result of scoring one critique."""

    counts: dict[str, int]
    positive_count: int
    weighted_score: int
    adjustments: tuple[str, ...]
    final_score: int
    severity: Severity
    requires_revision: bool
    threshold: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "positiveCount": self.positive_count,
            "weightedScore": self.weighted_score,
            "adjustments": list(self.adjustments),
            "finalScore": self.final_score,
            "severity": self.severity.value,
            "requiresRevision": self.requires_revision,
            "threshold": self.threshold,
        }


def _compile(phrases: Iterable[str]) -> re.Pattern[str] | None:
    alternatives = sorted({p.lower() for p in phrases if p}, key=len, reverse=True)
    if not alternatives:
        return None
    # Keywords match word prefixes, so "errors" and "incorrectly" count too.
    return re.compile(r"\b(?:" + "|".join(re.escape(p) for p in alternatives) + r")\w*")


class CritiqueSeverityAnalyzer:
    """Scores critique text into a revision decision."""

    def __init__(self, config: SeverityConfig | None = None) -> None:
        self._config = config or SeverityConfig()

    @property
    def config(self) -> SeverityConfig:
        return self._config

    @cached_property
    def _bucket_patterns(self) -> dict[Severity, re.Pattern[str] | None]:
        return {bucket: _compile(self._config.keywords.get(bucket, ())) for bucket in BUCKETS}

    @cached_property
    def _positive_pattern(self) -> re.Pattern[str] | None:
        return _compile(self._config.positive_indicators)

    def analyze(self, critique_text: str | None, threshold: int | None = None) -> CritiqueScore:
        cfg = self._config
        threshold = cfg.revision_threshold if threshold is None else threshold
        text = (critique_text or "").lower()

        counts = {bucket.value: self._count(self._bucket_patterns[bucket], text) for bucket in BUCKETS}
        positive_count = self._count(self._positive_pattern, text)

        weighted = sum(counts[bucket.value] * cfg.weights.get(bucket, 0) for bucket in BUCKETS)

        score = weighted
        adjustments: list[str] = []
        if positive_count >= cfg.positive_threshold:
            score = max(0, score - cfg.positive_reduction)
            adjustments.append(f"positive_indicators:-{cfg.positive_reduction}")
        if len(text) < cfg.short_text_threshold:
            score = max(0, score - cfg.short_text_reduction)
            adjustments.append(f"short_text:-{cfg.short_text_reduction}")

        final_score = min(100, max(0, score))

        return CritiqueScore(
            counts=counts,
            positive_count=positive_count,
            weighted_score=weighted,
            adjustments=tuple(adjustments),
            final_score=final_score,
            severity=self._severity_for(final_score),
            requires_revision=final_score >= threshold,
            threshold=threshold,
        )

    def _count(self, pattern: re.Pattern[str] | None, text: str) -> int:
        if pattern is None or not text:
            return 0
        return len(pattern.findall(text))

    def _severity_for(self, score: int) -> Severity:
        if score >= 25:
            return Severity.CRITICAL
        if score >= 15:
            return Severity.HIGH
        if score >= 5:
            return Severity.MEDIUM
        return Severity.LOW
