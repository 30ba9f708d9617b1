"""Prompt builders for the propose, critique and revise phases."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .schemas import CollaborationOptions

_VERBOSITY_HINTS = {
    "low": "Answer concisely.",
    "medium": "Answer with a moderate level of detail.",
    "high": "Answer thoroughly, covering details and trade-offs.",
}

_EFFORT_HINTS = {
    "minimal": "Give the most direct answer.",
    "low": "Keep reasoning brief.",
    "medium": "Reason step by step where it helps.",
    "high": "Reason carefully and check your work before answering.",
}


def format_exchanges(exchanges: Sequence[dict[str, Any]], *, max_chars: int = 500) -> str:
    """Render prior query/response pairs for inclusion in a prompt."""
    if not exchanges:
        return "(none)"
    lines: list[str] = []
    for exchange in exchanges:
        query = str(exchange.get("query", ""))
        response = str(exchange.get("response", ""))
        if len(response) > max_chars:
            response = response[:max_chars] + "..."
        lines.append(f"  User: {query}\n  Assistant: {response}")
    return "\n".join(lines)


def format_working_context(context: dict[str, Any]) -> str:
    if not context:
        return "(none)"
    return "\n".join(f"  {key}: {value}" for key, value in sorted(context.items()))


def build_propose_prompt(
    query: str, options: CollaborationOptions, *, task_type: str = "general", context: str = ""
) -> str:
    parts: list[str] = []
    if context:
        parts.append(f"=== SESSION CONTEXT ===\n{context}\n")
    parts.append(f"Task type: {task_type}")
    parts.append(_VERBOSITY_HINTS.get(options.verbosity, ""))
    parts.append(_EFFORT_HINTS.get(options.effort, ""))
    if options.reasoning:
        parts.append(f"Reasoning guidance: {options.reasoning}")
    parts.append(f"\nQuestion: {query}")
    return "\n".join(p for p in parts if p)


def build_critique_prompt(query: str, proposal: str) -> str:
    return (
        "Please provide a detailed critique of the following response. Focus on "
        "correctness, completeness, clarity, and potential improvements. Use specific "
        'keywords like "incorrect", "missing", "improve", "consider" to indicate severity.\n\n'
        f"Original question: {query}\n\n"
        f"Response to critique: {proposal}\n\n"
        "Provide your critique:"
    )


def build_revise_prompt(query: str, proposal: str, critique: str) -> str:
    return (
        "Based on the following critique, please provide an improved response:\n\n"
        f"Original question: {query}\n"
        f"Initial response: {proposal}\n"
        f"Critique: {critique}\n\n"
        "Provide an improved, comprehensive response:"
    )
