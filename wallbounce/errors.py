"""Error types and helpers for the wall-bounce engine."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .schemas import CollaborationResult


class WallBounceError(RuntimeError):
    """Base class for all engine errors."""


class ProviderError(WallBounceError):
    """Raised when a model invocation fails (network, auth, quota)."""

    def __init__(self, message: str, *, model: str | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.model = model
        self.retryable = retryable


class InvocationTimeoutError(ProviderError):
    """Raised when a single invocation exceeds its time budget."""

    def __init__(self, model: str, timeout: float) -> None:
        super().__init__(f"{model} timed out after {timeout:g}s", model=model)
        self.timeout = timeout


class AllModelsFailedError(ProviderError):
    """Raised when no candidate model produced a usable proposal."""

    def __init__(self, result: CollaborationResult) -> None:
        attempted = ", ".join(result.metadata.models_attempted) or "(none)"
        super().__init__(f"All candidate models failed: {attempted}", retryable=False)
        self.result = result


class VersionConflictError(WallBounceError):
    """Raised when a conditional write is rejected because of a stale version."""

    def __init__(
        self,
        key: str,
        *,
        expected_version: int | None,
        current_version: int | None,
        committed: Any = None,
    ) -> None:
        super().__init__(
            f"Version conflict on {key}: expected {expected_version}, found {current_version}"
        )
        self.key = key
        self.expected_version = expected_version
        self.current_version = current_version
        # Last committed state, attached once retries are exhausted.
        self.committed = committed


class ValidationError(WallBounceError, ValueError):
    """Raised for malformed collaboration requests."""

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class SessionNotFoundError(WallBounceError, LookupError):
    """Raised when a session does not exist (or has expired)."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SchemaNotInitializedError(WallBounceError):
    """Raised when the database schema/migrations have not been applied."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    if missing_table_name(exc):
        return True

    # Fallback for drivers that don't format errors consistently.
    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
        if "does not exist" in message and "relation" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""

    lines: list[str] = [
        f"State store schema is not initialized{table_hint}.",
        "Run: `alembic upgrade head`",
        "Or for local development: `wallbounce db init`",
    ]
    return "\n".join(lines)
