"""
Wall-bounce collaboration engine

Drives several LLM backends through propose -> critique -> (gated) revise
rounds and keeps per-session context in a versioned, optimistically
concurrent state store.
"""

__version__ = "0.1.0"

# Configuration
from wallbounce.config import Settings

# Errors
from wallbounce.errors import (
    AllModelsFailedError,
    InvocationTimeoutError,
    ProviderError,
    SchemaNotInitializedError,
    SessionNotFoundError,
    ValidationError,
    VersionConflictError,
    WallBounceError,
)

# Model invocation
from wallbounce.invoker import (
    InvocationOptions,
    InvocationResult,
    ModelInvoker,
    ScriptedModelInvoker,
)

# Orchestration
from wallbounce.orchestrator import WallBounceOrchestrator

# Request/response contract
from wallbounce.schemas import (
    CollaborationOptions,
    CollaborationRequest,
    CollaborationResult,
    CollaborationRound,
    Phase,
    TokenUsage,
)

# Service
from wallbounce.service import CollaborationService, create_service

# Sessions
from wallbounce.session import SessionManager, SessionRecord

# Critique scoring
from wallbounce.severity import CritiqueScore, CritiqueSeverityAnalyzer, Severity, SeverityConfig

# State store
from wallbounce.store import InMemoryStateStore, StoredEntry, VersionedStateStore

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    # Errors
    "WallBounceError",
    "ProviderError",
    "InvocationTimeoutError",
    "AllModelsFailedError",
    "VersionConflictError",
    "ValidationError",
    "SessionNotFoundError",
    "SchemaNotInitializedError",
    # Invocation
    "ModelInvoker",
    "InvocationOptions",
    "InvocationResult",
    "ScriptedModelInvoker",
    # Orchestration
    "WallBounceOrchestrator",
    "CollaborationService",
    "create_service",
    # Contract
    "CollaborationRequest",
    "CollaborationOptions",
    "CollaborationResult",
    "CollaborationRound",
    "Phase",
    "TokenUsage",
    # Sessions
    "SessionManager",
    "SessionRecord",
    # Severity
    "CritiqueSeverityAnalyzer",
    "CritiqueScore",
    "Severity",
    "SeverityConfig",
    # Store
    "VersionedStateStore",
    "InMemoryStateStore",
    "StoredEntry",
]
