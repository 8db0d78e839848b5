"""
Synchronization: push and pull orchestrators and the engine that runs
them as one cycle.
"""

from .engine import SyncEngine, SyncResult, SyncState, SyncStatus, format_push_errors
from .pull import PullOrchestrator, PullResult
from .push import (
    PushAction,
    PushError,
    PushMode,
    PushOrchestrator,
    PushRequest,
    PushResult,
    TypeCounts,
)

__all__ = [
    # Engine
    "SyncEngine",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "format_push_errors",
    # Push
    "PushOrchestrator",
    "PushRequest",
    "PushResult",
    "PushError",
    "PushAction",
    "PushMode",
    "TypeCounts",
    # Pull
    "PullOrchestrator",
    "PullResult",
]
