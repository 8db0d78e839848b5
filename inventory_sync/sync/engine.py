"""
Synchronization engine.

Runs one sync cycle against the remote table:
- Push: pending local changes -> remote (creates, updates, deletes)
- Pull: remote snapshot -> local store, everything clean

Push always completes, including its per-record fallback passes,
before pull begins. Callers must not start a second cycle while one is
in flight; the engine reports such a call as failed instead of racing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..config import SyncConfig
from ..exceptions import RemoteApiError, StorageIOError, TransportError
from ..local import (
    META_LAST_SYNC_AT,
    META_LAST_SYNC_SUMMARY,
    ChangeNotifier,
    LocalStore,
)
from ..logging_utils import get_sync_logger
from ..model import SyncState as EntitySyncState
from ..remote import AirtableClient
from .pull import PullOrchestrator, PullResult
from .push import PUSH_ORDER, PushError, PushMode, PushOrchestrator, PushResult

logger = get_sync_logger("engine")

_REMOTE_PREFIX = re.compile(r"^Remote API error \d+:\s*", re.IGNORECASE)


class SyncState(Enum):
    """Current state of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


def _format_counts(counts: dict[str, int]) -> str:
    entries = [f"{k} {v}" for k, v in counts.items() if v > 0]
    return ", ".join(entries) if entries else "none"


def format_push_errors(errors: list[PushError]) -> str | None:
    """First push error plus a ``(+N more)`` suffix."""
    if not errors:
        return None
    first = errors[0]
    message = _REMOTE_PREFIX.sub("", first.message) or "Unknown error"
    label = f"{first.entity.collection} {first.action.value}"
    if first.title:
        label += f" ({first.title})"
    extra = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
    return f"{label}: {message}{extra}"


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool
    push: PushResult | None = None
    pull: PullResult | None = None
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def summary(self) -> dict[str, Any]:
        """Counts recorded as ``lastSyncSummary``."""
        return {
            "push": self.push.counts_dict() if self.push else {},
            "pull": self.pull.counts_dict() if self.pull else {},
            "errors": [e.to_dict() for e in self.push.errors] if self.push else [],
        }

    def summary_message(self) -> str:
        """One line for the user: counts, then the first problem."""
        if not self.success and not self.push:
            return f"Sync failed: {self.errors[0] if self.errors else 'unknown error'}"

        parts = []
        if self.push:
            parts.append(f"Pushed: {_format_counts(self.push.counts_dict())}")
        if self.pull:
            parts.append(f"Pulled: {_format_counts(self.pull.counts_dict())}")
        message = ". ".join(parts)

        warning = format_push_errors(self.push.errors) if self.push else None
        if warning:
            message += f". Warning: {warning}"
        if not self.success and self.errors:
            message += f". Sync failed: {self.errors[0]}"
        return message


@dataclass
class SyncStatus:
    """Snapshot of local sync bookkeeping."""

    state: SyncState
    pending: dict[str, int]
    last_sync_at: int | None
    last_summary: dict[str, Any] | None

    @property
    def is_synced(self) -> bool:
        return self.state is not SyncState.ERROR and not any(self.pending.values())


class SyncEngine:
    """Push-then-pull sync between the local store and the remote table.

    Handles:
    - Configuration checks before any work
    - Strictly sequential push and pull
    - Recording lastSyncAt / lastSyncSummary
    - Broadcasting a change signal after the store was rewritten
    """

    def __init__(
        self,
        store: LocalStore,
        config: SyncConfig,
        client: AirtableClient | None = None,
        notifier: ChangeNotifier | None = None,
    ):
        """Initialize the sync engine.

        Args:
            store: Local store instance
            config: Remote table configuration
            client: Optional AirtableClient (one is created per cycle otherwise)
            notifier: Optional change notifier fired after a cycle
        """
        self.store = store
        self.config = config
        self.client = client
        self.notifier = notifier

        self._state = SyncState.IDLE
        self._last_result: SyncResult | None = None

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    async def get_status(self) -> SyncStatus:
        """Pending counts per collection and the last recorded sync."""
        counts = await self.store.counts()
        pending = {}
        for entity_type in PUSH_ORDER:
            by_state = counts.get(entity_type, {})
            pending[entity_type.collection] = sum(
                n for state, n in by_state.items() if state != EntitySyncState.CLEAN.value
            )
        last_at = await self.store.get_meta(META_LAST_SYNC_AT)
        last_summary = await self.store.get_meta(META_LAST_SYNC_SUMMARY)
        return SyncStatus(
            state=self._state,
            pending=pending,
            last_sync_at=last_at.value_or(None),
            last_summary=last_summary.value_or(None),
        )

    async def sync_now(self, mode: PushMode = PushMode.COMMIT) -> SyncResult:
        """Trigger an immediate sync cycle.

        Args:
            mode: ``COMMIT`` pushes pending changes; ``RESET`` rebuilds the remote

        Returns:
            Result of the sync operation

        Raises:
            ConfigurationError: If a credential or identifier is missing
        """
        self.config.validate()

        if self._state == SyncState.SYNCING:
            return SyncResult(success=False, errors=["Sync already in progress"])

        client = self.client or AirtableClient(self.config)
        self._state = SyncState.SYNCING
        start_time = datetime.now(UTC)
        push_result: PushResult | None = None

        try:
            push_result = await PushOrchestrator(self.store, client, self.config).push(mode=mode)
            pull_result = await PullOrchestrator(self.store, client, self.config).pull()

            result = SyncResult(
                success=True,
                push=push_result,
                pull=pull_result,
                errors=[e.describe() for e in push_result.errors] + pull_result.errors,
            )
            await self.store.set_meta(META_LAST_SYNC_SUMMARY, result.summary())
            self._state = SyncState.IDLE

        except (TransportError, RemoteApiError, StorageIOError) as e:
            self._state = SyncState.ERROR
            logger.error(f"Sync cycle aborted: {e.message}")
            result = SyncResult(success=False, push=push_result, errors=[e.message])

        finally:
            if self._state is SyncState.SYNCING:
                self._state = SyncState.ERROR
            if self.client is None:
                await client.close()

        result.duration_ms = int((datetime.now(UTC) - start_time).total_seconds() * 1000)
        self._last_result = result

        if self.notifier is not None:
            await self.notifier.notify("sync")

        logger.info(f"Sync finished in {result.duration_ms}ms: {result.summary_message()}")
        return result
