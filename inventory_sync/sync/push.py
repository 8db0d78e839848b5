"""
Push Orchestrator.

Turns pending local entities into remote creates, updates and deletes:

- Types are pushed parents first (rooms, stores, items, then options,
  sub-items and measurements); deletes run last, children first.
- Each group is sent as one batched call. If the batch is rejected, the
  records from the failing chunk onward are retried one at a time and
  each failure becomes a ``PushError`` instead of aborting the cycle.
- An update rejected because the remote row no longer exists is
  re-sent as a create.
- Every create rekeys the local entity (and its dependents) to the
  server id in one store transaction; a redirect map lets later groups
  of the same cycle resolve the new ids.
- Records whose parent has no remote id yet are skipped and stay dirty.

Transport failures abort the cycle; whatever was rekeyed before stays
clean and the rest is retried on the next sync.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..config import SyncConfig
from ..exceptions import RemoteApiError
from ..ids import is_remote_id, new_id
from ..local import LocalStore, Snapshot
from ..logging_utils import SyncLoggerAdapter, get_sync_logger
from ..model import Entity, EntityType, parent_keys
from ..remote import AirtableClient, RowEncoder

logger = get_sync_logger("push")

# Parents before children.
PUSH_ORDER = (
    EntityType.ROOM,
    EntityType.STORE,
    EntityType.ITEM,
    EntityType.OPTION,
    EntityType.SUB_ITEM,
    EntityType.MEASUREMENT,
)

DELETE_ORDER = tuple(reversed(PUSH_ORDER))

# Keep their natural id when the remote assigns one.
NATURAL_KEYED = frozenset({EntityType.ROOM})


class PushMode(Enum):
    COMMIT = "commit"
    RESET = "reset"


class PushAction(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class PushError:
    """One record the remote refused."""

    entity: EntityType
    action: PushAction
    message: str
    id: str | None = None
    title: str | None = None
    index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "entity": self.entity.collection,
            "action": self.action.value,
            "message": self.message,
        }
        if self.id:
            out["id"] = self.id
        if self.title:
            out["title"] = self.title
        if self.index is not None:
            out["index"] = self.index
        return out

    def describe(self) -> str:
        subject = self.title or self.id or self.entity.value
        return f"{self.action.value} {self.entity.value} {subject}: {self.message}"


@dataclass
class TypeCounts:
    created: int = 0
    updated: int = 0
    deleted: int = 0


@dataclass
class PushRequest:
    """Entities to push, by type."""

    entities: dict[EntityType, list[Entity]] = field(default_factory=dict)
    mode: PushMode = PushMode.COMMIT

    def of(self, entity_type: EntityType) -> list[Entity]:
        return self.entities.get(entity_type, [])

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, mode: PushMode = PushMode.COMMIT) -> PushRequest:
        """Pending entities for a commit; everything for a reset."""
        if mode is PushMode.RESET:
            entities = {t: list(snapshot.of(t)) for t in PUSH_ORDER}
        else:
            entities = {t: snapshot.pending(t) for t in PUSH_ORDER}
        return cls(entities=entities, mode=mode)


@dataclass
class PushResult:
    """Outcome of a push. Per-record failures are data, not exceptions."""

    ok: bool = True
    created: dict[EntityType, dict[str, str]] = field(
        default_factory=lambda: {t: {} for t in PUSH_ORDER}
    )
    counts: dict[EntityType, TypeCounts] = field(
        default_factory=lambda: {t: TypeCounts() for t in PUSH_ORDER}
    )
    errors: list[PushError] = field(default_factory=list)
    skipped: dict[EntityType, list[str]] = field(default_factory=dict)
    message: str = ""

    def counts_dict(self) -> dict[str, int]:
        """Flat ``createdItems``/``updatedOptions``/... counters."""
        out: dict[str, int] = {}
        for entity_type, counts in self.counts.items():
            suffix = entity_type.collection[:1].upper() + entity_type.collection[1:]
            out[f"created{suffix}"] = counts.created
            out[f"updated{suffix}"] = counts.updated
            out[f"deleted{suffix}"] = counts.deleted
        return out

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": self.ok,
            "created": {t.collection: dict(m) for t, m in self.created.items()},
            "counts": self.counts_dict(),
            "message": self.message,
        }
        if self.errors:
            out["errors"] = [e.to_dict() for e in self.errors]
        return out


class PushOrchestrator:
    """Pushes local divergences to the remote table."""

    def __init__(self, store: LocalStore, client: AirtableClient, config: SyncConfig):
        self.store = store
        self.client = client
        self.config = config

    async def push(
        self,
        request: PushRequest | None = None,
        mode: PushMode = PushMode.COMMIT,
    ) -> PushResult:
        """Run one push cycle.

        Args:
            request: Entities to push (defaults to the store's pending entities)
            mode: ``RESET`` wipes the remote view and recreates everything

        Returns:
            PushResult with created id maps, counts and per-record errors

        Raises:
            TransportError: If the remote cannot be reached; the cycle stops
            RemoteApiError: If the reset wipe itself is rejected
        """
        snapshot = await self.store.snapshot()
        if request is None:
            request = PushRequest.from_snapshot(snapshot, mode)
        cycle = _PushCycle(self, request, snapshot)
        return await cycle.run()


class _PushCycle:
    """State of one push: redirect map, encoder and accumulated result."""

    def __init__(self, orchestrator: PushOrchestrator, request: PushRequest, snapshot: Snapshot):
        self.store = orchestrator.store
        self.client = orchestrator.client
        self.config = orchestrator.config
        self.request = request
        self.reset = request.mode is PushMode.RESET
        self.result = PushResult()
        self.cycle_id = new_id("push")[:13]
        self.log = SyncLoggerAdapter(
            logger, {"cycle_id": self.cycle_id, "mode": request.mode.value}
        )
        self.encoder = RowEncoder(self.config, datetime.now(UTC).isoformat())

        # local id -> remote id, filled as creates succeed
        self.redirect: dict[EntityType, dict[str, str]] = {t: {} for t in PUSH_ORDER}
        # ids of entities that already had a remote id when the cycle began
        self.known_remote: dict[EntityType, dict[str, str]] = {t: {} for t in PUSH_ORDER}
        if not self.reset:
            for entity_type in PUSH_ORDER:
                for entity in snapshot.of(entity_type):
                    if entity.remote_id:
                        self.known_remote[entity_type][entity.id] = entity.remote_id

        self.pending_deletes: dict[EntityType, list[Entity]] = {t: [] for t in PUSH_ORDER}
        self.local_purges: dict[EntityType, list[str]] = {t: [] for t in PUSH_ORDER}

    # -------------------------------------------------------------------------
    # Id resolution
    # -------------------------------------------------------------------------

    def resolve(self, entity_type: EntityType, value: str | None) -> str | None:
        """Remote id for a reference, or None if the remote cannot know it yet."""
        if not value:
            return None
        if value in self.redirect[entity_type]:
            return self.redirect[entity_type][value]
        if self.reset:
            return None
        if value in self.known_remote[entity_type]:
            return self.known_remote[entity_type][value]
        return value if is_remote_id(value) else None

    def _remote_id_of(self, entity: Entity) -> str | None:
        if self.reset:
            return None
        if is_remote_id(entity.remote_id):
            return entity.remote_id
        return entity.id if is_remote_id(entity.id) else None

    def _unresolved_parent(self, entity: Entity) -> str | None:
        for fk in parent_keys(entity.entity_type):
            value = getattr(entity, fk.attr)
            if self.resolve(fk.target, value) is None:
                return value or "(none)"
        return None

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    async def run(self) -> PushResult:
        total = sum(len(self.request.of(t)) for t in PUSH_ORDER)
        self.log.info(f"Push started: {total} entities, mode={self.request.mode.value}")

        if self.reset:
            await self._wipe_remote()

        for entity_type in PUSH_ORDER:
            await self._push_type(entity_type)

        for entity_type in DELETE_ORDER:
            await self._delete_type(entity_type)

        for entity_type, ids in self.local_purges.items():
            if ids:
                await self.store.bulk_delete(entity_type, ids)
                self.log.debug(f"Purged {len(ids)} local {entity_type.value} tombstones")

        r = self.result
        created = sum(c.created for c in r.counts.values())
        updated = sum(c.updated for c in r.counts.values())
        deleted = sum(c.deleted for c in r.counts.values())
        if r.errors:
            r.message = f"Sync push completed with {len(r.errors)} errors"
        else:
            r.message = "Sync push complete"
        self.log.info(
            f"Push finished: {created} created, {updated} updated, {deleted} deleted, "
            f"{len(r.errors)} errors"
        )
        return r

    async def _wipe_remote(self) -> None:
        rows = await self.client.list_all(view=self.config.view)
        ids = [row["id"] for row in rows if row.get("id")]
        if ids:
            await self.client.delete_many(ids)
        self.log.info(f"Reset: deleted {len(ids)} remote rows")

    async def _push_type(self, entity_type: EntityType) -> None:
        creates: list[Entity] = []
        updates: list[tuple[Entity, str]] = []

        for entity in self.request.of(entity_type):
            if not entity.id:
                continue
            remote_id = self._remote_id_of(entity)
            if entity.is_deleted:
                if remote_id:
                    self.pending_deletes[entity_type].append(entity)
                else:
                    self.local_purges[entity_type].append(entity.id)
                continue
            missing = self._unresolved_parent(entity)
            if missing is not None:
                self.result.skipped.setdefault(entity_type, []).append(entity.id)
                self.log.info(
                    f"Skipping {entity_type.value} {entity.id}: parent {missing} has no remote id"
                )
                continue
            if remote_id:
                updates.append((entity, remote_id))
            else:
                creates.append(entity)

        if creates:
            await self._create(entity_type, creates)
        if updates:
            await self._update(entity_type, updates)

    # -------------------------------------------------------------------------
    # Creates
    # -------------------------------------------------------------------------

    async def _create(
        self,
        entity_type: EntityType,
        entities: Sequence[Entity],
        action: PushAction = PushAction.CREATE,
    ) -> None:
        payloads = [self.encoder.encode(e, self.resolve) for e in entities]
        # create_many returns exactly one row per payload, in order.
        created: list[tuple[Entity, dict[str, Any]]] = []
        try:
            rows = await self.client.create_many(payloads)
            created.extend(zip(entities, rows))
        except RemoteApiError as e:
            created.extend(zip(entities[: e.failed_offset], e.completed))
            self.log.warning(
                f"Batch create of {len(entities)} {entity_type.value} failed at "
                f"{e.failed_offset}, retrying per record: {e.message}"
            )
            for index in range(e.failed_offset, len(entities)):
                entity = entities[index]
                try:
                    rows = await self.client.create_many([payloads[index]])
                except RemoteApiError as err:
                    self._fail(entity_type, action, entity, err.message, index)
                    continue
                created.extend(zip([entity], rows))

        for entity, row in created:
            remote_id = row.get("id")
            if not is_remote_id(remote_id):
                self._fail(entity_type, action, entity, "Remote returned no record id")
                continue
            await self._promote(entity_type, entity, remote_id)

    async def _promote(self, entity_type: EntityType, entity: Entity, remote_id: str) -> None:
        promoted = await self.store.rekey(
            entity_type, entity.id, remote_id, keep_id=entity_type in NATURAL_KEYED
        )
        if promoted is None:
            self.log.warning(f"{entity_type.value} {entity.id} vanished before rekey")
        self.redirect[entity_type][entity.id] = remote_id
        self.result.created[entity_type][entity.id] = remote_id
        self.result.counts[entity_type].created += 1

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    async def _update(self, entity_type: EntityType, updates: Sequence[tuple[Entity, str]]) -> None:
        records = [
            {"id": remote_id, "fields": self.encoder.encode(entity, self.resolve)}
            for entity, remote_id in updates
        ]
        accepted: list[Entity] = []
        recreate: list[Entity] = []
        try:
            await self.client.update_many(records)
            accepted.extend(entity for entity, _ in updates)
        except RemoteApiError as e:
            accepted.extend(entity for entity, _ in updates[: e.failed_offset])
            self.log.warning(
                f"Batch update of {len(updates)} {entity_type.value} failed at "
                f"{e.failed_offset}, retrying per record: {e.message}"
            )
            for index in range(e.failed_offset, len(updates)):
                entity = updates[index][0]
                try:
                    await self.client.update_many([records[index]])
                except RemoteApiError as err:
                    if err.is_not_found():
                        self.log.info(
                            f"{entity_type.value} {records[index]['id']} missing remotely, "
                            "recreating"
                        )
                        recreate.append(entity)
                    else:
                        self._fail(entity_type, PushAction.UPDATE, entity, err.message, index)
                    continue
                accepted.append(entity)

        if accepted:
            await self.store.mark_clean(entity_type, [e.id for e in accepted])
            self.result.counts[entity_type].updated += len(accepted)

        if recreate:
            # The stale remote id must not resolve while the payload is rebuilt.
            for entity in recreate:
                self.known_remote[entity_type].pop(entity.id, None)
            await self._create(entity_type, recreate)

    # -------------------------------------------------------------------------
    # Deletes
    # -------------------------------------------------------------------------

    async def _delete_type(self, entity_type: EntityType) -> None:
        entities = self.pending_deletes[entity_type]
        if not entities:
            return
        ids = [self._remote_id_of(e) or "" for e in entities]
        acknowledged: list[Entity] = []
        try:
            await self.client.delete_many(ids)
            acknowledged.extend(entities)
        except RemoteApiError as e:
            acknowledged.extend(entities[: e.failed_offset])
            self.log.warning(
                f"Batch delete of {len(ids)} {entity_type.value} failed at "
                f"{e.failed_offset}, retrying per record: {e.message}"
            )
            for index in range(e.failed_offset, len(entities)):
                try:
                    await self.client.delete_many([ids[index]])
                except RemoteApiError as err:
                    if err.is_not_found():
                        acknowledged.append(entities[index])
                    else:
                        self._fail(
                            entity_type, PushAction.DELETE, entities[index], err.message, index
                        )
                    continue
                acknowledged.append(entities[index])

        if acknowledged:
            await self.store.bulk_delete(entity_type, [e.id for e in acknowledged])
            self.result.counts[entity_type].deleted += len(acknowledged)

    # -------------------------------------------------------------------------

    def _fail(
        self,
        entity_type: EntityType,
        action: PushAction,
        entity: Entity,
        message: str,
        index: int | None = None,
    ) -> None:
        error = PushError(
            entity=entity_type,
            action=action,
            message=message,
            id=entity.id,
            title=entity.label,
            index=index,
        )
        self.result.errors.append(error)
        self.log.bind(entity=entity_type.collection, action=action.value).warning(
            f"Push error: {error.describe()}"
        )

