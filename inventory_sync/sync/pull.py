"""
Pull Orchestrator.

Fetches the whole remote table, decodes each row through the row codec
and writes every entity into the local store as clean, overwriting the
local copy with the same id. Local entities the remote does not return
are left alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..config import SyncConfig
from ..exceptions import RecordDecodeError
from ..ids import now_ms
from ..local import META_LAST_SYNC_AT, META_LAST_SYNC_SUMMARY, LocalStore
from ..logging_utils import get_sync_logger
from ..model import Entity, EntityType, Room, SyncState
from ..remote import AirtableClient, NoteRow, RawRow, RecordType, decode_row
from ..remote.records import record_type_of

logger = get_sync_logger("pull")

PULL_ORDER = (
    EntityType.ROOM,
    EntityType.STORE,
    EntityType.ITEM,
    EntityType.OPTION,
    EntityType.SUB_ITEM,
    EntityType.MEASUREMENT,
)

# A view returning items without these is assumed to filter them out.
_VIEW_REQUIRED_TYPES = (RecordType.OPTION, RecordType.NOTE, RecordType.MEASUREMENT)


@dataclass
class PullResult:
    """Outcome of a pull."""

    ok: bool = True
    entities: dict[EntityType, list[Entity]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    rows_fetched: int = 0
    synthesized_rooms: list[str] = field(default_factory=list)
    used_view_fallback: bool = False
    last_sync_at: int | None = None

    @property
    def counts(self) -> dict[EntityType, int]:
        return {t: len(self.entities.get(t, [])) for t in PULL_ORDER}

    def counts_dict(self) -> dict[str, int]:
        return {t.collection: n for t, n in self.counts.items()}

    def bundle(self) -> dict[str, Any]:
        """The pulled snapshot in bundle shape."""
        return {
            t.collection: [e.to_dict() for e in self.entities.get(t, [])] for t in PULL_ORDER
        }

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok, "bundle": self.bundle(), "counts": self.counts_dict()}
        if self.errors:
            out["errors"] = list(self.errors)
        return out


class PullOrchestrator:
    """Merges the remote snapshot into the local store."""

    def __init__(self, store: LocalStore, client: AirtableClient, config: SyncConfig):
        self.store = store
        self.client = client
        self.config = config

    async def fetch_rows(self, result: PullResult | None = None) -> list[RawRow]:
        """List the table, dropping the view if it hides child rows."""
        view = self.config.view
        rows = await self.client.list_all(view=view)
        if not view:
            return rows

        present = {record_type_of(row) for row in rows}
        if RecordType.ITEM.value in present and any(
            t.value not in present for t in _VIEW_REQUIRED_TYPES
        ):
            logger.info(f"View {view} hides child rows, refetching without it")
            rows = await self.client.list_all()
            if result is not None:
                result.used_view_fallback = True
        return rows

    async def pull(self) -> PullResult:
        """Run one pull.

        Returns:
            PullResult with the written entities and any undecodable rows

        Raises:
            TransportError: If the remote cannot be reached
            RemoteApiError: If the remote rejects the list call
        """
        result = PullResult()
        rows = await self.fetch_rows(result)
        result.rows_fetched = len(rows)

        entities: dict[EntityType, list[Entity]] = {t: [] for t in PULL_ORDER}
        rooms: dict[str, Entity] = {}
        for raw in rows:
            try:
                row = decode_row(raw)
            except RecordDecodeError as e:
                result.errors.append(e.message)
                logger.warning(f"Skipping remote row: {e.message}")
                continue
            entity = row.to_entity(self.config)
            if isinstance(row, NoteRow):
                rooms[entity.id] = entity
            else:
                entities[row.record_type.entity_type].append(entity)

        # Rooms referenced by rows but without a notes row of their own.
        referenced = [
            e.room for t in (EntityType.ITEM, EntityType.MEASUREMENT) for e in entities[t]
        ]
        for room_id in dict.fromkeys(referenced):
            if room_id in rooms:
                continue
            if await self.store.get(EntityType.ROOM, room_id) is not None:
                continue
            rooms[room_id] = Room(id=room_id, name=room_id, sync_state=SyncState.CLEAN)
            result.synthesized_rooms.append(room_id)
        entities[EntityType.ROOM] = list(rooms.values())

        for entity_type in PULL_ORDER:
            if entities[entity_type]:
                await self.store.bulk_put(entity_type, entities[entity_type])
        result.entities = entities

        result.last_sync_at = now_ms()
        await self.store.set_meta(META_LAST_SYNC_AT, result.last_sync_at)
        await self.store.set_meta(META_LAST_SYNC_SUMMARY, {"pull": result.counts_dict()})

        summary = ", ".join(f"{n} {c}" for c, n in result.counts_dict().items() if n)
        logger.info(
            f"Pull finished: {result.rows_fetched} rows ({summary or 'empty'}), "
            f"{len(result.errors)} undecodable"
        )
        return result
