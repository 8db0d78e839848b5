"""
SQLite-backed Local Store.

One table per entity collection (``id`` primary key, the entity as a
JSON document, plus its ``sync_state`` for cheap pending lookups) and
one key/value ``meta`` table. Writes that touch several rows, such as a
rekey and its dependent foreign-key rewrites, commit as one transaction.

The store is an explicit instance: create it once at startup and hand
it to the orchestrators.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from ..config import LocalStoreConfig
from ..exceptions import StorageIOError
from ..model import Entity, EntityType, SyncState, entity_from_dict, references_to

logger = logging.getLogger(__name__)

_TABLES = {
    EntityType.ITEM: "items",
    EntityType.OPTION: "options",
    EntityType.SUB_ITEM: "sub_items",
    EntityType.MEASUREMENT: "measurements",
    EntityType.ROOM: "rooms",
    EntityType.STORE: "stores",
}

# Well-known metadata keys
META_LAST_SYNC_AT = "lastSyncAt"
META_LAST_SYNC_SUMMARY = "lastSyncSummary"
META_UNIT_PREFERENCE = "unitPreference"
META_HOME = "home"
META_PLANNER = "planner"


class MetaStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


@dataclass
class MetaLookup:
    """Result of a metadata read.

    Distinguishes a missing key from a stored value that no longer
    parses; storage failures raise ``StorageIOError`` instead.
    """

    key: str
    status: MetaStatus
    value: Any = None
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.status is MetaStatus.FOUND

    def value_or(self, default: Any) -> Any:
        return self.value if self.found else default


@dataclass
class Snapshot:
    """Every collection plus the metadata map, each read in one statement."""

    collections: dict[EntityType, list[Entity]] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    def of(self, entity_type: EntityType) -> list[Entity]:
        return self.collections.get(entity_type, [])

    def pending(self, entity_type: EntityType) -> list[Entity]:
        """Entities that still differ from the remote store."""
        return [e for e in self.of(entity_type) if e.sync_state is not SyncState.CLEAN]


def _encode(entity: Entity) -> tuple[str, str, str]:
    return (entity.id, json.dumps(entity.to_dict()), entity.sync_state.value)


class LocalStore:
    """Keyed persistence per entity type plus a metadata map."""

    def __init__(self, config: LocalStoreConfig):
        self.config = config
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False

    @classmethod
    async def create(cls, config: LocalStoreConfig | None = None) -> LocalStore:
        """Create and initialize a local store."""
        if config is None:
            config = LocalStoreConfig.from_env()

        store = cls(config)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self._initialized:
            return

        db_path = str(self.config.db_path)
        try:
            if db_path != ":memory:":
                Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
                db_path = str(Path(db_path).expanduser())

            # Autocommit; multi-row writes open explicit transactions.
            self.conn = await aiosqlite.connect(db_path, isolation_level=None)

            for table in _TABLES.values():
                await self.conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT NOT NULL PRIMARY KEY,
                        data TEXT NOT NULL,
                        sync_state TEXT NOT NULL
                    )
                """)
                await self.conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_sync_state ON {table} (sync_state)"
                )
            await self.conn.execute("""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT NOT NULL PRIMARY KEY,
                    value TEXT
                )
            """)

            self._initialized = True
            logger.info(f"Local store initialized: {self.config.db_path}")

        except (aiosqlite.Error, OSError) as e:
            raise StorageIOError("initialize", db_path, e) from e

    async def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require(self, operation: str) -> aiosqlite.Connection:
        if self.conn is None:
            raise StorageIOError(operation, cause=RuntimeError("Not initialized"))
        return self.conn

    def _decode(self, entity_type: EntityType, entity_id: str, data: str) -> Entity:
        try:
            return entity_from_dict(entity_type, json.loads(data))
        except (json.JSONDecodeError, TypeError) as e:
            raise StorageIOError(f"decode {entity_type.value} {entity_id}", cause=e) from e

    # =========================================================================
    # Entity Operations
    # =========================================================================

    async def get(self, entity_type: EntityType, entity_id: str) -> Entity | None:
        conn = self._require("get")
        async with conn.execute(
            f"SELECT data FROM {_TABLES[entity_type]} WHERE id = ?", (entity_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._decode(entity_type, entity_id, row[0]) if row else None

    async def put(self, entity: Entity) -> None:
        conn = self._require("put")
        await conn.execute(
            f"INSERT OR REPLACE INTO {_TABLES[entity.entity_type]} (id, data, sync_state) "
            "VALUES (?, ?, ?)",
            _encode(entity),
        )

    async def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        """Physically remove an entity. Returns True if a row was removed."""
        conn = self._require("delete")
        cursor = await conn.execute(
            f"DELETE FROM {_TABLES[entity_type]} WHERE id = ?", (entity_id,)
        )
        return cursor.rowcount > 0

    async def list_all(self, entity_type: EntityType) -> list[Entity]:
        conn = self._require("list_all")
        async with conn.execute(
            f"SELECT id, data FROM {_TABLES[entity_type]} ORDER BY rowid"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._decode(entity_type, row[0], row[1]) for row in rows]

    async def list_pending(self, entity_type: EntityType) -> list[Entity]:
        """Entities whose sync state is not clean."""
        conn = self._require("list_pending")
        async with conn.execute(
            f"SELECT id, data FROM {_TABLES[entity_type]} WHERE sync_state != ? ORDER BY rowid",
            (SyncState.CLEAN.value,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._decode(entity_type, row[0], row[1]) for row in rows]

    async def bulk_put(self, entity_type: EntityType, entities: Iterable[Entity]) -> int:
        """Write many entities of one type in a single transaction."""
        conn = self._require("bulk_put")
        rows = [_encode(e) for e in entities]
        if not rows:
            return 0

        await conn.execute("BEGIN TRANSACTION")
        try:
            await conn.executemany(
                f"INSERT OR REPLACE INTO {_TABLES[entity_type]} (id, data, sync_state) "
                "VALUES (?, ?, ?)",
                rows,
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        return len(rows)

    async def bulk_delete(self, entity_type: EntityType, entity_ids: Iterable[str]) -> int:
        """Physically remove many entities in a single transaction."""
        conn = self._require("bulk_delete")
        ids = [(i,) for i in entity_ids]
        if not ids:
            return 0

        await conn.execute("BEGIN TRANSACTION")
        try:
            await conn.executemany(f"DELETE FROM {_TABLES[entity_type]} WHERE id = ?", ids)
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        return len(ids)

    async def mark_clean(self, entity_type: EntityType, entity_ids: Iterable[str]) -> int:
        """Flip the given entities to clean after the remote accepted them."""
        conn = self._require("mark_clean")
        count = 0
        await conn.execute("BEGIN TRANSACTION")
        try:
            for entity_id in entity_ids:
                async with conn.execute(
                    f"SELECT data FROM {_TABLES[entity_type]} WHERE id = ?", (entity_id,)
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    continue
                entity = self._decode(entity_type, entity_id, row[0])
                await conn.execute(
                    f"UPDATE {_TABLES[entity_type]} SET data = ?, sync_state = ? WHERE id = ?",
                    (
                        json.dumps(entity.replace(sync_state=SyncState.CLEAN).to_dict()),
                        SyncState.CLEAN.value,
                        entity_id,
                    ),
                )
                count += 1
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        return count

    async def rekey(
        self,
        entity_type: EntityType,
        old_id: str,
        remote_id: str,
        keep_id: bool = False,
    ) -> tuple[Entity, int] | None:
        """Promote a local entity to its server-assigned id.

        In one transaction: the entity is rewritten under ``remote_id``
        (or keeps its id when ``keep_id``), gains ``remote_id`` and turns
        clean, the old row disappears, and every foreign key pointing at
        ``old_id`` is rewritten. Dependents keep their sync state.

        Returns:
            The promoted entity and the number of dependents rewritten,
            or None if ``old_id`` is not in the store.
        """
        conn = self._require("rekey")
        table = _TABLES[entity_type]
        new_id = old_id if keep_id else remote_id

        await conn.execute("BEGIN TRANSACTION")
        try:
            async with conn.execute(f"SELECT data FROM {table} WHERE id = ?", (old_id,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                await conn.rollback()
                return None

            current = self._decode(entity_type, old_id, row[0])
            promoted = current.replace(
                id=new_id, remote_id=remote_id, sync_state=SyncState.CLEAN
            )
            if new_id != old_id:
                await conn.execute(f"DELETE FROM {table} WHERE id = ?", (old_id,))
            await conn.execute(
                f"INSERT OR REPLACE INTO {table} (id, data, sync_state) VALUES (?, ?, ?)",
                _encode(promoted),
            )

            rewritten = 0
            if new_id != old_id:
                for fk in references_to(entity_type):
                    owner_table = _TABLES[fk.owner]
                    async with conn.execute(
                        f"SELECT id, data FROM {owner_table} "
                        "WHERE json_extract(data, ?) = ?",
                        (f"$.{fk.wire_key}", old_id),
                    ) as cursor:
                        dependents = await cursor.fetchall()
                    for dep_id, dep_data in dependents:
                        dependent = self._decode(fk.owner, dep_id, dep_data)
                        dependent = dependent.replace(**{fk.attr: new_id})
                        await conn.execute(
                            f"UPDATE {owner_table} SET data = ? WHERE id = ?",
                            (json.dumps(dependent.to_dict()), dep_id),
                        )
                        rewritten += 1

            await conn.commit()
        except Exception:
            await conn.rollback()
            raise

        logger.debug(
            f"Rekeyed {entity_type.value} {old_id} -> {new_id} ({rewritten} dependents)"
        )
        return promoted, rewritten

    async def reset_all(self) -> None:
        """Remove every entity. Metadata is kept."""
        conn = self._require("reset_all")
        await conn.execute("BEGIN TRANSACTION")
        try:
            for table in _TABLES.values():
                await conn.execute(f"DELETE FROM {table}")
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        logger.info("Local store reset")

    async def snapshot(self) -> Snapshot:
        """Read every collection and the metadata map."""
        snap = Snapshot()
        for entity_type in _TABLES:
            snap.collections[entity_type] = await self.list_all(entity_type)
        snap.meta = await self.all_meta()
        return snap

    async def counts(self) -> dict[EntityType, dict[str, int]]:
        """Per-type row counts grouped by sync state."""
        conn = self._require("counts")
        out: dict[EntityType, dict[str, int]] = {}
        for entity_type, table in _TABLES.items():
            async with conn.execute(
                f"SELECT sync_state, COUNT(*) FROM {table} GROUP BY sync_state"
            ) as cursor:
                rows = await cursor.fetchall()
            out[entity_type] = {state: count for state, count in rows}
        return out

    # =========================================================================
    # Metadata
    # =========================================================================

    async def set_meta(self, key: str, value: Any) -> None:
        conn = self._require("set_meta")
        await conn.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )

    async def delete_meta(self, key: str) -> None:
        conn = self._require("delete_meta")
        await conn.execute("DELETE FROM meta WHERE key = ?", (key,))

    async def get_meta(self, key: str) -> MetaLookup:
        conn = self._require("get_meta")
        async with conn.execute("SELECT value FROM meta WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return MetaLookup(key, MetaStatus.NOT_FOUND)
        try:
            return MetaLookup(key, MetaStatus.FOUND, json.loads(row[0]))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Malformed metadata value for {key}: {e}")
            return MetaLookup(key, MetaStatus.MALFORMED, error=str(e))

    async def all_meta(self) -> dict[str, Any]:
        """All well-formed metadata values."""
        conn = self._require("all_meta")
        async with conn.execute("SELECT key FROM meta ORDER BY key") as cursor:
            keys = [row[0] for row in await cursor.fetchall()]
        out: dict[str, Any] = {}
        for key in keys:
            lookup = await self.get_meta(key)
            if lookup.found:
                out[key] = lookup.value
        return out
