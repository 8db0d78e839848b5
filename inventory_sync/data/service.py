"""
Inventory data service.

The write path used by the UI and by imports. Every mutation marks the
touched entities dirty (or deleted), stamps provenance and fires the
change notification so views re-read the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..diff import diff_entity
from ..exceptions import DuplicateNameError, EntityNotFoundError, InventorySyncError
from ..ids import new_id, now_ms
from ..local import (
    META_HOME,
    META_LAST_SYNC_AT,
    META_LAST_SYNC_SUMMARY,
    META_PLANNER,
    META_UNIT_PREFERENCE,
    ChangeNotifier,
    LocalStore,
)
from ..model import (
    FOREIGN_KEYS,
    Actor,
    Entity,
    EntityType,
    Room,
    SyncState,
    entity_from_dict,
    normalize_store_name,
    store_key,
)
from ..provenance import (
    for_changed_import,
    for_new_import,
    human_created,
    mark_needs_review,
    mark_verified,
    needs_attention,
    overlay_provenance,
    touch_for_human_edit,
)
from .bundle import (
    BUNDLE_ORDER,
    Bundle,
    export_bundle,
    normalize_bundle,
    read_bundle_file,
    write_bundle_file,
)

logger = logging.getLogger(__name__)

UNIT_PREFERENCES = ("in", "cm")
DEFAULT_UNIT_PREFERENCE = "in"

# Fields a caller may never overwrite through update().
_PROTECTED_KEYS = ("id", "remoteId", "syncState", "createdAt", "updatedAt", "provenance")

# References that are dropped, not cascaded, when their target is deleted.
OPTIONAL_REFERENCES = tuple(fk for fk in FOREIGN_KEYS if not fk.parent)


class ImportMode(Enum):
    """How an import treats the existing local data."""

    MERGE = "merge"
    REPLACE = "replace"


@dataclass
class ImportSummary:
    """What an import did, per collection."""

    mode: ImportMode
    actor: Actor
    session_id: str
    created: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    unchanged: dict[str, int] = field(default_factory=dict)

    def count(self, outcome: str, entity_type: EntityType) -> None:
        bucket = getattr(self, outcome)
        bucket[entity_type.collection] = bucket.get(entity_type.collection, 0) + 1

    @property
    def total_changed(self) -> int:
        return sum(self.created.values()) + sum(self.updated.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "actor": self.actor.value,
            "sessionId": self.session_id,
            "created": dict(self.created),
            "updated": dict(self.updated),
            "unchanged": dict(self.unchanged),
        }


def _detect_ai(bundle: Bundle) -> bool:
    if bundle.export_meta and bundle.export_meta.exported_by is Actor.AI:
        return True
    for entity in bundle.all_entities():
        prov = entity.provenance
        if prov.created_by is Actor.AI or prov.last_edited_by is Actor.AI:
            return True
    return False


class InventoryService:
    """Local CRUD, review actions and bundle import/export."""

    def __init__(self, store: LocalStore, notifier: ChangeNotifier | None = None):
        self.store = store
        self.notifier = notifier

    async def _changed(self, reason: str) -> None:
        if self.notifier is not None:
            await self.notifier.notify(reason)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, entity_type: EntityType, entity_id: str) -> Entity:
        """Fetch a live entity.

        Raises:
            EntityNotFoundError: If the id is unknown or tombstoned
        """
        entity = await self.store.get(entity_type, entity_id)
        if entity is None or entity.is_deleted:
            raise EntityNotFoundError(entity_type.value, entity_id)
        return entity

    async def list_entities(
        self, entity_type: EntityType, include_deleted: bool = False
    ) -> list[Entity]:
        entities = await self.store.list_all(entity_type)
        if include_deleted:
            return entities
        return [e for e in entities if not e.is_deleted]

    async def review_queue(self) -> list[Entity]:
        """Live entities whose provenance asks for a human look."""
        out = []
        for entity_type in BUNDLE_ORDER:
            out.extend(
                e
                for e in await self.list_entities(entity_type)
                if needs_attention(e.provenance.review_status)
            )
        return out

    async def dirty_counts(self) -> dict[str, int]:
        """Entities per collection that still differ from the remote."""
        counts = await self.store.counts()
        return {
            entity_type.collection: sum(
                n for state, n in counts.get(entity_type, {}).items()
                if state != SyncState.CLEAN.value
            )
            for entity_type in BUNDLE_ORDER
        }

    # =========================================================================
    # Create / update / delete
    # =========================================================================

    async def create(self, entity_type: EntityType, data: dict[str, Any]) -> Entity:
        """Create an entity from a wire-shaped dict.

        Rooms keep a caller-supplied id (their natural key); every other
        type gets a freshly minted local id.
        """
        at = now_ms()
        entity_id = new_id(entity_type.id_prefix)
        if entity_type is EntityType.ROOM and data.get("id"):
            entity_id = str(data["id"]).strip()
            if await self.store.get(EntityType.ROOM, entity_id) is not None:
                raise DuplicateNameError(entity_type.value, entity_id)
        if entity_type is EntityType.STORE:
            await self._check_store_name(data.get("name"), exclude_id=None)

        entity = entity_from_dict(
            entity_type,
            {
                **data,
                "id": entity_id,
                "remoteId": None,
                "syncState": SyncState.DIRTY.value,
                "createdAt": at,
                "updatedAt": at,
            },
        )
        entity = entity.replace(provenance=human_created(data.get("provenance"), at))
        await self.store.put(entity)
        logger.debug(f"Created {entity_type.value} {entity.id}")
        await self._changed(f"create:{entity_type.collection}")
        return entity

    async def update(
        self, entity_type: EntityType, entity_id: str, patch: dict[str, Any]
    ) -> Entity:
        """Apply a human edit.

        A store name change goes through ``rename_store`` so item and
        option references follow it.
        """
        existing = await self.get(entity_type, entity_id)
        patch = dict(patch)
        if entity_type is EntityType.STORE and "name" in patch:
            existing = await self.rename_store(entity_id, patch.pop("name"))

        at = now_ms()
        fields = {k: v for k, v in patch.items() if k not in _PROTECTED_KEYS}
        merged = entity_from_dict(entity_type, {**existing.to_dict(), **fields})
        updated = merged.replace(
            sync_state=SyncState.DIRTY,
            updated_at=at,
            provenance=touch_for_human_edit(existing.provenance, patch.get("provenance"), at),
        )
        await self.store.put(updated)
        await self._changed(f"update:{entity_type.collection}")
        return updated

    async def _tombstone(self, entities: list[Entity], at: int) -> None:
        by_type: dict[EntityType, list[Entity]] = {}
        for entity in entities:
            by_type.setdefault(entity.entity_type, []).append(
                entity.replace(sync_state=SyncState.DELETED, updated_at=at)
            )
        for entity_type, batch in by_type.items():
            await self.store.bulk_put(entity_type, batch)

    async def _detach_references(self, doomed: list[Entity], at: int) -> None:
        """Clear optional references to tombstoned entities on live ones."""
        gone = {(e.entity_type, e.id) for e in doomed}
        for fk in OPTIONAL_REFERENCES:
            detached = [
                e.replace(**{fk.attr: None}, sync_state=SyncState.DIRTY, updated_at=at)
                for e in await self.list_entities(fk.owner)
                if (fk.owner, e.id) not in gone and (fk.target, getattr(e, fk.attr)) in gone
            ]
            if detached:
                await self.store.bulk_put(fk.owner, detached)
                logger.debug(f"Cleared {fk.attr} on {len(detached)} {fk.owner.value}")

    async def delete(self, entity_type: EntityType, entity_id: str) -> int:
        """Tombstone an entity and its children.

        Deleting an item also deletes its options; deleting an option also
        deletes its sub-items. Returns the number of tombstones written.
        """
        if entity_type is EntityType.ROOM:
            return await self.delete_room(entity_id)
        if entity_type is EntityType.STORE:
            return await self.delete_store(entity_id)

        entity = await self.get(entity_type, entity_id)
        doomed: list[Entity] = [entity]
        option_ids: set[str] = set()
        if entity_type is EntityType.ITEM:
            options = [
                o for o in await self.list_entities(EntityType.OPTION) if o.item_id == entity_id
            ]
            doomed.extend(options)
            option_ids = {o.id for o in options}
        elif entity_type is EntityType.OPTION:
            option_ids = {entity_id}
        if option_ids:
            doomed.extend(
                s
                for s in await self.list_entities(EntityType.SUB_ITEM)
                if s.option_id in option_ids
            )

        at = now_ms()
        await self._tombstone(doomed, at)
        await self._detach_references(doomed, at)
        logger.info(f"Deleted {entity_type.value} {entity_id} ({len(doomed)} tombstones)")
        await self._changed(f"delete:{entity_type.collection}")
        return len(doomed)

    async def delete_room(self, room_id: str, move_to: str | None = None) -> int:
        """Tombstone a room, first moving its items and measurements.

        Raises:
            InventorySyncError: If the room is still in use and ``move_to`` is not given
        """
        room = await self.get(EntityType.ROOM, room_id)
        occupants = [
            e
            for t in (EntityType.ITEM, EntityType.MEASUREMENT)
            for e in await self.list_entities(t)
            if e.room == room_id
        ]
        if occupants and move_to is None:
            raise InventorySyncError(
                f"Room {room.label} still holds {len(occupants)} entries",
                {"room_id": room_id, "count": len(occupants)},
            )

        at = now_ms()
        if occupants:
            await self.get(EntityType.ROOM, move_to)
            moved: dict[EntityType, list[Entity]] = {}
            for entity in occupants:
                moved.setdefault(entity.entity_type, []).append(
                    entity.replace(room=move_to, sync_state=SyncState.DIRTY, updated_at=at)
                )
            for entity_type, batch in moved.items():
                await self.store.bulk_put(entity_type, batch)

        await self._tombstone([room], at)
        await self._changed("delete:rooms")
        return 1

    # =========================================================================
    # Stores
    # =========================================================================

    async def _check_store_name(self, name: Any, exclude_id: str | None) -> str:
        normalized = normalize_store_name(name)
        if not normalized:
            raise InventorySyncError("Store name must not be empty", {"name": name})
        key = store_key(normalized)
        for other in await self.list_entities(EntityType.STORE):
            if other.id != exclude_id and store_key(other.name) == key:
                raise DuplicateNameError(EntityType.STORE.value, normalized)
        return normalized

    async def _retarget_store_references(self, old_key: str, new_name: str | None, at: int) -> int:
        touched = 0
        for entity_type in (EntityType.ITEM, EntityType.OPTION):
            batch = [
                e.replace(store=new_name, sync_state=SyncState.DIRTY, updated_at=at)
                for e in await self.list_entities(entity_type)
                if e.store and store_key(e.store) == old_key
            ]
            if batch:
                touched += await self.store.bulk_put(entity_type, batch)
        return touched

    async def rename_store(self, store_id: str, name: Any) -> Entity:
        """Rename a store and every item/option that refers to it by name.

        Raises:
            DuplicateNameError: If another store already has the name
        """
        existing = await self.get(EntityType.STORE, store_id)
        normalized = await self._check_store_name(name, exclude_id=store_id)
        if normalized == existing.name:
            return existing

        at = now_ms()
        touched = await self._retarget_store_references(store_key(existing.name), normalized, at)
        renamed = existing.replace(
            name=normalized,
            sync_state=SyncState.DIRTY,
            updated_at=at,
            provenance=touch_for_human_edit(existing.provenance, None, at),
        )
        await self.store.put(renamed)
        logger.info(f"Renamed store {existing.name!r} -> {normalized!r} ({touched} references)")
        await self._changed("update:stores")
        return renamed

    async def delete_store(self, store_id: str) -> int:
        """Tombstone a store and clear references to it."""
        existing = await self.get(EntityType.STORE, store_id)
        at = now_ms()
        await self._retarget_store_references(store_key(existing.name), None, at)
        await self._tombstone([existing], at)
        await self._changed("delete:stores")
        return 1

    # =========================================================================
    # Review
    # =========================================================================

    async def _set_provenance(self, entity_type: EntityType, entity_id: str, transition) -> Entity:
        entity = await self.get(entity_type, entity_id)
        at = now_ms()
        updated = entity.replace(
            provenance=transition(entity.provenance, at),
            sync_state=SyncState.DIRTY,
            updated_at=at,
        )
        await self.store.put(updated)
        await self._changed(f"review:{entity_type.collection}")
        return updated

    async def mark_verified(self, entity_type: EntityType, entity_id: str) -> Entity:
        return await self._set_provenance(entity_type, entity_id, mark_verified)

    async def mark_needs_review(self, entity_type: EntityType, entity_id: str) -> Entity:
        return await self._set_provenance(entity_type, entity_id, mark_needs_review)

    # =========================================================================
    # Preferences and reset
    # =========================================================================

    async def get_unit_preference(self) -> str:
        lookup = await self.store.get_meta(META_UNIT_PREFERENCE)
        value = lookup.value_or(DEFAULT_UNIT_PREFERENCE)
        return value if value in UNIT_PREFERENCES else DEFAULT_UNIT_PREFERENCE

    async def set_unit_preference(self, unit: str) -> None:
        if unit not in UNIT_PREFERENCES:
            raise ValueError(f"Unit must be one of {UNIT_PREFERENCES}, got {unit!r}")
        await self.store.set_meta(META_UNIT_PREFERENCE, unit)
        await self._changed("meta")

    async def reset_local(self) -> None:
        """Drop every local entity and the sync bookkeeping."""
        await self.store.reset_all()
        await self.store.delete_meta(META_LAST_SYNC_AT)
        await self.store.delete_meta(META_LAST_SYNC_SUMMARY)
        await self._changed("reset")

    # =========================================================================
    # Bundles
    # =========================================================================

    async def export_bundle(self, include_deleted: bool = False) -> dict[str, Any]:
        return export_bundle(await self.store.snapshot(), include_deleted=include_deleted)

    async def export_to_file(
        self, path: Path | str, include_deleted: bool = False
    ) -> dict[str, Any]:
        bundle = await self.export_bundle(include_deleted=include_deleted)
        await write_bundle_file(path, bundle)
        return bundle

    async def import_file(
        self,
        path: Path | str,
        mode: ImportMode | str = ImportMode.MERGE,
        ai_assisted: bool = False,
    ) -> ImportSummary:
        bundle = await read_bundle_file(path)
        return await self._import(bundle, ImportMode(mode), ai_assisted)

    async def import_bundle(
        self,
        raw: Any,
        mode: ImportMode | str = ImportMode.MERGE,
        ai_assisted: bool = False,
    ) -> ImportSummary:
        """Merge (or replace the store with) an export bundle.

        New entities get needs-review provenance; entities whose tracked
        fields changed get ai-modified provenance with a change-log entry
        per change; unchanged entities are left exactly as they are.

        Args:
            raw: Parsed bundle document (version 1 or 2)
            mode: ``merge`` keeps local data, ``replace`` wipes it first
            ai_assisted: Attribute the import to the AI actor

        Raises:
            BundleFormatError: If ``raw`` is not a recognized bundle
        """
        return await self._import(normalize_bundle(raw), ImportMode(mode), ai_assisted)

    async def _import(self, bundle: Bundle, mode: ImportMode, ai_assisted: bool) -> ImportSummary:
        actor = Actor.AI if ai_assisted or _detect_ai(bundle) else Actor.IMPORT
        summary = ImportSummary(mode=mode, actor=actor, session_id=new_id("import"))
        at = now_ms()

        if mode is ImportMode.REPLACE:
            await self.store.reset_all()
        if bundle.home is not None:
            await self.store.set_meta(META_HOME, bundle.home)
        if bundle.planner is not None:
            await self.store.set_meta(META_PLANNER, bundle.planner)

        await self._add_referenced_rooms(bundle)

        for entity_type in BUNDLE_ORDER:
            existing = {e.id: e for e in await self.store.list_all(entity_type)}
            batch = []
            for incoming in bundle.of(entity_type):
                merged = self._merge_one(existing.get(incoming.id), incoming, actor, at, summary)
                if merged is not None:
                    batch.append(merged)
            if batch:
                await self.store.bulk_put(entity_type, batch)

        logger.info(
            f"Imported bundle v{bundle.version} ({mode.value}, actor={actor.value}): "
            f"created={summary.created} updated={summary.updated}"
        )
        await self._changed("import")
        return summary

    async def _add_referenced_rooms(self, bundle: Bundle) -> None:
        rooms = bundle.entities.setdefault(EntityType.ROOM, [])
        known = {r.id for r in rooms}
        referenced = [
            e.room for t in (EntityType.ITEM, EntityType.MEASUREMENT) for e in bundle.of(t)
        ]
        for room_id in dict.fromkeys(referenced):
            if not room_id or room_id in known:
                continue
            known.add(room_id)
            if await self.store.get(EntityType.ROOM, room_id) is not None:
                continue
            rooms.append(Room(id=room_id, name=room_id, sort=float(len(rooms))))

    def _merge_one(
        self,
        existing: Entity | None,
        incoming: Entity,
        actor: Actor,
        at: int,
        summary: ImportSummary,
    ) -> Entity | None:
        entity_type = incoming.entity_type
        state = SyncState.DELETED if incoming.is_deleted else SyncState.DIRTY

        if existing is None:
            summary.count("created", entity_type)
            return incoming.replace(
                sync_state=state,
                updated_at=at,
                provenance=for_new_import(incoming.provenance, actor, at),
            )

        # Provenance fields the bundle leaves unset keep their local value.
        candidate = incoming.replace(
            provenance=overlay_provenance(existing.provenance, incoming.provenance)
        )
        changes = diff_entity(existing, candidate)
        if not changes:
            summary.count("unchanged", entity_type)
            return None

        summary.count("updated", entity_type)
        return incoming.replace(
            created_at=existing.created_at,
            remote_id=existing.remote_id or incoming.remote_id,
            sync_state=state,
            updated_at=at,
            provenance=for_changed_import(
                existing.provenance,
                incoming.provenance,
                changes,
                actor,
                at,
                session_id=summary.session_id,
            ),
        )
