"""
Export bundles.

A bundle is the JSON document used for backup, restore and AI-assisted
edits. Version 1 carries the collections only; version 2 adds an
``exportMeta`` block describing who produced it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..exceptions import BundleFormatError
from ..ids import new_id, now_ms
from ..local import Snapshot, read_json, write_json_atomic
from ..model import Actor, Entity, EntityType, entity_from_dict
from ..model.coerce import coerce_number
from ..model.types import parse_enum

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
SUPPORTED_VERSIONS = (1, 2)

# Collection order inside a written bundle.
BUNDLE_ORDER = (
    EntityType.ROOM,
    EntityType.MEASUREMENT,
    EntityType.ITEM,
    EntityType.OPTION,
    EntityType.SUB_ITEM,
    EntityType.STORE,
)


@dataclass
class ExportMeta:
    """Who produced a bundle and when."""

    exported_at: int
    exported_by: Actor | None = None
    schema_version: int = 1
    app_version: str | None = None
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "exportedAt": self.exported_at,
            "schemaVersion": self.schema_version,
        }
        if self.exported_by is not None:
            out["exportedBy"] = self.exported_by.value
        if self.app_version:
            out["appVersion"] = self.app_version
        if self.session_id:
            out["sessionId"] = self.session_id
        return out


def _trimmed(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def sanitize_export_meta(raw: Any) -> ExportMeta | None:
    """Parse an ``exportMeta`` block; None when it has no usable timestamp."""
    if not isinstance(raw, dict):
        return None
    exported_at = coerce_number(raw.get("exportedAt"))
    if exported_at is None:
        return None
    schema = coerce_number(raw.get("schemaVersion"))
    return ExportMeta(
        exported_at=int(exported_at),
        exported_by=parse_enum(Actor, raw.get("exportedBy")),
        schema_version=1 if schema is None else max(1, round(schema)),
        app_version=_trimmed(raw.get("appVersion")),
        session_id=_trimmed(raw.get("sessionId")),
    )


@dataclass
class Bundle:
    """A normalized bundle ready to import."""

    version: int
    exported_at: str
    export_meta: ExportMeta | None = None
    home: dict[str, Any] | None = None
    planner: dict[str, Any] | None = None
    entities: dict[EntityType, list[Entity]] = field(default_factory=dict)

    def of(self, entity_type: EntityType) -> list[Entity]:
        return self.entities.get(entity_type, [])

    def all_entities(self) -> list[Entity]:
        return [e for t in BUNDLE_ORDER for e in self.of(t)]


def _decode_room(raw: dict[str, Any]) -> dict[str, Any]:
    room_id = _trimmed(raw.get("id"))
    name = _trimmed(raw.get("name"))
    room_id = room_id or name or new_id(EntityType.ROOM.id_prefix)
    return {**raw, "id": room_id, "name": name or room_id}


def _decode_collection(entity_type: EntityType, rows: Any) -> list[Entity]:
    if not isinstance(rows, list):
        return []
    out = []
    for raw in rows:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping non-object entry in {entity_type.collection}")
            continue
        if entity_type is EntityType.ROOM:
            raw = _decode_room(raw)
        elif not _trimmed(raw.get("id")):
            raw = {**raw, "id": new_id(entity_type.id_prefix)}
        out.append(entity_from_dict(entity_type, raw))
    return out


def normalize_bundle(raw: Any) -> Bundle:
    """Validate and decode an import document.

    Args:
        raw: Parsed JSON document

    Returns:
        Bundle with decoded entities per collection

    Raises:
        BundleFormatError: If the document is not a version 1 or 2 bundle
    """
    if not isinstance(raw, dict):
        raise BundleFormatError(f"expected an object, got {type(raw).__name__}")

    keys = sorted(raw.keys())
    version = raw.get("version")
    if version not in SUPPORTED_VERSIONS or isinstance(version, bool):
        raise BundleFormatError(f"unsupported version {version!r}", keys)
    if not isinstance(raw.get("items"), list) or not isinstance(raw.get("rooms"), list):
        raise BundleFormatError("items and rooms must be lists", keys)

    exported_at = raw.get("exportedAt")
    bundle = Bundle(
        version=version,
        exported_at=exported_at if isinstance(exported_at, str) else datetime.now(UTC).isoformat(),
        export_meta=sanitize_export_meta(raw.get("exportMeta")),
        home=raw.get("home") if isinstance(raw.get("home"), dict) else None,
        planner=raw.get("planner") if isinstance(raw.get("planner"), dict) else None,
    )
    for entity_type in BUNDLE_ORDER:
        bundle.entities[entity_type] = _decode_collection(
            entity_type, raw.get(entity_type.collection)
        )

    rooms = bundle.entities[EntityType.ROOM]
    for index, room in enumerate(rooms):
        if room.sort is None:
            rooms[index] = room.replace(sort=float(index))
    return bundle


def export_bundle(snapshot: Snapshot, include_deleted: bool = False) -> dict[str, Any]:
    """Build a version 2 bundle from a store snapshot.

    Tombstones are left out unless ``include_deleted`` is set.
    """
    at = now_ms()
    meta = ExportMeta(
        exported_at=at,
        exported_by=Actor.HUMAN,
        schema_version=SCHEMA_VERSION,
        session_id=new_id("export"),
    )
    out: dict[str, Any] = {
        "version": SCHEMA_VERSION,
        "exportedAt": datetime.fromtimestamp(at / 1000, UTC).isoformat(),
        "exportMeta": meta.to_dict(),
    }
    for key in ("home", "planner"):
        if isinstance(snapshot.meta.get(key), dict):
            out[key] = snapshot.meta[key]
    for entity_type in BUNDLE_ORDER:
        out[entity_type.collection] = [
            e.to_dict()
            for e in snapshot.of(entity_type)
            if include_deleted or not e.is_deleted
        ]
    return out


async def read_bundle_file(path: Path | str) -> Bundle:
    """Load and normalize a bundle from disk.

    Raises:
        BundleFormatError: If the file is missing, empty or not a bundle
    """
    data = await read_json(Path(path))
    if data is None:
        raise BundleFormatError(f"no bundle at {path}")
    return normalize_bundle(data)


async def write_bundle_file(path: Path | str, bundle: dict[str, Any]) -> None:
    """Atomically write an exported bundle to disk."""
    await write_json_atomic(Path(path), bundle)
    logger.info(f"Wrote bundle to {path}")
