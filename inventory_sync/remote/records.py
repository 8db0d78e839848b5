"""
Remote row codec.

Every entity lives in one remote table. The ``Record Type`` column
discriminates the entity kind; values with no column of their own travel
in a JSON metadata block appended to the ``Notes`` column::

    user notes

    --- app_meta ---
    {"sort": 3, "createdAt": ...}
    --- /app_meta ---

Decoding validates the discriminator at this boundary and produces one
of the ``*Row`` classes (a tagged union on ``RECORD_TYPE``); anything
else is a ``RecordDecodeError``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from ..config import SyncConfig
from ..exceptions import RecordDecodeError
from ..model import (
    Dimensions,
    Entity,
    EntityType,
    Item,
    Measurement,
    Option,
    Room,
    Store,
    SubItem,
    SyncState,
)
from ..model.coerce import coerce_number, coerce_trimmed

logger = logging.getLogger(__name__)

META_START = "--- app_meta ---"
META_END = "--- /app_meta ---"
CM_PER_INCH = 2.54
DEFAULT_ROOM = "Living"

RECORD_TYPE_FIELD = "Record Type"
SELECTED_OPTION_FIELD = "Selected Option Id"
PARENT_ITEM_FIELD = "Parent Item Record Id"
PARENT_OPTION_FIELD = "Parent Option Record Id"

_DIMS_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*[x×]\s*(\d+(?:\.\d+)?)\s*[x×]\s*(\d+(?:\.\d+)?)", re.IGNORECASE
)

# Resolves (target type, local or remote id) to a remote id, or None.
Resolver = Callable[[EntityType, str | None], str | None]


class RecordType(Enum):
    """Values of the ``Record Type`` discriminator column."""

    ITEM = "Item"
    OPTION = "Option"
    SUB_ITEM = "SubItem"
    MEASUREMENT = "Measurement"
    NOTE = "Note"
    STORE = "Store"

    @property
    def entity_type(self) -> EntityType:
        return _ENTITY_TYPES[self]

    @classmethod
    def for_entity(cls, entity_type: EntityType) -> RecordType:
        for record_type, mapped in _ENTITY_TYPES.items():
            if mapped is entity_type:
                return record_type
        raise ValueError(f"No record type for {entity_type}")


_ENTITY_TYPES = {
    RecordType.ITEM: EntityType.ITEM,
    RecordType.OPTION: EntityType.OPTION,
    RecordType.SUB_ITEM: EntityType.SUB_ITEM,
    RecordType.MEASUREMENT: EntityType.MEASUREMENT,
    RecordType.NOTE: EntityType.ROOM,
    RecordType.STORE: EntityType.STORE,
}


# =============================================================================
# Notes metadata block and dimension text
# =============================================================================


def build_notes(user_notes: str | None, meta: dict[str, Any] | None) -> str:
    """Append the metadata block to the user's notes."""
    notes = (user_notes or "").rstrip()
    if not meta:
        return notes
    prefix = f"{notes}\n\n" if notes else ""
    return f"{prefix}{META_START}\n{json.dumps(meta)}\n{META_END}"


def split_notes(raw: Any) -> tuple[str, dict[str, Any]]:
    """Split ``Notes`` into user text and the last metadata block."""
    notes = raw if isinstance(raw, str) else ""
    start = notes.rfind(META_START)
    end = notes.rfind(META_END)
    if start == -1 or end == -1 or end < start:
        return notes, {}
    text = notes[start + len(META_START) : end].strip()
    try:
        meta = json.loads(text) if text else {}
    except json.JSONDecodeError as e:
        logger.debug(f"Ignoring unreadable metadata block: {e}")
        meta = {}
    return notes[:start].rstrip(), meta if isinstance(meta, dict) else {}


def dims_to_text(dims: Dimensions | None) -> str:
    """Render dimensions as ``WxDxH in``; unknown sides print as ``?``."""
    if dims is None or dims.is_empty():
        return ""
    parts = ["?" if v is None else f"{v:g}" for v in (dims.w_in, dims.d_in, dims.h_in)]
    return f"{'x'.join(parts)} in"


def parse_dims(text: Any) -> dict[str, float] | None:
    if not isinstance(text, str):
        return None
    match = _DIMS_PATTERN.search(text)
    if not match:
        return None
    w, d, h = (float(g) for g in match.groups())
    return {"wIn": w, "dIn": d, "hIn": h}


def _room(value: Any) -> str:
    return coerce_trimmed(value if isinstance(value, str) else None) or DEFAULT_ROOM


# =============================================================================
# Encoding
# =============================================================================


class RowEncoder:
    """Builds remote field maps for entities.

    Args:
        config: Supplies the sync-source, sync-at and priority column names
        synced_at: ISO timestamp stamped on every row of this push
    """

    def __init__(self, config: SyncConfig, synced_at: str):
        self.config = config
        self.synced_at = synced_at

    def encode(self, entity: Entity, resolve: Resolver) -> dict[str, Any]:
        """Field map for ``entity``; foreign keys go through ``resolve``."""
        encoder = getattr(self, f"_encode_{entity.entity_type.value}")
        fields = encoder(entity, resolve)
        fields[self.config.sync_source_field] = self.config.sync_source
        fields[self.config.sync_at_field] = self.synced_at
        return fields

    def _meta(self, entity: Entity, **values: Any) -> dict[str, Any]:
        meta = {k: v for k, v in values.items() if v is not None}
        meta["createdAt"] = entity.created_at
        meta["updatedAt"] = entity.updated_at
        meta["provenance"] = entity.provenance.to_dict()
        return meta

    def _encode_item(self, item: Item, resolve: Resolver) -> dict[str, Any]:
        meta = self._meta(
            item,
            category=item.category or "Other",
            dimensions=item.dimensions.to_dict() if item.dimensions else None,
            sort=item.sort,
            specs=item.specs,
            tags=item.tags,
            discountType=item.discount_type,
            discountValue=item.discount_value,
        )
        fields: dict[str, Any] = {
            RECORD_TYPE_FIELD: RecordType.ITEM.value,
            "Title": item.name or "Item",
            "Room": item.room or DEFAULT_ROOM,
            "Status": item.status or "Idea",
            "Price": item.price,
            "Quantity": round(item.qty) if item.qty else 1,
            "Store": item.store,
            "Link": item.link,
            "Notes": build_notes(item.notes, meta),
            "Dimensions": dims_to_text(item.dimensions),
        }
        if item.priority is not None:
            fields[self.config.priority_field] = round(item.priority)
        # Only a selection the remote can resolve is written.
        selected = resolve(EntityType.OPTION, item.selected_option_id)
        if selected:
            fields[SELECTED_OPTION_FIELD] = selected
        return fields

    def _encode_option(self, option: Option, resolve: Resolver) -> dict[str, Any]:
        meta = self._meta(
            option,
            selected=bool(option.selected),
            sort=option.sort,
            specs=option.specs,
            tags=option.tags,
            priority=option.priority,
            dimensions=option.dimensions.to_dict() if option.dimensions else None,
            discountType=option.discount_type,
            discountValue=option.discount_value,
            sourceItemId=resolve(EntityType.ITEM, option.source_item_id),
        )
        return {
            RECORD_TYPE_FIELD: RecordType.OPTION.value,
            "Title": option.title or "Option",
            PARENT_ITEM_FIELD: resolve(EntityType.ITEM, option.item_id),
            "Store": option.store,
            "Link": option.link,
            "Promo Code": option.promo_code,
            "Discount": option.discount,
            "Shipping": option.shipping,
            "Tax Estimate": option.tax_estimate,
            "Final Total": option.final_total(),
            "Price": option.price,
            "Dimensions": option.dimensions_text or dims_to_text(option.dimensions) or None,
            "Notes": build_notes(option.notes, meta),
        }

    def _encode_sub_item(self, sub_item: SubItem, resolve: Resolver) -> dict[str, Any]:
        meta = self._meta(sub_item, sort=sub_item.sort)
        return {
            RECORD_TYPE_FIELD: RecordType.SUB_ITEM.value,
            "Title": sub_item.title or "Sub-item",
            PARENT_OPTION_FIELD: resolve(EntityType.OPTION, sub_item.option_id),
            "Quantity": round(sub_item.qty) if sub_item.qty else 1,
            "Price": sub_item.price,
            "Notes": build_notes(sub_item.notes, meta),
        }

    def _encode_measurement(self, m: Measurement, resolve: Resolver) -> dict[str, Any]:
        meta = self._meta(
            m,
            sort=m.sort,
            forCategory=m.for_category,
            forItemId=resolve(EntityType.ITEM, m.for_item_id),
        )
        value_in = m.value_in or 0
        return {
            RECORD_TYPE_FIELD: RecordType.MEASUREMENT.value,
            "Title": m.label or "Measurement",
            "Measure Label": m.label or "Measurement",
            "Room": m.room or DEFAULT_ROOM,
            "Value (in)": value_in,
            "Value (cm)": value_in * CM_PER_INCH,
            "Unit Entered": "in",
            "Confidence": m.confidence,
            "Notes": build_notes(m.notes, meta),
        }

    def _encode_room(self, room: Room, resolve: Resolver) -> dict[str, Any]:
        meta = self._meta(room, sort=room.sort)
        return {
            RECORD_TYPE_FIELD: RecordType.NOTE.value,
            "Title": f"{room.id} notes",
            "Room": room.id,
            "Notes": build_notes(room.notes, meta),
        }

    def _encode_store(self, store: Store, resolve: Resolver) -> dict[str, Any]:
        meta = self._meta(
            store,
            sort=store.sort,
            discountType=store.discount_type,
            discountValue=store.discount_value,
            deliveryInfo=store.delivery_info,
            extraWarranty=store.extra_warranty,
            trial=store.trial,
            apr=store.apr,
        )
        return {
            RECORD_TYPE_FIELD: RecordType.STORE.value,
            "Title": store.name or "Store",
            "Notes": build_notes(store.notes, meta),
        }


# =============================================================================
# Decoding
# =============================================================================


@dataclass
class RemoteRow:
    """A validated remote row. Subclasses form the tagged union."""

    RECORD_TYPE: ClassVar[RecordType]

    record_id: str
    fields: dict[str, Any]
    user_notes: str = ""
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def record_type(self) -> RecordType:
        return self.RECORD_TYPE

    def _envelope(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "remoteId": self.record_id,
            "syncState": SyncState.CLEAN.value,
            "createdAt": self.meta.get("createdAt"),
            "updatedAt": self.meta.get("updatedAt"),
            "provenance": self.meta.get("provenance"),
            "notes": self.user_notes or None,
            "sort": self.meta.get("sort"),
        }

    def _text(self, name: str) -> str | None:
        value = self.fields.get(name)
        return value if isinstance(value, str) else None

    def to_entity(self, config: SyncConfig) -> Entity:
        raise NotImplementedError


@dataclass
class ItemRow(RemoteRow):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.ITEM

    def to_entity(self, config: SyncConfig) -> Item:
        f = self.fields
        priority = f.get(config.priority_field)
        if priority is None:
            priority = f.get("Priority", f.get("Prioirity"))
        return Item.from_dict(
            {
                **self._envelope(),
                "name": self._text("Title"),
                "room": _room(f.get("Room")),
                "category": self.meta.get("category") or self._text("Category"),
                "status": self._text("Status"),
                "selectedOptionId": self._text(SELECTED_OPTION_FIELD),
                "price": f.get("Price"),
                "discountType": self.meta.get("discountType"),
                "discountValue": self.meta.get("discountValue"),
                "qty": f.get("Quantity"),
                "store": self._text("Store"),
                "link": self._text("Link"),
                "priority": priority,
                "tags": self.meta.get("tags"),
                "dimensions": self.meta.get("dimensions") or parse_dims(f.get("Dimensions")),
                "specs": self.meta.get("specs"),
            }
        )


@dataclass
class OptionRow(RemoteRow):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.OPTION

    def to_entity(self, config: SyncConfig) -> Option:
        f = self.fields
        discount = coerce_number(f.get("Discount"))
        discount_type = self.meta.get("discountType")
        if discount_type is None and discount is not None:
            discount_type = "amount"
        discount_value = coerce_number(self.meta.get("discountValue"))
        return Option.from_dict(
            {
                **self._envelope(),
                "itemId": self._text(PARENT_ITEM_FIELD) or self._text("Parent Item Key"),
                "title": self._text("Title"),
                "store": self._text("Store"),
                "link": self._text("Link"),
                "promoCode": self._text("Promo Code"),
                "price": f.get("Price"),
                "shipping": f.get("Shipping"),
                "taxEstimate": f.get("Tax Estimate"),
                "discount": discount,
                "discountType": discount_type,
                "discountValue": discount_value if discount_value is not None else discount,
                "dimensionsText": self._text("Dimensions"),
                "dimensions": self.meta.get("dimensions") or parse_dims(f.get("Dimensions")),
                "specs": self.meta.get("specs"),
                "priority": self.meta.get("priority"),
                "tags": self.meta.get("tags"),
                "selected": bool(self.meta.get("selected")),
                "sourceItemId": self.meta.get("sourceItemId"),
            }
        )


@dataclass
class SubItemRow(RemoteRow):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.SUB_ITEM

    def to_entity(self, config: SyncConfig) -> SubItem:
        return SubItem.from_dict(
            {
                **self._envelope(),
                "optionId": self._text(PARENT_OPTION_FIELD),
                "title": self._text("Title"),
                "qty": self.fields.get("Quantity"),
                "price": self.fields.get("Price"),
            }
        )


@dataclass
class MeasurementRow(RemoteRow):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.MEASUREMENT

    def to_entity(self, config: SyncConfig) -> Measurement:
        f = self.fields
        value_in = coerce_number(f.get("Value (in)"))
        if value_in is None:
            raw = coerce_number(f.get("Value"))
            unit = str(f.get("Unit Entered") or "in").strip().lower()
            if raw is not None:
                value_in = raw / CM_PER_INCH if unit == "cm" else raw
        return Measurement.from_dict(
            {
                **self._envelope(),
                "room": _room(f.get("Room")),
                "label": self._text("Measure Label") or self._text("Title"),
                "valueIn": value_in or 0,
                "confidence": f.get("Confidence"),
                "forCategory": self.meta.get("forCategory"),
                "forItemId": self.meta.get("forItemId"),
            }
        )


@dataclass
class NoteRow(RemoteRow):
    """A room's notes row. The room keeps its natural id."""

    RECORD_TYPE: ClassVar[RecordType] = RecordType.NOTE

    @property
    def room_id(self) -> str:
        return _room(self.fields.get("Room"))

    def to_entity(self, config: SyncConfig) -> Room:
        return Room.from_dict(
            {**self._envelope(), "id": self.room_id, "name": self.room_id}
        )


@dataclass
class StoreRow(RemoteRow):
    RECORD_TYPE: ClassVar[RecordType] = RecordType.STORE

    def to_entity(self, config: SyncConfig) -> Store:
        return Store.from_dict(
            {
                **self._envelope(),
                "name": self._text("Title"),
                "discountType": self.meta.get("discountType"),
                "discountValue": self.meta.get("discountValue"),
                "deliveryInfo": self.meta.get("deliveryInfo"),
                "extraWarranty": self.meta.get("extraWarranty"),
                "trial": self.meta.get("trial"),
                "apr": self.meta.get("apr"),
            }
        )


ROW_CLASSES: dict[RecordType, type[RemoteRow]] = {
    cls.RECORD_TYPE: cls
    for cls in (ItemRow, OptionRow, SubItemRow, MeasurementRow, NoteRow, StoreRow)
}


def record_type_of(raw: Any) -> str:
    """The trimmed discriminator of a raw row, or an empty string."""
    fields = raw.get("fields") if isinstance(raw, dict) else None
    if not isinstance(fields, dict):
        return ""
    return str(fields.get(RECORD_TYPE_FIELD) or "").strip()


def decode_row(raw: Any) -> RemoteRow:
    """Validate a raw ``{id, fields}`` row and wrap it in its row class.

    Raises:
        RecordDecodeError: If the row has no id, no field map or an
            unknown ``Record Type``
    """
    if not isinstance(raw, dict):
        raise RecordDecodeError(None, "row is not an object")
    record_id = coerce_trimmed(raw.get("id"))
    if record_id is None:
        raise RecordDecodeError(None, "row has no id")
    fields = raw.get("fields")
    if not isinstance(fields, dict):
        raise RecordDecodeError(record_id, "row has no fields")

    discriminator = record_type_of(raw)
    try:
        record_type = RecordType(discriminator)
    except ValueError:
        raise RecordDecodeError(
            record_id, f"unknown record type {discriminator or '(empty)'}"
        ) from None

    user_notes, meta = split_notes(fields.get("Notes"))
    return ROW_CLASSES[record_type](
        record_id=record_id, fields=fields, user_notes=user_notes, meta=meta
    )
