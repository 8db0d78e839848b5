"""
Entity Model: typed records held by the local store.

Every entity shares the same envelope (identity, sync state, timestamps,
provenance). Attribute names are snake_case; ``to_dict``/``from_dict``
speak the camelCase wire format used by export bundles and by the
metadata block of remote rows.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar

from ..ids import now_ms
from .coerce import (
    coerce_number,
    coerce_specs,
    coerce_str,
    coerce_tags,
    coerce_timestamp,
    coerce_trimmed,
)
from .types import (
    DISCOUNT_TYPES,
    ITEM_STATUSES,
    MEASUREMENT_CONFIDENCES,
    Actor,
    DataSource,
    EntityType,
    ReviewStatus,
    SyncState,
    parse_enum,
)

Specs = dict[str, str | int | float | bool | None]


def camel(name: str) -> str:
    """Convert a snake_case attribute name to its camelCase wire key."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_wire(value: Any) -> Any:
    """Convert attribute values into JSON-compatible wire values."""
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [to_wire(v) for v in value]
    if isinstance(value, dict):
        return {k: to_wire(v) for k, v in value.items()}
    return value


# =============================================================================
# Provenance
# =============================================================================


@dataclass
class ChangeLogEntry:
    """One recorded field change, appended by merge-imports."""

    field: str
    from_value: Any
    to_value: Any
    by: Actor | None
    at: int
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = {
            "field": self.field,
            "from": self.from_value,
            "to": self.to_value,
            "by": self.by.value if self.by else None,
            "at": self.at,
        }
        if self.session_id:
            out["sessionId"] = self.session_id
        return out

    @classmethod
    def from_dict(cls, data: Any) -> ChangeLogEntry | None:
        """Decode an entry, returning None for malformed input."""
        if not isinstance(data, dict):
            return None
        name = coerce_trimmed(data.get("field"))
        at = coerce_number(data.get("at"))
        by_raw = data.get("by")
        by = parse_enum(Actor, by_raw)
        if name is None or at is None or (by is None and by_raw is not None):
            return None
        return cls(
            field=name,
            from_value=data.get("from"),
            to_value=data.get("to"),
            by=by,
            at=int(at),
            session_id=coerce_trimmed(data.get("sessionId")),
        )


@dataclass
class Provenance:
    """Who/what touched an entity and whether it needs human review."""

    created_by: Actor | None = None
    created_at: int | None = None
    last_edited_by: Actor | None = None
    last_edited_at: int | None = None
    source_ref: str | None = None
    data_source: DataSource | None = None
    review_status: ReviewStatus | None = None
    verified_at: int | None = None
    verified_by: Actor | None = None
    modified_fields: list[str] | None = None
    change_log: list[ChangeLogEntry] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {camel(f.name): to_wire(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Any) -> Provenance:
        """Decode provenance, dropping values outside the known vocabularies."""
        if not isinstance(data, dict):
            return cls()

        def ts(key: str) -> int | None:
            number = coerce_number(data.get(key))
            return int(number) if number is not None else None

        modified = data.get("modifiedFields")
        if isinstance(modified, list):
            modified_fields: list[str] | None = [
                str(v).strip() for v in modified if v is not None and str(v).strip()
            ]
        else:
            modified_fields = None

        log_raw = data.get("changeLog")
        change_log: list[ChangeLogEntry] | None = None
        if isinstance(log_raw, list):
            change_log = [e for e in (ChangeLogEntry.from_dict(x) for x in log_raw) if e]

        return cls(
            created_by=parse_enum(Actor, data.get("createdBy")),
            created_at=ts("createdAt"),
            last_edited_by=parse_enum(Actor, data.get("lastEditedBy")),
            last_edited_at=ts("lastEditedAt"),
            source_ref=coerce_trimmed(data.get("sourceRef")),
            data_source=parse_enum(DataSource, data.get("dataSource")),
            review_status=parse_enum(ReviewStatus, data.get("reviewStatus")),
            verified_at=ts("verifiedAt"),
            verified_by=parse_enum(Actor, data.get("verifiedBy")),
            modified_fields=modified_fields,
            change_log=change_log,
        )


@dataclass
class Dimensions:
    """Physical size in inches."""

    w_in: float | None = None
    h_in: float | None = None
    d_in: float | None = None

    def is_empty(self) -> bool:
        return self.w_in is None and self.h_in is None and self.d_in is None

    def to_dict(self) -> dict[str, Any]:
        return {"wIn": self.w_in, "hIn": self.h_in, "dIn": self.d_in}

    @classmethod
    def from_dict(cls, data: Any) -> Dimensions | None:
        if not isinstance(data, dict):
            return None
        dims = cls(
            w_in=coerce_number(data.get("wIn")),
            h_in=coerce_number(data.get("hIn")),
            d_in=coerce_number(data.get("dIn")),
        )
        return None if dims.is_empty() else dims


# =============================================================================
# Entities
# =============================================================================


@dataclass
class Entity:
    """Common envelope carried by every entity."""

    ENTITY_TYPE: ClassVar[EntityType]

    id: str = ""
    remote_id: str | None = None
    sync_state: SyncState = SyncState.DIRTY
    created_at: int = 0
    updated_at: int = 0
    provenance: Provenance = field(default_factory=Provenance)

    @property
    def entity_type(self) -> EntityType:
        return self.ENTITY_TYPE

    @property
    def is_deleted(self) -> bool:
        return self.sync_state is SyncState.DELETED

    @property
    def label(self) -> str:
        """Human-facing title used in error reports."""
        for attr in ("name", "title", "label"):
            value = getattr(self, attr, None)
            if isinstance(value, str) and value:
                return value
        return self.id

    def replace(self, **changes: Any) -> Any:
        """Return a copy with the given attributes changed."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {camel(f.name): to_wire(getattr(self, f.name)) for f in fields(self)}

    @staticmethod
    def _envelope(data: dict[str, Any]) -> dict[str, Any]:
        now = now_ms()
        created_at = coerce_timestamp(data.get("createdAt"), now)
        sync_state = parse_enum(SyncState, data.get("syncState")) or SyncState.DIRTY
        return {
            "id": str(data.get("id") or "").strip(),
            "remote_id": coerce_trimmed(data.get("remoteId")),
            "sync_state": sync_state,
            "created_at": created_at,
            "updated_at": coerce_timestamp(data.get("updatedAt"), created_at),
            "provenance": Provenance.from_dict(data.get("provenance")),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        raise NotImplementedError


def _discount_type(value: Any) -> str | None:
    return value if value in DISCOUNT_TYPES else None


@dataclass
class Item(Entity):
    """A thing to buy for a room."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.ITEM

    name: str = ""
    room: str = ""
    category: str = "Other"
    status: str = "Idea"
    selected_option_id: str | None = None
    sort: float | None = None
    price: float | None = None
    discount_type: str | None = None
    discount_value: float | None = None
    qty: int = 1
    store: str | None = None
    link: str | None = None
    notes: str | None = None
    priority: float | None = None
    tags: list[str] | None = None
    dimensions: Dimensions | None = None
    specs: Specs | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Item:
        status = coerce_trimmed(data.get("status"))
        qty = coerce_number(data.get("qty"))
        return cls(
            **cls._envelope(data),
            name=coerce_trimmed(data.get("name")) or "Item",
            room=coerce_trimmed(data.get("room")) or "",
            category=coerce_trimmed(data.get("category")) or "Other",
            status=status if status in ITEM_STATUSES else "Idea",
            selected_option_id=coerce_trimmed(data.get("selectedOptionId")),
            sort=coerce_number(data.get("sort")),
            price=coerce_number(data.get("price")),
            discount_type=_discount_type(data.get("discountType")),
            discount_value=coerce_number(data.get("discountValue")),
            qty=max(1, round(qty)) if qty else 1,
            store=coerce_str(data.get("store")),
            link=coerce_str(data.get("link")),
            notes=coerce_str(data.get("notes")),
            priority=coerce_number(data.get("priority")),
            tags=coerce_tags(data.get("tags")),
            dimensions=Dimensions.from_dict(data.get("dimensions")),
            specs=coerce_specs(data.get("specs")),
        )


@dataclass
class Option(Entity):
    """A purchasable candidate for an item."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.OPTION

    item_id: str = ""
    title: str = ""
    sort: float | None = None
    store: str | None = None
    link: str | None = None
    promo_code: str | None = None
    price: float | None = None
    shipping: float | None = None
    tax_estimate: float | None = None
    discount: float | None = None
    discount_type: str | None = None
    discount_value: float | None = None
    dimensions_text: str | None = None
    dimensions: Dimensions | None = None
    specs: Specs | None = None
    notes: str | None = None
    priority: float | None = None
    tags: list[str] | None = None
    selected: bool = False
    source_item_id: str | None = None

    def final_total(self) -> float:
        """Price plus shipping plus tax, less the flat discount."""
        return (
            (self.price or 0)
            + (self.shipping or 0)
            + (self.tax_estimate or 0)
            - (self.discount or 0)
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Option:
        return cls(
            **cls._envelope(data),
            item_id=coerce_trimmed(data.get("itemId")) or "",
            title=coerce_trimmed(data.get("title")) or "Option",
            sort=coerce_number(data.get("sort")),
            store=coerce_str(data.get("store")),
            link=coerce_str(data.get("link")),
            promo_code=coerce_str(data.get("promoCode")),
            price=coerce_number(data.get("price")),
            shipping=coerce_number(data.get("shipping")),
            tax_estimate=coerce_number(data.get("taxEstimate")),
            discount=coerce_number(data.get("discount")),
            discount_type=_discount_type(data.get("discountType")),
            discount_value=coerce_number(data.get("discountValue")),
            dimensions_text=coerce_str(data.get("dimensionsText")),
            dimensions=Dimensions.from_dict(data.get("dimensions")),
            specs=coerce_specs(data.get("specs")),
            notes=coerce_str(data.get("notes")),
            priority=coerce_number(data.get("priority")),
            tags=coerce_tags(data.get("tags")),
            selected=bool(data.get("selected")),
            source_item_id=coerce_trimmed(data.get("sourceItemId")),
        )


@dataclass
class SubItem(Entity):
    """A component line of an option (e.g. cushions sold separately)."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.SUB_ITEM

    option_id: str = ""
    title: str = ""
    qty: int = 1
    price: float | None = None
    notes: str | None = None
    sort: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubItem:
        qty = coerce_number(data.get("qty"))
        return cls(
            **cls._envelope(data),
            option_id=coerce_trimmed(data.get("optionId")) or "",
            title=coerce_trimmed(data.get("title")) or "Sub-item",
            qty=max(1, round(qty)) if qty else 1,
            price=coerce_number(data.get("price")),
            notes=coerce_str(data.get("notes")),
            sort=coerce_number(data.get("sort")),
        )


@dataclass
class Measurement(Entity):
    """A measured length in a room, stored canonically in inches."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.MEASUREMENT

    room: str = ""
    label: str = ""
    value_in: float = 0
    sort: float | None = None
    confidence: str | None = None
    for_category: str | None = None
    for_item_id: str | None = None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Measurement:
        confidence = coerce_trimmed(data.get("confidence"))
        return cls(
            **cls._envelope(data),
            room=coerce_trimmed(data.get("room")) or "",
            label=coerce_trimmed(data.get("label")) or "Measurement",
            value_in=coerce_number(data.get("valueIn")) or 0,
            sort=coerce_number(data.get("sort")),
            confidence=confidence if confidence in MEASUREMENT_CONFIDENCES else None,
            for_category=coerce_str(data.get("forCategory")),
            for_item_id=coerce_trimmed(data.get("forItemId")),
            notes=coerce_str(data.get("notes")),
        )


@dataclass
class Room(Entity):
    """A room. Its id is a stable slug referenced by items and measurements."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.ROOM

    name: str = ""
    sort: float | None = None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Room:
        envelope = cls._envelope(data)
        name = coerce_trimmed(data.get("name")) or envelope["id"]
        if not envelope["id"]:
            envelope["id"] = name
        return cls(
            **envelope,
            name=name,
            sort=coerce_number(data.get("sort")),
            notes=coerce_str(data.get("notes")),
        )


@dataclass
class Store(Entity):
    """A retailer. Items and options reference it by name, not id."""

    ENTITY_TYPE: ClassVar[EntityType] = EntityType.STORE

    name: str = ""
    sort: float | None = None
    discount_type: str | None = None
    discount_value: float | None = None
    delivery_info: str | None = None
    extra_warranty: str | None = None
    trial: str | None = None
    apr: str | None = None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Store:
        return cls(
            **cls._envelope(data),
            name=normalize_store_name(data.get("name")) or "Store",
            sort=coerce_number(data.get("sort")),
            discount_type=_discount_type(data.get("discountType")),
            discount_value=coerce_number(data.get("discountValue")),
            delivery_info=coerce_str(data.get("deliveryInfo")),
            extra_warranty=coerce_str(data.get("extraWarranty")),
            trial=coerce_str(data.get("trial")),
            apr=coerce_str(data.get("apr")),
            notes=coerce_str(data.get("notes")),
        )


def normalize_store_name(value: Any) -> str:
    """Collapse whitespace in a store name."""
    if not isinstance(value, str):
        return ""
    return " ".join(value.split())


def store_key(value: Any) -> str:
    """Case-insensitive key used to match soft store references."""
    return normalize_store_name(value).casefold()


ENTITY_CLASSES: dict[EntityType, type[Entity]] = {
    EntityType.ITEM: Item,
    EntityType.OPTION: Option,
    EntityType.SUB_ITEM: SubItem,
    EntityType.MEASUREMENT: Measurement,
    EntityType.ROOM: Room,
    EntityType.STORE: Store,
}


def entity_from_dict(entity_type: EntityType, data: dict[str, Any]) -> Entity:
    """Decode a wire dict into the entity class for ``entity_type``."""
    return ENTITY_CLASSES[entity_type].from_dict(data)


# =============================================================================
# Foreign keys
# =============================================================================


@dataclass(frozen=True)
class ForeignKey:
    """An attribute of ``owner`` naming the id of a ``target`` entity.

    ``parent`` references must exist remotely before the owner can be
    pushed; the others are carried on a best-effort basis.
    """

    owner: EntityType
    attr: str
    target: EntityType
    parent: bool = False

    @property
    def wire_key(self) -> str:
        return camel(self.attr)


FOREIGN_KEYS: tuple[ForeignKey, ...] = (
    ForeignKey(EntityType.OPTION, "item_id", EntityType.ITEM, parent=True),
    ForeignKey(EntityType.SUB_ITEM, "option_id", EntityType.OPTION, parent=True),
    ForeignKey(EntityType.MEASUREMENT, "for_item_id", EntityType.ITEM),
    ForeignKey(EntityType.ITEM, "selected_option_id", EntityType.OPTION),
    ForeignKey(EntityType.OPTION, "source_item_id", EntityType.ITEM),
)


def references_to(target: EntityType) -> list[ForeignKey]:
    """Foreign keys that point at entities of ``target`` type."""
    return [fk for fk in FOREIGN_KEYS if fk.target is target]


def parent_keys(owner: EntityType) -> list[ForeignKey]:
    """Parent references an entity of ``owner`` type must resolve before push."""
    return [fk for fk in FOREIGN_KEYS if fk.owner is owner and fk.parent]
