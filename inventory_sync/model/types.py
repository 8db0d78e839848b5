"""
Enumerations shared by every entity.

The string values are the wire values used in export bundles and in the
metadata block stored alongside remote rows.
"""

from __future__ import annotations

from enum import Enum


class SyncState(Enum):
    """Divergence of a local entity from the remote store."""

    CLEAN = "clean"
    DIRTY = "dirty"
    DELETED = "deleted"


class Actor(Enum):
    """Who (or what) created or last touched an entity."""

    HUMAN = "human"
    AI = "ai"
    IMPORT = "import"
    SYSTEM = "system"


class DataSource(Enum):
    """Whether an entity's values were measured or guessed."""

    CONCRETE = "concrete"
    ESTIMATED = "estimated"


class ReviewStatus(Enum):
    """Triage state used by the review queue."""

    NEEDS_REVIEW = "needs_review"
    AI_MODIFIED = "ai_modified"
    VERIFIED = "verified"


class EntityType(Enum):
    """Entity collections held by the local store."""

    ITEM = "item"
    OPTION = "option"
    SUB_ITEM = "sub_item"
    MEASUREMENT = "measurement"
    ROOM = "room"
    STORE = "store"

    @property
    def collection(self) -> str:
        """Collection (and bundle key) name for this entity type."""
        return _COLLECTIONS[self]

    @property
    def id_prefix(self) -> str:
        """Prefix used when minting local ids."""
        return _ID_PREFIXES[self]

    @classmethod
    def from_collection(cls, name: str) -> EntityType:
        for entity_type, collection in _COLLECTIONS.items():
            if collection == name:
                return entity_type
        raise ValueError(f"Unknown collection: {name}")


_COLLECTIONS = {
    EntityType.ITEM: "items",
    EntityType.OPTION: "options",
    EntityType.SUB_ITEM: "subItems",
    EntityType.MEASUREMENT: "measurements",
    EntityType.ROOM: "rooms",
    EntityType.STORE: "stores",
}

_ID_PREFIXES = {
    EntityType.ITEM: "i",
    EntityType.OPTION: "o",
    EntityType.SUB_ITEM: "si",
    EntityType.MEASUREMENT: "m",
    EntityType.ROOM: "r",
    EntityType.STORE: "s",
}

ITEM_STATUSES = ("Idea", "Shortlist", "Selected", "Ordered", "Delivered", "Installed")

MEASUREMENT_CONFIDENCES = ("low", "med", "high")

DISCOUNT_TYPES = ("amount", "percent")

DEFAULT_ROOMS = (
    "Living",
    "Dining",
    "Master",
    "Bedroom2",
    "Balcony",
    "Entry",
    "Kitchen",
    "Bath",
)


def parse_enum(enum_cls: type[Enum], value: object) -> Enum | None:
    """Map a wire value onto an enum member, None when unknown."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value.strip())
    except ValueError:
        return None
