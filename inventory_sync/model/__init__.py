"""
Entity Model.

Typed records (Item, Option, SubItem, Measurement, Room, Store) with
identity, sync state and provenance, plus the foreign-key table used
when ids are promoted.
"""

from .entities import (
    ENTITY_CLASSES,
    FOREIGN_KEYS,
    ChangeLogEntry,
    Dimensions,
    Entity,
    ForeignKey,
    Item,
    Measurement,
    Option,
    Provenance,
    Room,
    Store,
    SubItem,
    entity_from_dict,
    normalize_store_name,
    parent_keys,
    references_to,
    store_key,
)
from .types import (
    DEFAULT_ROOMS,
    ITEM_STATUSES,
    Actor,
    DataSource,
    EntityType,
    ReviewStatus,
    SyncState,
)

__all__ = [
    # Enums
    "Actor",
    "DataSource",
    "EntityType",
    "ReviewStatus",
    "SyncState",
    "DEFAULT_ROOMS",
    "ITEM_STATUSES",
    # Records
    "Entity",
    "Item",
    "Option",
    "SubItem",
    "Measurement",
    "Room",
    "Store",
    "Provenance",
    "ChangeLogEntry",
    "Dimensions",
    "ENTITY_CLASSES",
    "entity_from_dict",
    # References
    "ForeignKey",
    "FOREIGN_KEYS",
    "references_to",
    "parent_keys",
    "normalize_store_name",
    "store_key",
]
