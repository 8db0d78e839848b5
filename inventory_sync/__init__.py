"""
Inventory Sync

Local-first storage and two-way sync for a home inventory tracker.

Provides:
- Typed entities (items, options, sub-items, measurements, rooms, stores)
- A SQLite local store with per-entity sync state
- Provenance tracking and field-level diffs for imports
- Push/pull orchestration against an Airtable-style table

Usage:

    >>> from inventory_sync import LocalStore, SyncConfig, SyncEngine
    >>> store = await LocalStore.create()
    >>> engine = SyncEngine(store, SyncConfig.from_environment())
    >>> result = await engine.sync_now()
    >>> print(result.summary_message())

Local edits:

    from inventory_sync import EntityType, InventoryService

    service = InventoryService(store)
    item = await service.create(EntityType.ITEM, {"name": "Sofa", "room": "Living"})
    await service.update(EntityType.ITEM, item.id, {"price": 899})
"""

from .config import LocalStoreConfig, SyncConfig
from .data import ImportMode, ImportSummary, InventoryService
from .exceptions import (
    BundleFormatError,
    ConfigurationError,
    DuplicateNameError,
    EntityNotFoundError,
    InventorySyncError,
    RecordDecodeError,
    RemoteApiError,
    StorageIOError,
    TransportError,
)
from .local import ChangeNotifier, LocalStore
from .logging_utils import configure_structured_logging
from .model import (
    Actor,
    DataSource,
    EntityType,
    Item,
    Measurement,
    Option,
    Provenance,
    ReviewStatus,
    Room,
    Store,
    SubItem,
    SyncState,
)
from .remote import AirtableClient
from .sync import PushMode, PushResult, PullResult, SyncEngine, SyncResult

__all__ = [
    # Configuration
    "SyncConfig",
    "LocalStoreConfig",
    "configure_structured_logging",
    # Model
    "EntityType",
    "SyncState",
    "Actor",
    "DataSource",
    "ReviewStatus",
    "Provenance",
    "Item",
    "Option",
    "SubItem",
    "Measurement",
    "Room",
    "Store",
    # Storage and services
    "LocalStore",
    "ChangeNotifier",
    "InventoryService",
    "ImportMode",
    "ImportSummary",
    # Sync
    "AirtableClient",
    "SyncEngine",
    "SyncResult",
    "PushMode",
    "PushResult",
    "PullResult",
    # Exceptions
    "InventorySyncError",
    "ConfigurationError",
    "RemoteApiError",
    "TransportError",
    "RecordDecodeError",
    "StorageIOError",
    "EntityNotFoundError",
    "DuplicateNameError",
    "BundleFormatError",
]

__version__ = "0.1.0"
