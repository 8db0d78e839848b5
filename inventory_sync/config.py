"""
Configuration for the sync engine and the local store.

Configuration can be provided directly, via environment variables, or via
the ``sync:`` section of a YAML settings file:

```yaml
sync:
  token: "pat..."
  base_id: "app..."
  table_id: "tbl..."
  view: "Inventory"
  typecast: true
```

Environment Variables:
    AIRTABLE_TOKEN: Bearer token for the remote table API
    AIRTABLE_BASE_ID: Base identifier
    AIRTABLE_TABLE_ID: Table identifier
    AIRTABLE_VIEW_NAME / AIRTABLE_VIEW_ID: Optional view used for list calls
    AIRTABLE_PRIORITY_FIELD: Column holding item priority (default: Priority)
    AIRTABLE_SYNC_SOURCE: Value stamped into the sync-source column (default: app)
    AIRTABLE_SYNC_SOURCE_FIELD: Sync-source column (default: Last Sync Source)
    AIRTABLE_SYNC_AT_FIELD: Sync-timestamp column (default: Last Sync At)
    AIRTABLE_TYPECAST: "true" to let the remote coerce select values
    INVENTORY_SYNC_DB_PATH: Local database path
    INVENTORY_SYNC_NOTIFY_PATH: Change-marker file touched after local writes
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

DEFAULT_API_URL = "https://api.airtable.com/v0"
DEFAULT_DATA_DIR = Path.home() / ".inventory_sync"

# Provider limits
MAX_PAGE_SIZE = 100
MAX_BATCH_SIZE = 10


@dataclass
class SyncConfig:
    """Configuration for talking to the remote table.

    Attributes:
        token: Bearer token
        base_id: Remote base identifier
        table_id: Remote table identifier
        view: Optional view restricting list calls
        api_url: API root
        page_size: Rows requested per list page
        batch_size: Records per create/update/delete request
        typecast: Ask the remote to coerce values on write
        sync_source: Value written to the sync-source column
        sync_source_field: Sync-source column name
        sync_at_field: Sync-timestamp column name
        priority_field: Priority column name
        timeout_seconds: Total timeout per HTTP request (None = transport default)
    """

    token: str | None = None
    base_id: str | None = None
    table_id: str | None = None
    view: str | None = None
    api_url: str = DEFAULT_API_URL
    page_size: int = MAX_PAGE_SIZE
    batch_size: int = MAX_BATCH_SIZE
    typecast: bool = False
    sync_source: str = "app"
    sync_source_field: str = "Last Sync Source"
    sync_at_field: str = "Last Sync At"
    priority_field: str = "Priority"
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        self.page_size = max(1, min(int(self.page_size), MAX_PAGE_SIZE))
        self.batch_size = max(1, min(int(self.batch_size), MAX_BATCH_SIZE))

    @classmethod
    def from_environment(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Args:
            **overrides: Values that take precedence over the environment

        Returns:
            SyncConfig populated from environment variables
        """
        values: dict[str, Any] = {
            "token": os.environ.get("AIRTABLE_TOKEN"),
            "base_id": os.environ.get("AIRTABLE_BASE_ID"),
            "table_id": os.environ.get("AIRTABLE_TABLE_ID"),
            "view": os.environ.get("AIRTABLE_VIEW_NAME") or os.environ.get("AIRTABLE_VIEW_ID"),
            "priority_field": os.environ.get("AIRTABLE_PRIORITY_FIELD", "Priority"),
            "sync_source": os.environ.get("AIRTABLE_SYNC_SOURCE", "app"),
            "sync_source_field": os.environ.get("AIRTABLE_SYNC_SOURCE_FIELD", "Last Sync Source"),
            "sync_at_field": os.environ.get("AIRTABLE_SYNC_AT_FIELD", "Last Sync At"),
            "typecast": os.environ.get("AIRTABLE_TYPECAST", "").lower() == "true",
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_file(cls, path: Path) -> SyncConfig:
        """Create configuration from a settings.yaml file.

        Environment variables take precedence over file values so that
        secrets can stay out of the file.
        """
        file_values: dict[str, Any] = {}
        if path.exists():
            loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            section = loaded.get("sync") if isinstance(loaded, dict) else None
            if isinstance(section, dict):
                known = {f.name for f in fields(cls)}
                file_values = {k: v for k, v in section.items() if k in known}

        env = cls.from_environment()
        merged: dict[str, Any] = dict(file_values)
        for f in fields(cls):
            env_value = getattr(env, f.name)
            if env_value != f.default and env_value is not None:
                merged[f.name] = env_value
        return cls(**merged)

    def validate(self) -> None:
        """Fail fast when a required setting is missing.

        Raises:
            ConfigurationError: Naming the first missing setting
        """
        if not self.token:
            raise ConfigurationError("AIRTABLE_TOKEN")
        if not self.base_id:
            raise ConfigurationError("AIRTABLE_BASE_ID")
        if not self.table_id:
            raise ConfigurationError("AIRTABLE_TABLE_ID")

    @property
    def table_url(self) -> str:
        """Full URL of the configured table."""
        return f"{self.api_url.rstrip('/')}/{self.base_id}/{self.table_id}"


@dataclass
class LocalStoreConfig:
    """Configuration for the local store.

    Attributes:
        db_path: SQLite database path (":memory:" for an ephemeral store)
        notify_path: Optional marker file touched after every local mutation
    """

    db_path: str | Path = field(default_factory=lambda: DEFAULT_DATA_DIR / "inventory.db")
    notify_path: Path | None = None

    @classmethod
    def from_env(cls) -> LocalStoreConfig:
        """Create config from environment variables."""
        db_path = os.environ.get("INVENTORY_SYNC_DB_PATH")
        notify_path = os.environ.get("INVENTORY_SYNC_NOTIFY_PATH")
        return cls(
            db_path=db_path or DEFAULT_DATA_DIR / "inventory.db",
            notify_path=Path(notify_path) if notify_path else None,
        )
