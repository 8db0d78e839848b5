"""
Local Store.

SQLite persistence per entity collection plus a metadata map, and the
change notifier fired after local mutations.
"""

from .file_ops import read_json, write_json_atomic
from .notify import ChangeNotifier
from .store import (
    META_HOME,
    META_LAST_SYNC_AT,
    META_LAST_SYNC_SUMMARY,
    META_PLANNER,
    META_UNIT_PREFERENCE,
    LocalStore,
    MetaLookup,
    MetaStatus,
    Snapshot,
)

__all__ = [
    "LocalStore",
    "MetaLookup",
    "MetaStatus",
    "Snapshot",
    "ChangeNotifier",
    "read_json",
    "write_json_atomic",
    "META_LAST_SYNC_AT",
    "META_LAST_SYNC_SUMMARY",
    "META_UNIT_PREFERENCE",
    "META_HOME",
    "META_PLANNER",
]
