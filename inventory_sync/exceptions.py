"""
Custom exceptions for the inventory sync engine.

Every component raises these exceptions so callers can tell a
configuration problem from a remote rejection from a dead network.
Per-record push failures are not exceptions: they are collected
and returned as data.
"""

import re

# Remote messages that mean "the row you tried to update no longer exists".
NOT_FOUND_PATTERN = re.compile(
    r"not[ _-]?found|does not exist|ROW_DOES_NOT_EXIST|INVALID_RECORD_ID|MODEL_ID_NOT_FOUND",
    re.IGNORECASE,
)


class InventorySyncError(Exception):
    """Base exception for all inventory sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(InventorySyncError):
    """Raised when a required credential or identifier is missing."""

    def __init__(self, setting: str, reason: str | None = None):
        details = {"setting": setting}
        if reason:
            details["reason"] = reason
        message = f"Missing {setting} configuration"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.setting = setting
        self.reason = reason


class RemoteApiError(InventorySyncError):
    """Raised when the remote table API answers with a non-2xx status.

    Batch helpers attach ``completed`` (rows already accepted by earlier
    chunks of the same call) and ``failed_offset`` (index of the first
    record of the rejected chunk) so callers can resume without
    recreating rows that already exist.
    """

    def __init__(
        self,
        status: int,
        body: str,
        method: str | None = None,
        url: str | None = None,
    ):
        details: dict = {"status": status, "body": body}
        if method:
            details["method"] = method
        if url:
            details["url"] = url
        super().__init__(f"Remote API error {status}: {body}", details)
        self.status = status
        self.body = body
        self.method = method
        self.url = url
        self.completed: list[dict] = []
        self.failed_offset: int = 0

    def is_not_found(self) -> bool:
        """Check whether the remote reported the target record as missing."""
        return self.status == 404 or bool(NOT_FOUND_PATTERN.search(self.body or ""))


class TransportError(InventorySyncError):
    """Raised when the remote endpoint cannot be reached at all.

    Note: Named TransportError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Transport failure talking to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class RecordDecodeError(InventorySyncError):
    """Raised when a remote row cannot be decoded into an entity."""

    def __init__(self, record_id: str | None, reason: str):
        details = {"record_id": record_id, "reason": reason}
        super().__init__(f"Cannot decode remote record {record_id}: {reason}", details)
        self.record_id = record_id
        self.reason = reason


class StorageIOError(InventorySyncError):
    """Raised when a local store operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class EntityNotFoundError(InventorySyncError):
    """Raised when an entity is not present in the local store."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateNameError(InventorySyncError):
    """Raised when a rename would collide with an existing entity name."""

    def __init__(self, entity_type: str, name: str):
        super().__init__(
            f"{entity_type} name already exists: {name}",
            {"entity_type": entity_type, "name": name},
        )
        self.entity_type = entity_type
        self.name = name


class BundleFormatError(InventorySyncError):
    """Raised when an import bundle is not in a recognized format."""

    def __init__(self, reason: str, keys: list[str] | None = None):
        details: dict = {"reason": reason}
        message = f"Unrecognized import format: {reason}"
        if keys:
            details["keys"] = keys
            message += f" (keys: {', '.join(keys)})"
        super().__init__(message, details)
        self.reason = reason
        self.keys = keys or []
