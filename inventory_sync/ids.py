"""ID minting and recognition utilities.

Centralizes the id format knowledge so callers never need to
construct or inspect identifiers directly.

Local ids: {prefix}_{uuid4}  (e.g. ``i_0f6c...`` for an item)
Remote ids: server-assigned, always start with ``rec``.
"""

from __future__ import annotations

import time
import uuid

REMOTE_ID_PREFIX = "rec"


def new_id(prefix: str = "") -> str:
    """Mint a locally unique identifier."""
    ident = str(uuid.uuid4())
    return f"{prefix}_{ident}" if prefix else ident


def is_remote_id(value: object) -> bool:
    """Check whether a value looks like a server-assigned record id."""
    return isinstance(value, str) and value.startswith(REMOTE_ID_PREFIX)


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)
