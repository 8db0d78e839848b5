"""
Remote Client Adapter.

aiohttp client for the remote table plus the codec between entities and
remote rows.
"""

from .client import AirtableClient, RawRow, chunked
from .records import (
    RECORD_TYPE_FIELD,
    ItemRow,
    MeasurementRow,
    NoteRow,
    OptionRow,
    RecordType,
    RemoteRow,
    RowEncoder,
    StoreRow,
    SubItemRow,
    build_notes,
    decode_row,
    dims_to_text,
    parse_dims,
    split_notes,
)

__all__ = [
    "AirtableClient",
    "RawRow",
    "RemoteRow",
    "chunked",
    "RECORD_TYPE_FIELD",
    "RecordType",
    "RowEncoder",
    "ItemRow",
    "OptionRow",
    "SubItemRow",
    "MeasurementRow",
    "NoteRow",
    "StoreRow",
    "build_notes",
    "split_notes",
    "decode_row",
    "dims_to_text",
    "parse_dims",
]
