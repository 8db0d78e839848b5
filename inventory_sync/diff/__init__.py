"""
Diff Engine.

Field-level comparison of two versions of an entity, used by merge
imports to decide whether anything a human cares about changed.
"""

from .engine import Change, changed_fields, diff, diff_entity, diff_map, values_equal
from .fields import (
    ITEM_TRACKED_FIELDS,
    MEASUREMENT_TRACKED_FIELDS,
    OPTION_TRACKED_FIELDS,
    ROOM_TRACKED_FIELDS,
    STORE_TRACKED_FIELDS,
    SUB_ITEM_TRACKED_FIELDS,
    TRACKED_FIELDS,
    FieldSpec,
    normalize_boolean,
    normalize_optional_number,
    normalize_optional_string,
    normalize_string,
    normalize_string_array,
)

__all__ = [
    "Change",
    "FieldSpec",
    "diff",
    "diff_map",
    "diff_entity",
    "changed_fields",
    "values_equal",
    "TRACKED_FIELDS",
    "ITEM_TRACKED_FIELDS",
    "OPTION_TRACKED_FIELDS",
    "SUB_ITEM_TRACKED_FIELDS",
    "MEASUREMENT_TRACKED_FIELDS",
    "ROOM_TRACKED_FIELDS",
    "STORE_TRACKED_FIELDS",
    "normalize_string",
    "normalize_optional_string",
    "normalize_optional_number",
    "normalize_string_array",
    "normalize_boolean",
]
