"""
Tracked field specifications.

A field spec names a business field (by its wire path, e.g.
``dimensions.wIn``), how to read it from an entity, and how to normalize
it so that cosmetic differences (whitespace, tag order, numeric strings)
never register as changes. Bookkeeping fields such as ``updatedAt`` or
``syncState`` are deliberately absent from every list.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..model import EntityType
from ..model.types import MEASUREMENT_CONFIDENCES

Normalizer = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldSpec:
    """How to read and normalize one tracked field."""

    field: str
    get: Callable[[Any], Any]
    normalize: Normalizer | None = None


def _raw(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def normalize_string(value: Any) -> str:
    value = _raw(value)
    return str(value if value is not None else "").strip()


def normalize_optional_string(value: Any) -> str | None:
    value = _raw(value)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_optional_number(value: Any) -> float | int | None:
    """Coerce to a finite number; anything else collapses to None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip() or "nan")
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def normalize_string_array(value: Any) -> str:
    """Canonical form of a tag list: trimmed, sorted, joined. Case is kept."""
    if not isinstance(value, (list, tuple)):
        return ""
    cleaned = sorted(
        text for text in (str(v if v is not None else "").strip() for v in value) if text
    )
    return "|".join(cleaned)


def normalize_boolean(value: Any) -> bool:
    return bool(value)


def normalize_confidence(value: Any) -> str | None:
    text = normalize_string(value)
    return text if text in MEASUREMENT_CONFIDENCES else None


def normalize_data_source(value: Any) -> str | None:
    text = normalize_string(value)
    return text if text in ("concrete", "estimated") else None


def normalize_spec_value(value: Any) -> str | int | float | bool | None:
    """Normalize one value of a free-form specs map."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return normalize_string(value)
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    return normalize_optional_string(value)


def _dim(attr: str) -> Callable[[Any], Any]:
    return lambda e: getattr(e.dimensions, attr) if e.dimensions else None


_PROVENANCE_FIELDS = [
    FieldSpec("provenance.dataSource", lambda e: e.provenance.data_source, normalize_data_source),
    FieldSpec(
        "provenance.sourceRef", lambda e: e.provenance.source_ref, normalize_optional_string
    ),
]

MEASUREMENT_TRACKED_FIELDS = [
    FieldSpec("room", lambda m: m.room, normalize_string),
    FieldSpec("label", lambda m: m.label, normalize_string),
    FieldSpec("valueIn", lambda m: m.value_in, normalize_optional_number),
    FieldSpec("sort", lambda m: m.sort, normalize_optional_number),
    FieldSpec("confidence", lambda m: m.confidence, normalize_confidence),
    FieldSpec("forCategory", lambda m: m.for_category, normalize_optional_string),
    FieldSpec("forItemId", lambda m: m.for_item_id, normalize_optional_string),
    FieldSpec("notes", lambda m: m.notes, normalize_optional_string),
    *_PROVENANCE_FIELDS,
]

# Item and Option specs maps are compared per key by the diff engine.
ITEM_TRACKED_FIELDS = [
    FieldSpec("name", lambda i: i.name, normalize_string),
    FieldSpec("room", lambda i: i.room, normalize_string),
    FieldSpec("category", lambda i: i.category, normalize_string),
    FieldSpec("status", lambda i: i.status, normalize_string),
    FieldSpec("selectedOptionId", lambda i: i.selected_option_id, normalize_optional_string),
    FieldSpec("sort", lambda i: i.sort, normalize_optional_number),
    FieldSpec("price", lambda i: i.price, normalize_optional_number),
    FieldSpec("qty", lambda i: i.qty, normalize_optional_number),
    FieldSpec("store", lambda i: i.store, normalize_optional_string),
    FieldSpec("link", lambda i: i.link, normalize_optional_string),
    FieldSpec("notes", lambda i: i.notes, normalize_optional_string),
    FieldSpec("priority", lambda i: i.priority, normalize_optional_number),
    FieldSpec("tags", lambda i: i.tags, normalize_string_array),
    FieldSpec("dimensions.wIn", _dim("w_in"), normalize_optional_number),
    FieldSpec("dimensions.hIn", _dim("h_in"), normalize_optional_number),
    FieldSpec("dimensions.dIn", _dim("d_in"), normalize_optional_number),
    *_PROVENANCE_FIELDS,
]

OPTION_TRACKED_FIELDS = [
    FieldSpec("itemId", lambda o: o.item_id, normalize_string),
    FieldSpec("title", lambda o: o.title, normalize_string),
    FieldSpec("sort", lambda o: o.sort, normalize_optional_number),
    FieldSpec("store", lambda o: o.store, normalize_optional_string),
    FieldSpec("link", lambda o: o.link, normalize_optional_string),
    FieldSpec("promoCode", lambda o: o.promo_code, normalize_optional_string),
    FieldSpec("price", lambda o: o.price, normalize_optional_number),
    FieldSpec("shipping", lambda o: o.shipping, normalize_optional_number),
    FieldSpec("taxEstimate", lambda o: o.tax_estimate, normalize_optional_number),
    FieldSpec("discount", lambda o: o.discount, normalize_optional_number),
    FieldSpec("dimensionsText", lambda o: o.dimensions_text, normalize_optional_string),
    FieldSpec("dimensions.wIn", _dim("w_in"), normalize_optional_number),
    FieldSpec("dimensions.hIn", _dim("h_in"), normalize_optional_number),
    FieldSpec("dimensions.dIn", _dim("d_in"), normalize_optional_number),
    FieldSpec("notes", lambda o: o.notes, normalize_optional_string),
    FieldSpec("priority", lambda o: o.priority, normalize_optional_number),
    FieldSpec("tags", lambda o: o.tags, normalize_string_array),
    FieldSpec("selected", lambda o: o.selected, normalize_boolean),
    FieldSpec("sourceItemId", lambda o: o.source_item_id, normalize_optional_string),
    *_PROVENANCE_FIELDS,
]

SUB_ITEM_TRACKED_FIELDS = [
    FieldSpec("optionId", lambda s: s.option_id, normalize_string),
    FieldSpec("title", lambda s: s.title, normalize_string),
    FieldSpec("qty", lambda s: s.qty, normalize_optional_number),
    FieldSpec("price", lambda s: s.price, normalize_optional_number),
    FieldSpec("sort", lambda s: s.sort, normalize_optional_number),
    FieldSpec("notes", lambda s: s.notes, normalize_optional_string),
    *_PROVENANCE_FIELDS,
]

ROOM_TRACKED_FIELDS = [
    FieldSpec("name", lambda r: r.name, normalize_string),
    FieldSpec("sort", lambda r: r.sort, normalize_optional_number),
    FieldSpec("notes", lambda r: r.notes, normalize_optional_string),
    *_PROVENANCE_FIELDS,
]

STORE_TRACKED_FIELDS = [
    FieldSpec("name", lambda s: s.name, normalize_string),
    FieldSpec("sort", lambda s: s.sort, normalize_optional_number),
    FieldSpec("discountType", lambda s: s.discount_type, normalize_optional_string),
    FieldSpec("discountValue", lambda s: s.discount_value, normalize_optional_number),
    FieldSpec("deliveryInfo", lambda s: s.delivery_info, normalize_optional_string),
    FieldSpec("extraWarranty", lambda s: s.extra_warranty, normalize_optional_string),
    FieldSpec("trial", lambda s: s.trial, normalize_optional_string),
    FieldSpec("apr", lambda s: s.apr, normalize_optional_string),
    FieldSpec("notes", lambda s: s.notes, normalize_optional_string),
    *_PROVENANCE_FIELDS,
]

TRACKED_FIELDS: dict[EntityType, list[FieldSpec]] = {
    EntityType.ITEM: ITEM_TRACKED_FIELDS,
    EntityType.OPTION: OPTION_TRACKED_FIELDS,
    EntityType.SUB_ITEM: SUB_ITEM_TRACKED_FIELDS,
    EntityType.MEASUREMENT: MEASUREMENT_TRACKED_FIELDS,
    EntityType.ROOM: ROOM_TRACKED_FIELDS,
    EntityType.STORE: STORE_TRACKED_FIELDS,
}

# Free-form key/value map attributes diffed per key: (attribute, wire prefix)
MAP_FIELDS: dict[EntityType, tuple[str, str]] = {
    EntityType.ITEM: ("specs", "specs"),
    EntityType.OPTION: ("specs", "specs"),
}
