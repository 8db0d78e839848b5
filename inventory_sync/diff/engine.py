"""
Field-level comparator.

Produces an ordered change list between two versions of an entity:
fixed fields first in declaration order, then per-key map changes sorted
by key. Pure functions only; nothing here touches storage.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ..model import Entity
from .fields import MAP_FIELDS, TRACKED_FIELDS, FieldSpec, normalize_spec_value


@dataclass(frozen=True)
class Change:
    """One field whose normalized value differs."""

    field: str
    from_value: Any
    to_value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "from": self.from_value, "to": self.to_value}


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def values_equal(a: Any, b: Any) -> bool:
    """Compare normalized values; None equals None and NaN equals NaN."""
    if a is None or b is None:
        return a is None and b is None
    if _is_nan(a) and _is_nan(b):
        return True
    # True == 1 in Python; a flag flipping to a number is still a change.
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def diff(existing: Any, incoming: Any, field_specs: Sequence[FieldSpec]) -> list[Change]:
    """Diff two values of the same shape over the given field specs."""
    changes: list[Change] = []
    for spec in field_specs:
        normalize = spec.normalize or (lambda v: v)
        before = normalize(spec.get(existing))
        after = normalize(spec.get(incoming))
        if not values_equal(before, after):
            changes.append(Change(spec.field, before, after))
    return changes


def diff_map(
    existing: dict[str, Any] | None,
    incoming: dict[str, Any] | None,
    prefix: str,
) -> list[Change]:
    """Diff two free-form maps key by key over the union of their keys."""
    a = existing if isinstance(existing, dict) else {}
    b = incoming if isinstance(incoming, dict) else {}
    changes: list[Change] = []
    for key in sorted(set(a) | set(b)):
        before = normalize_spec_value(a.get(key))
        after = normalize_spec_value(b.get(key))
        if not values_equal(before, after):
            changes.append(Change(f"{prefix}.{key}", before, after))
    return changes


def diff_entity(existing: Entity, incoming: Entity) -> list[Change]:
    """Diff two versions of an entity over its tracked business fields."""
    entity_type = existing.entity_type
    changes = diff(existing, incoming, TRACKED_FIELDS[entity_type])
    if entity_type in MAP_FIELDS:
        attr, prefix = MAP_FIELDS[entity_type]
        changes.extend(diff_map(getattr(existing, attr), getattr(incoming, attr), prefix))
    return changes


def changed_fields(changes: Sequence[Change]) -> list[str]:
    """Distinct field names of a change list, first occurrence order."""
    seen: dict[str, None] = {}
    for change in changes:
        seen.setdefault(change.field, None)
    return list(seen)
