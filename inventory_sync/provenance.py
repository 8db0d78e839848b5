"""
Provenance Tracker.

Pure transitions over an entity's provenance. Every function takes the
existing provenance (sanitized first, never trusted) plus a timestamp
and returns a new ``Provenance``; callers persist the result.

Review states::

    None -> needs_review -> ai_modified <-> verified -> needs_review
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from .diff import Change, changed_fields
from .model import Actor, ChangeLogEntry, DataSource, Provenance, ReviewStatus

logger = logging.getLogger(__name__)


def sanitize_provenance(raw: Any) -> Provenance:
    """Return a clean copy of ``raw``.

    Accepts a ``Provenance`` or a wire dict. Unknown actors, review
    statuses and data sources are dropped, strings trimmed and malformed
    change-log entries discarded.
    """
    if isinstance(raw, Provenance):
        raw = raw.to_dict()
    return Provenance.from_dict(raw)


def needs_attention(status: ReviewStatus | None) -> bool:
    """Whether an entity in ``status`` belongs in the review queue."""
    return status in (ReviewStatus.NEEDS_REVIEW, ReviewStatus.AI_MODIFIED)


def mark_verified(provenance: Provenance | None, at: int) -> Provenance:
    """A human confirmed the entity. The change log is kept."""
    base = sanitize_provenance(provenance)
    return dataclasses.replace(
        base,
        last_edited_by=Actor.HUMAN,
        last_edited_at=at,
        review_status=ReviewStatus.VERIFIED,
        verified_at=at,
        verified_by=Actor.HUMAN,
        modified_fields=None,
    )


def mark_needs_review(provenance: Provenance | None, at: int) -> Provenance:
    """A human flagged the entity for another look."""
    base = sanitize_provenance(provenance)
    return dataclasses.replace(
        base,
        last_edited_by=Actor.HUMAN,
        last_edited_at=at,
        review_status=ReviewStatus.NEEDS_REVIEW,
        verified_at=None,
        verified_by=None,
    )


def _keep_verified(provenance: Provenance, at: int) -> Provenance:
    if provenance.review_status is not ReviewStatus.VERIFIED:
        return provenance
    return dataclasses.replace(
        provenance,
        verified_at=provenance.verified_at if provenance.verified_at is not None else at,
        verified_by=provenance.verified_by or Actor.HUMAN,
        modified_fields=None,
    )


def overlay_provenance(base: Provenance, patch: Provenance) -> Provenance:
    """Fields set on ``patch`` win over ``base``."""
    changes = {
        f.name: getattr(patch, f.name)
        for f in dataclasses.fields(patch)
        if getattr(patch, f.name) is not None
    }
    return dataclasses.replace(base, **changes)


def human_created(provenance: Provenance | None, at: int) -> Provenance:
    """Provenance for an entity created through the UI."""
    base = sanitize_provenance(provenance)
    result = dataclasses.replace(
        base,
        created_by=base.created_by or Actor.HUMAN,
        created_at=base.created_at if base.created_at is not None else at,
        last_edited_by=Actor.HUMAN,
        last_edited_at=at,
        modified_fields=None,
    )
    return _keep_verified(result, at)


def touch_for_human_edit(
    existing: Provenance | None,
    patch: Provenance | None,
    at: int,
) -> Provenance:
    """Provenance after a human edit. Editing a verified entity keeps it verified."""
    result = overlay_provenance(sanitize_provenance(existing), sanitize_provenance(patch))
    result = dataclasses.replace(result, last_edited_by=Actor.HUMAN, last_edited_at=at)
    return _keep_verified(result, at)


def for_new_import(incoming: Provenance | None, actor: Actor, at: int) -> Provenance:
    """Provenance for an imported entity with no local match."""
    base = sanitize_provenance(incoming)
    return dataclasses.replace(
        base,
        created_by=actor,
        created_at=at,
        last_edited_by=actor,
        last_edited_at=at,
        data_source=base.data_source or DataSource.ESTIMATED,
        review_status=ReviewStatus.NEEDS_REVIEW,
        verified_at=None,
        verified_by=None,
        modified_fields=None,
        change_log=None,
    )


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def for_changed_import(
    existing: Provenance | None,
    incoming: Provenance | None,
    changes: Sequence[Change],
    actor: Actor,
    at: int,
    session_id: str | None = None,
) -> Provenance:
    """Provenance for an imported entity whose tracked fields changed.

    ``modified_fields`` accumulates across imports until a human verifies
    the entity; one change-log entry is appended per change.
    """
    prev = sanitize_provenance(existing)
    inc = sanitize_provenance(incoming)
    merged = overlay_provenance(prev, inc)

    log = list(prev.change_log or [])
    log.extend(
        ChangeLogEntry(
            field=change.field,
            from_value=change.from_value,
            to_value=change.to_value,
            by=actor,
            at=at,
            session_id=session_id,
        )
        for change in changes
    )

    return dataclasses.replace(
        merged,
        created_by=prev.created_by or inc.created_by,
        created_at=prev.created_at if prev.created_at is not None else inc.created_at,
        verified_at=prev.verified_at if prev.verified_at is not None else inc.verified_at,
        verified_by=prev.verified_by or inc.verified_by,
        last_edited_by=actor,
        last_edited_at=at,
        review_status=ReviewStatus.AI_MODIFIED,
        modified_fields=_unique([*(prev.modified_fields or []), *changed_fields(changes)]),
        change_log=log,
    )
