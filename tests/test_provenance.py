"""
Tests for provenance transitions.
"""

from inventory_sync.diff import Change
from inventory_sync.model import Actor, ChangeLogEntry, DataSource, Provenance, ReviewStatus
from inventory_sync.provenance import (
    for_changed_import,
    for_new_import,
    human_created,
    mark_needs_review,
    mark_verified,
    needs_attention,
    sanitize_provenance,
    touch_for_human_edit,
)

T0 = 1_700_000_000_000
T1 = T0 + 60_000


class TestSanitize:
    """Tests for provenance sanitizing."""

    def test_unknown_values_dropped(self):
        """Unknown values dropped."""
        prov = sanitize_provenance(
            {"createdBy": "robot", "reviewStatus": "maybe", "dataSource": "concrete"}
        )
        assert prov.created_by is None
        assert prov.review_status is None
        assert prov.data_source is DataSource.CONCRETE

    def test_strings_trimmed(self):
        """Strings trimmed."""
        assert sanitize_provenance({"sourceRef": "  catalog p.4 "}).source_ref == "catalog p.4"

    def test_malformed_change_log_entries_dropped(self):
        """Malformed change log entries dropped."""
        prov = sanitize_provenance(
            {"changeLog": [{"field": "price", "at": T0, "by": "ai"}, "junk", {"at": T0}]}
        )
        assert [e.field for e in prov.change_log] == ["price"]

    def test_non_dict_is_empty(self):
        """Non dict is empty."""
        assert sanitize_provenance(None) == Provenance()
        assert sanitize_provenance("nope") == Provenance()

    def test_accepts_provenance_instance(self):
        """Accepts provenance instance."""
        original = Provenance(created_by=Actor.AI, created_at=T0)
        assert sanitize_provenance(original) == original


class TestReviewActions:
    """Tests for review actions."""

    def test_mark_verified(self):
        """Verifying clears modified fields and stamps the human."""
        before = Provenance(
            review_status=ReviewStatus.AI_MODIFIED,
            modified_fields=["price"],
            change_log=[ChangeLogEntry("price", 1, 2, Actor.AI, T0)],
        )
        after = mark_verified(before, T1)
        assert after.review_status is ReviewStatus.VERIFIED
        assert after.verified_at == T1
        assert after.verified_by is Actor.HUMAN
        assert after.last_edited_by is Actor.HUMAN
        assert after.modified_fields is None
        assert len(after.change_log) == 1

    def test_mark_needs_review_clears_verification(self):
        """Mark needs review clears verification."""
        verified = mark_verified(Provenance(), T0)
        after = mark_needs_review(verified, T1)
        assert after.review_status is ReviewStatus.NEEDS_REVIEW
        assert after.verified_at is None
        assert after.verified_by is None

    def test_needs_attention(self):
        """Only needs_review and ai_modified need attention."""
        assert needs_attention(ReviewStatus.NEEDS_REVIEW)
        assert needs_attention(ReviewStatus.AI_MODIFIED)
        assert not needs_attention(ReviewStatus.VERIFIED)
        assert not needs_attention(None)


class TestHumanEdits:
    """Tests for human edits."""

    def test_human_created(self):
        """UI-created entities are attributed to the human."""
        prov = human_created(None, T0)
        assert prov.created_by is Actor.HUMAN
        assert prov.created_at == T0
        assert prov.last_edited_at == T0

    def test_editing_verified_entity_stays_verified(self):
        """Editing verified entity stays verified."""
        verified = mark_verified(Provenance(), T0)
        edited = touch_for_human_edit(verified, None, T1)
        assert edited.review_status is ReviewStatus.VERIFIED
        assert edited.verified_at == T0
        assert edited.last_edited_at == T1

    def test_patch_overlays_existing(self):
        """Patch overlays existing."""
        existing = Provenance(data_source=DataSource.ESTIMATED, source_ref="quote")
        edited = touch_for_human_edit(existing, {"dataSource": "concrete"}, T1)
        assert edited.data_source is DataSource.CONCRETE
        assert edited.source_ref == "quote"


class TestImports:
    """Tests for imports."""

    def test_new_import(self):
        """Imported entities start in needs_review."""
        prov = for_new_import(
            Provenance(review_status=ReviewStatus.VERIFIED, verified_at=T0), Actor.AI, T1
        )
        assert prov.created_by is Actor.AI
        assert prov.created_at == T1
        assert prov.review_status is ReviewStatus.NEEDS_REVIEW
        assert prov.data_source is DataSource.ESTIMATED
        assert prov.verified_at is None
        assert prov.change_log is None

    def test_new_import_keeps_declared_data_source(self):
        """New import keeps declared data source."""
        prov = for_new_import(Provenance(data_source=DataSource.CONCRETE), Actor.IMPORT, T1)
        assert prov.data_source is DataSource.CONCRETE

    def test_changed_import_appends_log(self):
        """Changed import appends log."""
        existing = Provenance(
            created_by=Actor.HUMAN,
            created_at=T0,
            review_status=ReviewStatus.VERIFIED,
            verified_at=T0,
            verified_by=Actor.HUMAN,
        )
        changes = [Change("price", 899.0, 749.0)]
        prov = for_changed_import(existing, None, changes, Actor.AI, T1, session_id="import_1")

        assert prov.review_status is ReviewStatus.AI_MODIFIED
        assert prov.modified_fields == ["price"]
        assert prov.created_by is Actor.HUMAN
        assert prov.created_at == T0
        assert prov.verified_at == T0
        assert prov.last_edited_by is Actor.AI
        assert prov.change_log == [
            ChangeLogEntry("price", 899.0, 749.0, Actor.AI, T1, session_id="import_1")
        ]

    def test_modified_fields_accumulate_without_duplicates(self):
        """Modified fields accumulate without duplicates."""
        first = for_changed_import(None, None, [Change("price", 1, 2)], Actor.AI, T0)
        second = for_changed_import(
            first, None, [Change("link", None, "x"), Change("price", 2, 3)], Actor.AI, T1
        )
        assert second.modified_fields == ["price", "link"]
        assert len(second.change_log) == 3
