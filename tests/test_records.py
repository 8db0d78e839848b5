"""
Tests for the remote row codec.
"""

import json

import pytest

from inventory_sync.config import SyncConfig
from inventory_sync.exceptions import RecordDecodeError
from inventory_sync.model import (
    Dimensions,
    EntityType,
    Item,
    Measurement,
    Option,
    Provenance,
    Room,
    Store,
    SubItem,
    SyncState,
)
from inventory_sync.remote import (
    ItemRow,
    MeasurementRow,
    NoteRow,
    RowEncoder,
    build_notes,
    decode_row,
    dims_to_text,
    parse_dims,
    split_notes,
)

SYNCED_AT = "2026-01-01T00:00:00+00:00"


@pytest.fixture
def config():
    return SyncConfig(token="t", base_id="app", table_id="tbl", sync_source="tests")


@pytest.fixture
def encoder(config):
    return RowEncoder(config, SYNCED_AT)


def resolve_all(entity_type, value):
    return f"rec_{value}" if value else None


def resolve_none(entity_type, value):
    return None


class TestNotesBlock:
    """Tests for notes block."""

    def test_build_and_split(self):
        """Notes and meta block survive a round trip."""
        notes = build_notes("Check the fabric", {"sort": 3})
        assert notes.startswith("Check the fabric\n\n--- app_meta ---")
        assert split_notes(notes) == ("Check the fabric", {"sort": 3})

    def test_no_meta_block(self):
        """No meta block."""
        assert split_notes("plain text") == ("plain text", {})

    def test_last_block_wins(self):
        """Last block wins."""
        notes = build_notes(build_notes("x", {"sort": 1}), {"sort": 2})
        _, meta = split_notes(notes)
        assert meta == {"sort": 2}

    def test_unreadable_block_ignored(self):
        """Unreadable block ignored."""
        text, meta = split_notes("hi\n--- app_meta ---\n{bad json\n--- /app_meta ---")
        assert text == "hi"
        assert meta == {}

    def test_non_string_notes(self):
        """Non string notes."""
        assert split_notes(None) == ("", {})


class TestDimensions:
    """Tests for dimensions."""

    def test_dims_to_text(self):
        """Dimensions render as W x D x H."""
        assert dims_to_text(Dimensions(w_in=80, d_in=35, h_in=30)) == "80x35x30 in"

    def test_missing_side(self):
        """Missing sides render as a question mark."""
        assert dims_to_text(Dimensions(w_in=80, h_in=30)) == "80x?x30 in"

    def test_parse_dims(self):
        """Dimension text parses back to inches."""
        assert parse_dims("80 x 35.5 × 30 in") == {"wIn": 80.0, "dIn": 35.5, "hIn": 30.0}
        assert parse_dims("about a metre") is None


class TestEncoding:
    """Tests for encoding."""

    def test_item_fields(self, encoder):
        """Items write their business columns."""
        item = Item(
            id="i_1",
            name="Sofa",
            room="Living",
            price=899.0,
            qty=2,
            priority=2.6,
            selected_option_id="o_1",
            tags=["blue"],
            notes="Velvet",
        )
        fields = encoder.encode(item, resolve_all)

        assert fields["Record Type"] == "Item"
        assert fields["Title"] == "Sofa"
        assert fields["Quantity"] == 2
        assert fields["Priority"] == 3
        assert fields["Selected Option Id"] == "rec_o_1"
        assert fields["Last Sync Source"] == "tests"
        assert fields["Last Sync At"] == SYNCED_AT
        text, meta = split_notes(fields["Notes"])
        assert text == "Velvet"
        assert meta["tags"] == ["blue"]
        assert "provenance" in meta

    def test_unresolved_selection_is_omitted(self, encoder):
        """Unresolved selection is omitted."""
        item = Item(id="i_1", name="Sofa", selected_option_id="o_local")
        fields = encoder.encode(item, resolve_none)
        assert "Selected Option Id" not in fields

    def test_option_final_total(self, encoder):
        """Option final total."""
        option = Option(
            id="o_1",
            item_id="i_1",
            title="Blue",
            price=100,
            shipping=10,
            tax_estimate=8,
            discount=5,
        )
        fields = encoder.encode(option, resolve_all)
        assert fields["Final Total"] == 113
        assert fields["Parent Item Record Id"] == "rec_i_1"

    def test_sub_item_parent(self, encoder):
        """Sub item parent."""
        fields = encoder.encode(SubItem(id="s_1", option_id="o_1", title="Legs"), resolve_all)
        assert fields["Record Type"] == "SubItem"
        assert fields["Parent Option Record Id"] == "rec_o_1"

    def test_measurement_units(self, encoder):
        """Measurement units."""
        fields = encoder.encode(
            Measurement(id="m_1", room="Living", label="Wall", value_in=100), resolve_all
        )
        assert fields["Value (in)"] == 100
        assert fields["Value (cm)"] == pytest.approx(254.0)

    def test_room_is_note_row(self, encoder):
        """Room is note row."""
        fields = encoder.encode(Room(id="Living", name="Living", notes="South facing"), resolve_all)
        assert fields["Record Type"] == "Note"
        assert fields["Room"] == "Living"

    def test_store_row(self, encoder):
        """Stores keep extra fields in the meta block."""
        fields = encoder.encode(Store(id="s_1", name="IKEA", trial="365 days"), resolve_all)
        assert fields["Title"] == "IKEA"
        assert split_notes(fields["Notes"])[1]["trial"] == "365 days"

    def test_custom_priority_field(self, config):
        """Priority goes to the configured column."""
        config.priority_field = "Prio"
        fields = RowEncoder(config, SYNCED_AT).encode(Item(id="i_1", priority=1), resolve_all)
        assert fields["Prio"] == 1
        assert "Priority" not in fields


class TestDecoding:
    """Tests for decoding."""

    def test_unknown_record_type(self):
        """Unknown discriminators are a decode error."""
        with pytest.raises(RecordDecodeError) as exc:
            decode_row({"id": "rec1", "fields": {"Record Type": "Gadget"}})
        assert exc.value.record_id == "rec1"

    def test_missing_id(self):
        """Rows without an id are rejected."""
        with pytest.raises(RecordDecodeError):
            decode_row({"fields": {"Record Type": "Item"}})

    def test_missing_fields(self):
        """Rows without a field map are rejected."""
        with pytest.raises(RecordDecodeError):
            decode_row({"id": "rec1"})

    def test_item_row(self, config):
        """Item rows decode to clean items."""
        meta = {
            "category": "Seating",
            "tags": ["blue"],
            "createdAt": 5,
            "provenance": {"createdBy": "ai", "reviewStatus": "needs_review"},
        }
        row = decode_row(
            {
                "id": "rec1",
                "fields": {
                    "Record Type": "Item",
                    "Title": "Sofa",
                    "Room": "Living",
                    "Price": 899,
                    "Notes": build_notes("Velvet", meta),
                    "Dimensions": "80x35x30 in",
                },
            }
        )
        assert isinstance(row, ItemRow)

        item = row.to_entity(config)
        assert item.id == "rec1"
        assert item.remote_id == "rec1"
        assert item.sync_state is SyncState.CLEAN
        assert item.category == "Seating"
        assert item.notes == "Velvet"
        assert item.created_at == 5
        assert item.dimensions == Dimensions(w_in=80, h_in=30, d_in=35)
        assert item.provenance.review_status.value == "needs_review"

    def test_measurement_in_cm(self, config):
        """Measurement in cm."""
        row = decode_row(
            {
                "id": "rec2",
                "fields": {"Record Type": "Measurement", "Value": 254, "Unit Entered": "cm"},
            }
        )
        assert isinstance(row, MeasurementRow)
        measurement = row.to_entity(config)
        assert measurement.value_in == pytest.approx(100)
        assert measurement.room == "Living"

    def test_note_row_keeps_room_id(self, config):
        """Note row keeps room id."""
        row = decode_row({"id": "rec3", "fields": {"Record Type": "Note", "Room": "Kitchen"}})
        assert isinstance(row, NoteRow)
        room = row.to_entity(config)
        assert room.id == "Kitchen"
        assert room.remote_id == "rec3"

    def test_option_discount_defaults_to_amount(self, config):
        """Option discount defaults to amount."""
        row = decode_row(
            {"id": "rec4", "fields": {"Record Type": "Option", "Title": "Blue", "Discount": 20}}
        )
        option = row.to_entity(config)
        assert option.discount_type == "amount"
        assert option.discount_value == 20

    def test_encoded_item_decodes_to_same_business_fields(self, encoder, config):
        """Encoded item decodes to same business fields."""
        item = Item(
            id="rec9",
            remote_id="rec9",
            name="Lamp",
            room="Bedroom2",
            category="Lighting",
            status="Ordered",
            price=120.5,
            specs={"bulb": "E27"},
            provenance=Provenance(source_ref="shop"),
            created_at=10,
            updated_at=20,
        )
        fields = encoder.encode(item, resolve_all)
        decoded = decode_row({"id": "rec9", "fields": json.loads(json.dumps(fields))})
        back = decoded.to_entity(config)

        assert back.entity_type is EntityType.ITEM
        assert (back.name, back.room, back.category, back.status) == (
            "Lamp",
            "Bedroom2",
            "Lighting",
            "Ordered",
        )
        assert back.specs == {"bulb": "E27"}
        assert back.provenance.source_ref == "shop"
        assert (back.created_at, back.updated_at) == (10, 20)
