"""
Tests for the SQLite local store.

Uses real SQLite (in-memory) for accurate testing.
"""

import pytest

from inventory_sync.config import LocalStoreConfig
from inventory_sync.exceptions import StorageIOError
from inventory_sync.local import (
    META_LAST_SYNC_AT,
    ChangeNotifier,
    LocalStore,
    MetaStatus,
    read_json,
)
from inventory_sync.model import EntityType, Item, Measurement, Option, Room, SubItem, SyncState


class TestLocalStoreInitialization:
    """Tests for local store initialization."""

    @pytest.mark.asyncio
    async def test_create_in_memory(self):
        """Store creates with an in-memory database."""
        store = await LocalStore.create(LocalStoreConfig(db_path=":memory:"))
        assert store._initialized is True
        await store.close()

    @pytest.mark.asyncio
    async def test_create_on_disk(self, tmp_path):
        """Data on disk survives a reopen."""
        path = tmp_path / "nested" / "inventory.db"
        store = await LocalStore.create(LocalStoreConfig(db_path=path))
        await store.put(Item(id="i_1", name="Lamp", room="Living"))
        await store.close()

        reopened = await LocalStore.create(LocalStoreConfig(db_path=path))
        assert (await reopened.get(EntityType.ITEM, "i_1")).name == "Lamp"
        await reopened.close()

    @pytest.mark.asyncio
    async def test_operations_before_initialize_raise(self):
        """Operations before initialize raise."""
        store = LocalStore(LocalStoreConfig(db_path=":memory:"))
        with pytest.raises(StorageIOError):
            await store.get(EntityType.ITEM, "i_1")


class TestEntityOperations:
    """Tests for entity operations."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        """Can put and retrieve an entity."""
        item = Item(id="i_1", name="Sofa", room="Living", price=899.0, tags=["blue"])
        await store.put(item)
        assert await store.get(EntityType.ITEM, "i_1") == item

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        """Unknown ids return None."""
        assert await store.get(EntityType.ITEM, "nope") is None

    @pytest.mark.asyncio
    async def test_list_pending(self, store):
        """Pending lists dirty and deleted entities."""
        await store.bulk_put(
            EntityType.ITEM,
            [
                Item(id="i_1", name="A", sync_state=SyncState.CLEAN),
                Item(id="i_2", name="B", sync_state=SyncState.DIRTY),
                Item(id="i_3", name="C", sync_state=SyncState.DELETED),
            ],
        )
        pending = await store.list_pending(EntityType.ITEM)
        assert [e.id for e in pending] == ["i_2", "i_3"]

    @pytest.mark.asyncio
    async def test_delete(self, store):
        """Delete reports whether a row was removed."""
        await store.put(Item(id="i_1", name="A"))
        assert await store.delete(EntityType.ITEM, "i_1") is True
        assert await store.delete(EntityType.ITEM, "i_1") is False

    @pytest.mark.asyncio
    async def test_bulk_delete(self, store):
        """Bulk delete removes only the given ids."""
        await store.bulk_put(EntityType.ITEM, [Item(id=f"i_{n}", name="x") for n in range(3)])
        assert await store.bulk_delete(EntityType.ITEM, ["i_0", "i_2"]) == 2
        assert [e.id for e in await store.list_all(EntityType.ITEM)] == ["i_1"]

    @pytest.mark.asyncio
    async def test_mark_clean(self, store):
        """Mark clean skips unknown ids."""
        await store.put(Item(id="i_1", name="A"))
        assert await store.mark_clean(EntityType.ITEM, ["i_1", "missing"]) == 1
        assert (await store.get(EntityType.ITEM, "i_1")).sync_state is SyncState.CLEAN

    @pytest.mark.asyncio
    async def test_counts(self, store):
        """Counts group entities by sync state."""
        await store.bulk_put(
            EntityType.ITEM,
            [Item(id="i_1", sync_state=SyncState.CLEAN), Item(id="i_2"), Item(id="i_3")],
        )
        counts = await store.counts()
        assert counts[EntityType.ITEM] == {"clean": 1, "dirty": 2}
        assert counts[EntityType.ROOM] == {}


class TestRekey:
    """Tests for id promotion."""

    @pytest.mark.asyncio
    async def test_rekey_rewrites_every_reference(self, store):
        """Rekey rewrites every reference."""
        await store.put(Item(id="i_1", name="Sofa", selected_option_id="o_1"))
        await store.put(Option(id="o_1", item_id="i_1", title="Blue"))
        await store.put(Option(id="o_2", item_id="i_1", title="Grey", source_item_id="i_1"))
        await store.put(Measurement(id="m_1", room="Living", for_item_id="i_1"))

        promoted, rewritten = await store.rekey(EntityType.ITEM, "i_1", "rec00000000000001")

        assert promoted.id == "rec00000000000001"
        assert promoted.remote_id == "rec00000000000001"
        assert promoted.sync_state is SyncState.CLEAN
        assert promoted.selected_option_id == "o_1"
        assert await store.get(EntityType.ITEM, "i_1") is None
        assert rewritten == 4

        options = await store.list_all(EntityType.OPTION)
        assert {o.item_id for o in options} == {"rec00000000000001"}
        assert options[1].source_item_id == "rec00000000000001"
        measurement = await store.get(EntityType.MEASUREMENT, "m_1")
        assert measurement.for_item_id == "rec00000000000001"

    @pytest.mark.asyncio
    async def test_dependents_keep_their_sync_state(self, store):
        """Dependents keep their sync state."""
        await store.put(Option(id="o_1", item_id="i_1", title="Blue"))
        await store.put(SubItem(id="s_1", option_id="o_1", sync_state=SyncState.CLEAN))
        await store.put(Item(id="i_1", name="Sofa", selected_option_id="o_1"))

        await store.rekey(EntityType.OPTION, "o_1", "rec00000000000002")

        sub_item = await store.get(EntityType.SUB_ITEM, "s_1")
        assert sub_item.option_id == "rec00000000000002"
        assert sub_item.sync_state is SyncState.CLEAN
        item = await store.get(EntityType.ITEM, "i_1")
        assert item.selected_option_id == "rec00000000000002"
        assert item.sync_state is SyncState.DIRTY

    @pytest.mark.asyncio
    async def test_keep_id_for_natural_keys(self, store):
        """Keep id for natural keys."""
        await store.put(Room(id="Living", name="Living"))
        await store.put(Item(id="i_1", room="Living"))

        promoted, rewritten = await store.rekey(
            EntityType.ROOM, "Living", "rec00000000000003", keep_id=True
        )

        assert promoted.id == "Living"
        assert promoted.remote_id == "rec00000000000003"
        assert rewritten == 0
        assert (await store.get(EntityType.ITEM, "i_1")).room == "Living"

    @pytest.mark.asyncio
    async def test_rekey_missing_returns_none(self, store):
        """Rekey missing returns none."""
        assert await store.rekey(EntityType.ITEM, "ghost", "rec00000000000004") is None

    @pytest.mark.asyncio
    async def test_rekey_keeps_provenance(self, store):
        """Rekey keeps provenance."""
        item = Item(id="i_1", name="Sofa")
        item.provenance.source_ref = "catalog"
        await store.put(item)
        promoted, _ = await store.rekey(EntityType.ITEM, "i_1", "rec00000000000005")
        assert promoted.provenance.source_ref == "catalog"


class TestMetadata:
    """Tests for metadata."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        """Can set and read a metadata value."""
        await store.set_meta(META_LAST_SYNC_AT, 1234)
        lookup = await store.get_meta(META_LAST_SYNC_AT)
        assert lookup.found
        assert lookup.value == 1234

    @pytest.mark.asyncio
    async def test_not_found(self, store):
        """Missing keys report not found."""
        lookup = await store.get_meta("missing")
        assert lookup.status is MetaStatus.NOT_FOUND
        assert lookup.value_or("default") == "default"

    @pytest.mark.asyncio
    async def test_malformed_value(self, store):
        """Unparseable values report malformed."""
        await store.conn.execute("INSERT INTO meta (key, value) VALUES (?, ?)", ("bad", "{oops"))
        lookup = await store.get_meta("bad")
        assert lookup.status is MetaStatus.MALFORMED
        assert lookup.error

    @pytest.mark.asyncio
    async def test_reset_all_keeps_meta(self, store):
        """Reset all keeps meta."""
        await store.put(Item(id="i_1"))
        await store.set_meta("unitPreference", "cm")
        await store.reset_all()
        assert await store.list_all(EntityType.ITEM) == []
        assert (await store.get_meta("unitPreference")).value == "cm"

    @pytest.mark.asyncio
    async def test_snapshot(self, store):
        """Snapshot carries entities and metadata."""
        await store.put(Item(id="i_1"))
        await store.put(Item(id="i_2", sync_state=SyncState.CLEAN))
        await store.set_meta("home", {"name": "Flat"})
        snap = await store.snapshot()
        assert [e.id for e in snap.pending(EntityType.ITEM)] == ["i_1"]
        assert snap.meta == {"home": {"name": "Flat"}}


class TestChangeNotifier:
    """Tests for change notifier."""

    @pytest.mark.asyncio
    async def test_subscribers_called(self):
        """Sync and async subscribers are called."""
        notifier = ChangeNotifier()
        seen = []

        async def on_change(reason):
            seen.append(reason)

        unsubscribe = notifier.subscribe(on_change)
        notifier.subscribe(lambda reason: seen.append(f"sync:{reason}"))
        await notifier.notify("import")
        unsubscribe()
        await notifier.notify("sync")
        assert seen == ["import", "sync:import", "sync:sync"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_raise(self):
        """Failing subscriber does not raise."""
        notifier = ChangeNotifier()
        seen = []

        def broken(reason):
            raise RuntimeError("view gone")

        notifier.subscribe(broken)
        notifier.subscribe(seen.append)
        await notifier.notify("changed")
        assert seen == ["changed"]

    @pytest.mark.asyncio
    async def test_marker_file_written(self, tmp_path):
        """Marker file written."""
        marker = tmp_path / "changed.json"
        notifier = ChangeNotifier(marker)
        await notifier.notify("update:items")
        await notifier.notify("delete:items")
        data = await read_json(marker)
        assert data["reason"] == "delete:items"
        assert data["sequence"] == 2
