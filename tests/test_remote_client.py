"""
Tests for the remote table client against the fake table server.
"""

import pytest

from inventory_sync.config import SyncConfig
from inventory_sync.exceptions import ConfigurationError, RemoteApiError, TransportError
from inventory_sync.remote import AirtableClient, chunked


class TestChunked:
    """Tests for batch chunking."""

    def test_chunks(self):
        """Lists split into batch-sized chunks."""
        assert chunked(list(range(12)), 10) == [list(range(10)), [10, 11]]

    def test_empty(self):
        """No records, no chunks."""
        assert chunked([], 10) == []


class TestClientConstruction:
    """Tests for client construction."""

    def test_missing_token_rejected(self):
        """Missing token rejected."""
        with pytest.raises(ConfigurationError) as exc:
            AirtableClient(SyncConfig(base_id="app", table_id="tbl"))
        assert exc.value.setting == "AIRTABLE_TOKEN"

    def test_missing_table_rejected(self):
        """Missing table rejected."""
        with pytest.raises(ConfigurationError) as exc:
            AirtableClient(SyncConfig(token="t", base_id="app"))
        assert exc.value.setting == "AIRTABLE_TABLE_ID"


class TestListAll:
    """Tests for paged listing."""

    @pytest.mark.asyncio
    async def test_follows_offset_cursor(self, airtable, client):
        """Follows offset cursor."""
        for n in range(250):
            airtable.add_row({"Record Type": "Item", "Title": f"Item {n}"})

        rows = await client.list_all()

        assert len(rows) == 250
        assert [r.param("pageSize") for r in airtable.requests] == ["100", "100", "100"]
        assert [r.param("offset") for r in airtable.requests] == [None, "100", "200"]

    @pytest.mark.asyncio
    async def test_sends_view_formula_and_fields(self, airtable, client):
        """Sends view formula and fields."""
        await client.list_all(
            view="Inventory", filter_by_formula="{Room}='Living'", fields=["Title", "Room"]
        )
        request = airtable.requests[0]
        assert request.param("view") == "Inventory"
        assert request.param("filterByFormula") == "{Room}='Living'"
        assert [v for k, v in request.params if k == "fields[]"] == ["Title", "Room"]

    @pytest.mark.asyncio
    async def test_empty_table(self, client):
        """Empty table."""
        assert await client.list_all() == []


class TestWrites:
    """Tests for writes."""

    @pytest.mark.asyncio
    async def test_create_many_splits_batches(self, airtable, client):
        """Create many splits batches."""
        records = [{"Record Type": "Item", "Title": f"Item {n}"} for n in range(12)]

        created = await client.create_many(records)

        assert [r.record_count for r in airtable.writes("POST")] == [10, 2]
        assert [row["fields"]["Title"] for row in created] == [f"Item {n}" for n in range(12)]
        assert all(row["id"].startswith("rec") for row in created)

    @pytest.mark.asyncio
    async def test_typecast_param(self, airtable, client):
        """Typecast is sent only when asked for."""
        await client.create_many([{"Title": "A"}], typecast=True)
        await client.create_many([{"Title": "B"}])
        posts = airtable.writes("POST")
        assert posts[0].param("typecast") == "true"
        assert posts[1].param("typecast") is None

    @pytest.mark.asyncio
    async def test_short_chunk_keeps_rows_aligned(self, airtable, client):
        """Rows missing from one chunk's answer do not shift later chunks."""
        airtable.truncate_creates_to = 9
        records = [{"Title": f"Item {n}"} for n in range(12)]

        created = await client.create_many(records)

        assert len(created) == 12
        assert created[9] == {}
        assert created[10]["fields"]["Title"] == "Item 10"
        assert created[11]["fields"]["Title"] == "Item 11"

    @pytest.mark.asyncio
    async def test_failed_chunk_reports_progress(self, airtable, client):
        """Failed chunk reports progress."""
        airtable.reject_titles.add("Item 14")
        records = [{"Title": f"Item {n}"} for n in range(20)]

        with pytest.raises(RemoteApiError) as exc:
            await client.create_many(records)

        assert exc.value.status == 422
        assert exc.value.failed_offset == 10
        assert len(exc.value.completed) == 10
        assert len(airtable.rows) == 10

    @pytest.mark.asyncio
    async def test_update_many(self, airtable, client):
        """Updates send id and fields."""
        record_id = airtable.add_row({"Title": "Old"})
        await client.update_many([{"id": record_id, "fields": {"Title": "New"}}])
        assert airtable.rows[record_id]["fields"]["Title"] == "New"
        assert airtable.writes("PATCH")[0].body == {
            "records": [{"id": record_id, "fields": {"Title": "New"}}]
        }

    @pytest.mark.asyncio
    async def test_update_unknown_row_is_not_found(self, client):
        """Update unknown row is not found."""
        with pytest.raises(RemoteApiError) as exc:
            await client.update_many([{"id": "recMISSING0000001", "fields": {"Title": "x"}}])
        assert exc.value.is_not_found()

    @pytest.mark.asyncio
    async def test_delete_many_uses_query_params(self, airtable, client):
        """Delete many uses query params."""
        ids = [airtable.add_row({"Title": f"T{n}"}) for n in range(11)]
        acks = await client.delete_many(ids)
        assert len(acks) == 11
        assert [r.record_count for r in airtable.writes("DELETE")] == [10, 1]
        assert airtable.rows == {}

    @pytest.mark.asyncio
    async def test_server_error_body_in_message(self, airtable, client):
        """Server error body in message."""
        airtable.fail_everything_with = 503
        with pytest.raises(RemoteApiError) as exc:
            await client.list_all()
        assert exc.value.status == 503
        assert "unavailable" in exc.value.message
        assert not exc.value.is_not_found()

    @pytest.mark.asyncio
    async def test_bad_token(self, sync_config):
        """A rejected token surfaces as a 401."""
        sync_config.token = "wrong"
        async with AirtableClient(sync_config) as client:
            with pytest.raises(RemoteApiError) as exc:
                await client.list_all()
        assert exc.value.status == 401


class TestTransport:
    """Tests for transport."""

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self):
        """Connection failures raise TransportError."""
        config = SyncConfig(
            token="t", base_id="app", table_id="tbl", api_url="http://127.0.0.1:9/v0"
        )
        async with AirtableClient(config) as client:
            with pytest.raises(TransportError):
                await client.list_all()

    @pytest.mark.asyncio
    async def test_request_count(self, airtable, client):
        """Every HTTP call is counted."""
        await client.create_many([{"Title": f"T{n}"} for n in range(21)])
        assert client.request_count == 3
