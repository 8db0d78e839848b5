"""
Shared test configuration and fixtures.

Provides an in-memory local store and a fake remote table served by
aiohttp's test server, so the real client code talks real HTTP.

The fake table:
- Pages list results with an ``offset`` cursor
- Rejects write batches larger than 10 records
- Rejects any write batch containing a title from ``reject_titles`` (422)
- Answers 404 for updates and deletes of unknown record ids
- Can answer creates with fewer rows than it was sent (``truncate_creates_to``)
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from inventory_sync.config import LocalStoreConfig, SyncConfig
from inventory_sync.local import LocalStore
from inventory_sync.remote import AirtableClient

logger = logging.getLogger(__name__)

TEST_TOKEN = "test-token"
BATCH_LIMIT = 10


@dataclass
class RecordedRequest:
    method: str
    params: list[tuple[str, str]]
    body: Any = None

    def param(self, name: str) -> str | None:
        for key, value in self.params:
            if key == name:
                return value
        return None

    @property
    def record_count(self) -> int:
        if self.method == "DELETE":
            return sum(1 for key, _ in self.params if key == "records[]")
        return len((self.body or {}).get("records") or [])


@dataclass
class FakeAirtable:
    """In-memory stand-in for the remote table API."""

    rows: dict[str, dict[str, Any]] = field(default_factory=dict)
    requests: list[RecordedRequest] = field(default_factory=list)
    reject_titles: set[str] = field(default_factory=set)
    hidden_by_view: set[str] = field(default_factory=set)
    fail_everything_with: int | None = None
    truncate_creates_to: int | None = None
    url: str = ""
    _counter: int = 0

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/v0/{base_id}/{table_id}", self.handle)
        return app

    def next_id(self) -> str:
        self._counter += 1
        return f"rec{self._counter:014d}"

    def add_row(self, fields: dict[str, Any], record_id: str | None = None) -> str:
        record_id = record_id or self.next_id()
        self.rows[record_id] = {"id": record_id, "fields": dict(fields)}
        return record_id

    def writes(self, method: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.method == method]

    def rows_of_type(self, record_type: str) -> list[dict[str, Any]]:
        return [r for r in self.rows.values() if r["fields"].get("Record Type") == record_type]

    @staticmethod
    def _error(status: int, kind: str, message: str) -> web.Response:
        return web.json_response({"error": {"type": kind, "message": message}}, status=status)

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json() if request.can_read_body else None
        self.requests.append(RecordedRequest(request.method, list(request.query.items()), body))

        if request.headers.get("Authorization") != f"Bearer {TEST_TOKEN}":
            return self._error(401, "AUTHENTICATION_REQUIRED", "bad token")
        if self.fail_everything_with is not None:
            return self._error(self.fail_everything_with, "SERVER_ERROR", "unavailable")

        if request.method == "GET":
            return self._list(request)
        if request.method == "POST":
            return self._create(body)
        if request.method == "PATCH":
            return self._update(body)
        if request.method == "DELETE":
            return self._delete(request.query.getall("records[]", []))
        return self._error(405, "METHOD_NOT_ALLOWED", request.method)

    def _list(self, request: web.Request) -> web.Response:
        page_size = int(request.query.get("pageSize", "100"))
        start = int(request.query.get("offset", "0"))
        rows = list(self.rows.values())
        if request.query.get("view"):
            rows = [r for r in rows if r["fields"].get("Record Type") not in self.hidden_by_view]
        page = rows[start : start + page_size]
        payload: dict[str, Any] = {"records": page}
        if start + page_size < len(rows):
            payload["offset"] = str(start + page_size)
        return web.json_response(payload)

    def _check_batch(self, records: list[dict[str, Any]]) -> web.Response | None:
        if len(records) > BATCH_LIMIT:
            return self._error(422, "INVALID_REQUEST_UNKNOWN", "too many records")
        for record in records:
            title = (record.get("fields") or {}).get("Title")
            if title in self.reject_titles:
                return self._error(422, "INVALID_VALUE_FOR_COLUMN", f"cannot accept {title}")
        return None

    def _create(self, body: dict[str, Any]) -> web.Response:
        records = body.get("records") or []
        rejected = self._check_batch(records)
        if rejected is not None:
            return rejected
        created = []
        for record in records[: self.truncate_creates_to]:
            record_id = self.add_row(record.get("fields") or {})
            created.append(self.rows[record_id])
        return web.json_response({"records": created})

    def _update(self, body: dict[str, Any]) -> web.Response:
        records = body.get("records") or []
        rejected = self._check_batch(records)
        if rejected is not None:
            return rejected
        for record in records:
            if record.get("id") not in self.rows:
                return self._error(404, "NOT_FOUND", f"Record {record.get('id')} not found")
        for record in records:
            self.rows[record["id"]]["fields"].update(record.get("fields") or {})
        return web.json_response({"records": [self.rows[r["id"]] for r in records]})

    def _delete(self, ids: list[str]) -> web.Response:
        if len(ids) > BATCH_LIMIT:
            return self._error(422, "INVALID_REQUEST_UNKNOWN", "too many records")
        for record_id in ids:
            if record_id not in self.rows:
                return self._error(404, "NOT_FOUND", f"Record {record_id} not found")
        for record_id in ids:
            del self.rows[record_id]
        return web.json_response({"records": [{"id": i, "deleted": True} for i in ids]})


@pytest.fixture
async def store():
    """Fixture providing an initialized in-memory local store."""
    local = await LocalStore.create(LocalStoreConfig(db_path=":memory:"))
    yield local
    await local.close()


@pytest.fixture
async def airtable():
    """Fixture providing a running fake remote table."""
    fake = FakeAirtable()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("/v0"))
    yield fake
    await server.close()


@pytest.fixture
def sync_config(airtable):
    return SyncConfig(
        token=TEST_TOKEN,
        base_id="appTEST",
        table_id="tblTEST",
        api_url=airtable.url,
    )


@pytest.fixture
async def client(sync_config):
    """Fixture providing a client bound to the fake table."""
    remote = AirtableClient(sync_config)
    yield remote
    await remote.close()
