"""
Remote Client Adapter.

Translates list/create/update/delete calls into the remote table API's
request shapes and enforces its limits: list pages of at most 100 rows
followed by ``offset`` cursor, and at most 10 records per write.

Example:
    >>> async with AirtableClient(SyncConfig.from_environment()) as client:
    ...     rows = await client.list_all(view="Inventory")
    ...     created = await client.create_many([{"Title": "Sofa"}])
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import aiohttp

from ..config import SyncConfig
from ..exceptions import RemoteApiError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RawRow = dict[str, Any]


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive slices of at most ``size``."""
    return [items[i : i + size] for i in range(0, len(items), size)]


class AirtableClient:
    """Async client for one remote table.

    The client owns its ``aiohttp.ClientSession`` unless one is passed in.
    """

    def __init__(
        self,
        config: SyncConfig,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Remote table configuration (validated here)
            session: Optional shared HTTP session

        Raises:
            ConfigurationError: If a credential or identifier is missing
        """
        config.validate()
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.request_count = 0

    async def __aenter__(self) -> AirtableClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    @property
    def table_url(self) -> str:
        return self.config.table_url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Content-Type": "application/json",
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = (
                aiohttp.ClientTimeout(total=self.config.timeout_seconds)
                if self.config.timeout_seconds
                else None
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        params: list[tuple[str, str]] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Issue one request and return the decoded JSON body.

        Raises:
            RemoteApiError: On any non-2xx response
            TransportError: If the endpoint cannot be reached
        """
        session = self._get_session()
        self.request_count += 1
        url = self.table_url
        logger.debug(f"{method} {url} params={params or []}")
        try:
            async with session.request(
                method, url, params=params, json=body, headers=self._headers()
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise RemoteApiError(
                        response.status, text or response.reason or "", method, str(response.url)
                    )
                return await response.json(content_type=None) or {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(url, e) from e

    def _write_params(self, typecast: bool | None) -> list[tuple[str, str]] | None:
        effective = self.config.typecast if typecast is None else typecast
        return [("typecast", "true")] if effective else None

    async def _batched(
        self,
        items: Sequence[T],
        send: Callable[[Sequence[T]], Awaitable[list[RawRow]]],
    ) -> list[RawRow]:
        """Send ``items`` chunk by chunk, concatenating results in order.

        A failing chunk raises with ``completed`` holding the rows accepted
        so far and ``failed_offset`` pointing at the chunk's first item.
        """
        completed: list[RawRow] = []
        size = self.config.batch_size
        for offset, chunk in zip(range(0, len(items), size), chunked(items, size)):
            try:
                completed.extend(await send(chunk))
            except RemoteApiError as e:
                e.completed = completed
                e.failed_offset = offset
                raise
        return completed

    # =========================================================================
    # Operations
    # =========================================================================

    async def list_all(
        self,
        view: str | None = None,
        filter_by_formula: str | None = None,
        fields: Sequence[str] | None = None,
    ) -> list[RawRow]:
        """Fetch every row, following the offset cursor until it is absent."""
        rows: list[RawRow] = []
        offset = ""
        pages = 0
        while True:
            params: list[tuple[str, str]] = [("pageSize", str(self.config.page_size))]
            if view:
                params.append(("view", view))
            if filter_by_formula:
                params.append(("filterByFormula", filter_by_formula))
            for name in fields or ():
                params.append(("fields[]", name))
            if offset:
                params.append(("offset", offset))

            payload = await self._request("GET", params=params)
            rows.extend(payload.get("records") or [])
            pages += 1
            offset = payload.get("offset") or ""
            if not offset:
                break

        logger.debug(f"Listed {len(rows)} rows in {pages} pages (view={view or '-'})")
        return rows

    async def create_many(
        self,
        records: Sequence[dict[str, Any]],
        typecast: bool | None = None,
    ) -> list[RawRow]:
        """Create rows from field maps.

        Results follow input order, one per record. Records the remote
        answered no row for come back as empty dicts.
        """
        params = self._write_params(typecast)

        async def send(chunk: Sequence[dict[str, Any]]) -> list[RawRow]:
            body = {"records": [{"fields": fields} for fields in chunk]}
            payload = await self._request("POST", params=params, body=body)
            rows = (payload.get("records") or [])[: len(chunk)]
            if len(rows) < len(chunk):
                logger.warning(f"Create returned {len(rows)} rows for {len(chunk)} records")
                rows = rows + [{} for _ in range(len(chunk) - len(rows))]
            return rows

        return await self._batched(records, send)

    async def update_many(
        self,
        records: Sequence[dict[str, Any]],
        typecast: bool | None = None,
    ) -> list[RawRow]:
        """Update rows. Each record is ``{"id": remote_id, "fields": {...}}``."""
        params = self._write_params(typecast)

        async def send(chunk: Sequence[dict[str, Any]]) -> list[RawRow]:
            body = {"records": [{"id": r["id"], "fields": r["fields"]} for r in chunk]}
            payload = await self._request("PATCH", params=params, body=body)
            return payload.get("records") or []

        return await self._batched(records, send)

    async def delete_many(self, ids: Sequence[str]) -> list[RawRow]:
        """Delete rows by remote id; returns ``{"id", "deleted"}`` acknowledgements."""

        async def send(chunk: Sequence[str]) -> list[RawRow]:
            params = [("records[]", record_id) for record_id in chunk]
            payload = await self._request("DELETE", params=params)
            return payload.get("records") or []

        return await self._batched(ids, send)
