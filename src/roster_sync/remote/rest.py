"""httpx adapter for a PostgREST-style row store."""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

import httpx

from roster_sync.errors import TransientNetworkError
from roster_sync.remote.base import Filter, RemoteStore, RemoteStoreError, Row, eq
from roster_sync.utils.serialization import json_default

logger = logging.getLogger(__name__)


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filter_params(filters: Sequence[Filter]) -> list[tuple[str, str]]:
    return [(f.column, f"{f.op}.{_format_value(f.value)}") for f in filters]


class RestRemoteStore(RemoteStore):
    """Talks to ``{base_url}/{table}`` with ``apikey`` + bearer authentication.

    The client is created lazily so the store can be built outside an event loop.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def set_access_token(self, token: str | None) -> None:
        self._access_token = token
        if self._client is not None:
            self._client.headers["Authorization"] = f"Bearer {token or self._api_key}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "apikey": self._api_key,
                    "Authorization": f"Bearer {self._access_token or self._api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        content = (
            json.dumps(body, default=json_default).encode("utf-8") if body is not None else None
        )
        try:
            response = await self._get_client().request(
                method, f"/{table}", params=params, content=content, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Request to {table} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Remote store unreachable: {exc}") from exc

        if response.is_success:
            return response
        code: str | None = None
        message = response.text[:500]
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            code = str(payload["code"]) if payload.get("code") is not None else None
            message = str(payload.get("message") or message)
        logger.warning(
            "Remote %s %s failed: status=%s code=%s", method, table, response.status_code, code
        )
        raise RemoteStoreError(message, status=response.status_code, code=code)

    async def insert(self, table: str, row: Row, ignore_duplicates: bool = False) -> None:
        if ignore_duplicates:
            await self._request(
                "POST",
                table,
                params=[("on_conflict", "id")],
                body=row,
                prefer="resolution=ignore-duplicates,return=minimal",
            )
            return
        await self._request("POST", table, body=row, prefer="return=minimal")

    async def upsert(self, table: str, row: Row) -> None:
        await self._request(
            "POST",
            table,
            params=[("on_conflict", "id")],
            body=row,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def update(self, table: str, record_id: str, fields: Row) -> None:
        await self._request(
            "PATCH",
            table,
            params=_filter_params([eq("id", record_id)]),
            body=fields,
            prefer="return=minimal",
        )

    async def delete(self, table: str, record_id: str) -> None:
        await self._request(
            "DELETE", table, params=_filter_params([eq("id", record_id)]), prefer="return=minimal"
        )

    async def delete_where(self, table: str, filters: Sequence[Filter]) -> int:
        if not filters:
            raise ValueError("delete_where requires at least one filter")
        response = await self._request(
            "DELETE", table, params=_filter_params(filters), prefer="return=representation"
        )
        rows = response.json() if response.content else []
        return len(rows) if isinstance(rows, list) else 0

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        params = [("select", "*"), *_filter_params(filters)]
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        response = await self._request("GET", table, params=params)
        rows = response.json()
        if not isinstance(rows, list):
            raise RemoteStoreError(
                f"Unexpected response shape from {table}", status=response.status_code
            )
        return rows

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
