"""Remote row-store contract.

The backend is an opaque row store: rows are JSON objects keyed by ``id`` in
named tables. Adapters must enforce id uniqueness and support
insert-or-ignore so replayed creates are harmless.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

from roster_sync.domain.models import Section
from roster_sync.errors import RosterSyncError

MEMBERS = "members"
AUDIT_LOGS = "audit_logs"
USER_ROLES = "user_roles"
INVITE_CODES = "invite_codes"
SETTINGS = "settings"

_SECTIONED = frozenset({MEMBERS, AUDIT_LOGS})
_OPERATORS = frozenset({"eq", "neq", "lt", "lte", "gt", "gte", "is", "not.is"})

Row = dict[str, Any]


def table_name(section: Section | None, resource: str) -> str:
    """Resolve the physical table for ``resource``.

    Members and audit logs are partitioned per section; a global audit log
    (section ``None``) lives in the unprefixed table.
    """
    if resource in _SECTIONED and section is not None:
        return f"{section.value}_{resource}"
    if resource == MEMBERS:
        raise ValueError("Members always belong to a section")
    return resource


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


class RemoteStoreError(RosterSyncError):
    """Non-success response from the remote store."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class RemoteStore(ABC):
    """Row-level operations against the remote source of truth.

    Transport failures raise ``TransientNetworkError``; rejected requests raise
    ``RemoteStoreError`` carrying the HTTP status and backend error code.
    """

    @abstractmethod
    async def insert(self, table: str, row: Row, ignore_duplicates: bool = False) -> None:
        ...

    @abstractmethod
    async def upsert(self, table: str, row: Row) -> None:
        ...

    @abstractmethod
    async def update(self, table: str, record_id: str, fields: Row) -> None:
        ...

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> None:
        ...

    @abstractmethod
    async def delete_where(self, table: str, filters: Sequence[Filter]) -> int:
        """Delete every row matching all ``filters``; returns the count removed."""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        ...

    async def select_one(self, table: str, record_id: str) -> Row | None:
        rows = await self.select(table, filters=[eq("id", record_id)], limit=1)
        return rows[0] if rows else None

    async def aclose(self) -> None:
        return None
