"""Data models for queued remote writes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from roster_sync.crypto.adapter import EncryptedPayload
from roster_sync.domain.models import Section
from roster_sync.utils.time import utc_now_iso


class WriteKind(str, Enum):
    INSERT = "insert"
    UPSERT = "upsert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class PendingWrite:
    """A remote mutation waiting for replay.

    ``payload`` holds the encrypted row (or changed fields) exactly as it will
    be sent; ``seq`` is assigned by the local store on enqueue and defines
    replay order.
    """

    operation: str
    kind: WriteKind
    table: str
    record_id: str
    section: Section | None
    payload: EncryptedPayload
    seq: int | None = None
    created_at: str = field(default_factory=utc_now_iso)


@dataclass
class DeadLetter:
    write: PendingWrite
    error: str
    failed_at: str


@dataclass
class SyncResult:
    ok: bool
    applied: int = 0
    discarded: int = 0
    remaining: int = 0
    error: str | None = None
