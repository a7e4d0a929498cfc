"""Audit log records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from roster_sync.domain.models import Section, new_record_id
from roster_sync.utils.time import utc_now_iso


class ActionType(str, Enum):
    CREATE_MEMBER = "CREATE_MEMBER"
    UPDATE_MEMBER = "UPDATE_MEMBER"
    DELETE_MEMBER = "DELETE_MEMBER"
    UPDATE_SETTINGS = "UPDATE_SETTINGS"
    UPDATE_USER_ROLE = "UPDATE_USER_ROLE"
    DELETE_USER_ROLE = "DELETE_USER_ROLE"
    APPROVE_USER = "APPROVE_USER"
    DENY_USER = "DENY_USER"
    GENERATE_INVITE_CODE = "GENERATE_INVITE_CODE"
    UPDATE_INVITE_CODE = "UPDATE_INVITE_CODE"
    REVOKE_INVITE_CODE = "REVOKE_INVITE_CODE"
    REVERT_ACTION = "REVERT_ACTION"
    CLEAR_AUDIT_LOGS = "CLEAR_AUDIT_LOGS"
    CLEAR_LOCAL_DATA = "CLEAR_LOCAL_DATA"
    CLEAR_USED_REVOKED_INVITE_CODES = "CLEAR_USED_REVOKED_INVITE_CODES"


@dataclass(frozen=True)
class AuditEntry:
    """What a caller supplies; identity and timestamp are filled in on creation."""

    action_type: ActionType
    description: str
    revert_data: dict[str, Any] | None = None
    reverted_log_id: str | None = None


@dataclass(frozen=True)
class AuditLog:
    """An immutable audit record. Reverts are new logs, never edits."""

    action_type: ActionType
    description: str
    user_email: str
    section: Section | None = None
    revert_data: dict[str, Any] | None = None
    reverted_log_id: str | None = None
    id: str = field(default_factory=new_record_id)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "section": self.section.value if self.section else None,
            "user_email": self.user_email,
            "action_type": self.action_type.value,
            "description": self.description,
            "timestamp": self.timestamp,
            "revert_data": self.revert_data,
            "reverted_log_id": self.reverted_log_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditLog":
        section = data.get("section")
        return cls(
            id=data["id"],
            section=Section(section) if section else None,
            user_email=data.get("user_email") or "",
            action_type=ActionType(data["action_type"]),
            description=data.get("description") or "",
            timestamp=data["timestamp"],
            revert_data=data.get("revert_data"),
            reverted_log_id=data.get("reverted_log_id"),
        )
