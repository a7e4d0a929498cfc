"""Roster domain records: members, marks, user roles and invite codes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4


class Section(str, Enum):
    COMPANY = "company"
    JUNIOR = "junior"


class UserRole(str, Enum):
    ADMIN = "admin"
    CAPTAIN = "captain"
    OFFICER = "officer"
    PENDING = "pending"


def new_record_id() -> str:
    """Client-side identifier, stable from offline creation through sync."""
    return str(uuid4())


@dataclass
class Mark:
    date: str
    score: float
    uniform_score: float | None = None
    behaviour_score: float | None = None

    @property
    def is_absent(self) -> bool:
        return self.score < 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"date": self.date, "score": self.score}
        if self.uniform_score is not None:
            data["uniform_score"] = self.uniform_score
        if self.behaviour_score is not None:
            data["behaviour_score"] = self.behaviour_score
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mark":
        return cls(
            date=data["date"],
            score=data["score"],
            uniform_score=data.get("uniform_score"),
            behaviour_score=data.get("behaviour_score"),
        )


@dataclass
class Member:
    """A roster member. Marks are keyed by date; at most one mark per date."""

    name: str
    squad: int | str
    year: int | str
    id: str = field(default_factory=new_record_id)
    marks: list[Mark] = field(default_factory=list)
    is_squad_leader: bool = False

    def mark_for(self, date: str) -> Mark | None:
        for mark in self.marks:
            if mark.date == date:
                return mark
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "squad": self.squad,
            "year": self.year,
            "marks": [mark.to_dict() for mark in self.marks],
            "is_squad_leader": self.is_squad_leader,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Member":
        return cls(
            id=data["id"],
            name=data["name"],
            squad=data["squad"],
            year=data["year"],
            marks=[Mark.from_dict(m) for m in data.get("marks") or []],
            is_squad_leader=bool(data.get("is_squad_leader", False)),
        )


@dataclass
class UserRoleInfo:
    uid: str
    email: str
    role: UserRole
    sections: list[Section] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.uid,
            "email": self.email,
            "role": self.role.value,
            "sections": [s.value for s in self.sections],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserRoleInfo":
        return cls(
            uid=data.get("id") or data["uid"],
            email=data.get("email") or "",
            role=UserRole(data["role"]),
            sections=[Section(s) for s in data.get("sections") or []],
        )


@dataclass
class InviteCode:
    id: str
    generated_by: str
    generated_at: str
    default_user_role: UserRole = UserRole.OFFICER
    section: Section | None = None
    expires_at: str | None = None
    is_used: bool = False
    used_by: str | None = None
    used_at: str | None = None
    revoked: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "generated_by": self.generated_by,
            "generated_at": self.generated_at,
            "default_user_role": self.default_user_role.value,
            "section": self.section.value if self.section else None,
            "expires_at": self.expires_at,
            "is_used": self.is_used,
            "used_by": self.used_by,
            "used_at": self.used_at,
            "revoked": self.revoked,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InviteCode":
        section = data.get("section")
        return cls(
            id=data["id"],
            generated_by=data.get("generated_by") or "",
            generated_at=data["generated_at"],
            default_user_role=UserRole(data.get("default_user_role") or UserRole.OFFICER.value),
            section=Section(section) if section else None,
            expires_at=data.get("expires_at"),
            is_used=bool(data.get("is_used", False)),
            used_by=data.get("used_by"),
            used_at=data.get("used_at"),
            revoked=bool(data.get("revoked", False)),
        )
