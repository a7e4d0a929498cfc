"""Facade for privileged operations: user roles, invite codes, clears.

Role checks run before any local or remote mutation.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import replace
from datetime import timedelta
from typing import Any

from roster_sync.audit.models import ActionType, AuditEntry, AuditLog
from roster_sync.audit.revert import RevertService, require_fields
from roster_sync.audit.service import AuditLogService
from roster_sync.auth.permissions import (
    ADMIN_ONLY,
    MANAGER_ROLES,
    check_role_change,
    check_role_removal,
    require_role,
)
from roster_sync.auth.session import AuthProvider, Session
from roster_sync.domain.models import InviteCode, Section, UserRole, UserRoleInfo
from roster_sync.errors import (
    EntityValidationError,
    NotRevertibleError,
    PermissionDeniedError,
    TransientNetworkError,
)
from roster_sync.facade.records import RecordWriter
from roster_sync.remote.base import INVITE_CODES, USER_ROLES, eq
from roster_sync.storage.local_store import Namespace
from roster_sync.sync.models import WriteKind
from roster_sync.utils.time import utc_now

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 6
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_INVITE_EXPIRY_DAYS = 7

# Marks an update argument that was not supplied.
_UNCHANGED: Any = object()


def generate_invite_code_id() -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def _role_revert_data(info: UserRoleInfo) -> dict[str, object]:
    return {
        "uid": info.uid,
        "email": info.email,
        "previous_role": info.role.value,
        "previous_sections": [s.value for s in info.sections],
    }


class AdminService:
    def __init__(
        self,
        writer: RecordWriter,
        audit: AuditLogService,
        reverts: RevertService,
        auth: AuthProvider,
    ) -> None:
        self._writer = writer
        self._local = writer.local
        self._engine = writer.engine
        self._audit = audit
        self._auth = auth

        for action in (
            ActionType.UPDATE_USER_ROLE,
            ActionType.APPROVE_USER,
            ActionType.DELETE_USER_ROLE,
            ActionType.DENY_USER,
        ):
            reverts.register(action, self._revert_role)
        reverts.register(ActionType.GENERATE_INVITE_CODE, self._revert_generate_invite)
        reverts.register(ActionType.UPDATE_INVITE_CODE, self._revert_invite_snapshot)
        reverts.register(ActionType.REVOKE_INVITE_CODE, self._revert_invite_snapshot)

    @property
    def is_online(self) -> bool:
        return self._engine.connectivity.is_online

    # -- identity -----------------------------------------------------------

    async def _acting(self, key: bytes) -> tuple[Session, UserRole | None]:
        session = self._auth.current_session()
        if session.role is not None:
            return session, session.role
        info = await self.fetch_user_role(session.uid, key)
        return session, info.role if info else None

    async def _require(self, key: bytes, allowed: frozenset[UserRole], action: str) -> Session:
        session, role = await self._acting(key)
        require_role(role, allowed, action)
        return session

    # -- user roles ---------------------------------------------------------

    async def fetch_user_role(self, uid: str, key: bytes) -> UserRoleInfo | None:
        row = await self._writer.read(Namespace.USER_ROLES, None, uid, key)
        if self.is_online:
            try:
                fresh = await self._engine.remote.select_one(USER_ROLES, uid)
            except TransientNetworkError as exc:
                logger.info("User role fetch fell back to cache: %s", exc)
            else:
                row = await self._writer.reconcile_one(
                    Namespace.USER_ROLES, None, USER_ROLES, uid, fresh, row, key
                )
        return UserRoleInfo.from_dict(row) if row else None

    async def fetch_all_user_roles(self, key: bytes) -> list[UserRoleInfo]:
        await self._require(key, MANAGER_ROLES, "view user roles")
        rows, _ = await self._writer.read_all(Namespace.USER_ROLES, None, key)
        if self.is_online:
            try:
                fresh = await self._engine.remote.select(USER_ROLES, order_by="email")
            except TransientNetworkError as exc:
                logger.info("User role list fell back to cache: %s", exc)
            else:
                rows = await self._writer.reconcile_all(
                    Namespace.USER_ROLES, None, USER_ROLES, fresh, rows, key
                )
        return sorted((UserRoleInfo.from_dict(row) for row in rows), key=lambda i: i.email)

    async def _require_target(self, uid: str, key: bytes) -> UserRoleInfo:
        target = await self.fetch_user_role(uid, key)
        if target is None:
            raise EntityValidationError(f"No role record for user {uid}")
        return target

    async def _store_role(
        self, info: UserRoleInfo, previous: UserRoleInfo | None, key: bytes, operation: str
    ) -> None:
        await self._writer.save(
            namespace=Namespace.USER_ROLES,
            section=None,
            table=USER_ROLES,
            row=info.to_dict(),
            previous=previous.to_dict() if previous else None,
            key=key,
            operation=operation,
        )

    async def _remove_role(self, info: UserRoleInfo, key: bytes, operation: str) -> None:
        await self._writer.remove(
            namespace=Namespace.USER_ROLES,
            section=None,
            table=USER_ROLES,
            record_id=info.uid,
            previous=info.to_dict(),
            key=key,
            operation=operation,
        )

    async def update_user_role(
        self,
        uid: str,
        new_role: UserRole,
        key: bytes,
        sections: list[Section] | None = None,
    ) -> UserRoleInfo:
        session, acting_role = await self._acting(key)
        target = await self._require_target(uid, key)
        check_role_change(
            acting_uid=session.uid,
            acting_role=acting_role,
            target_uid=uid,
            target_role=target.role,
            new_role=new_role,
        )
        new_sections = sections if sections is not None else target.sections
        updated = replace(target, role=new_role, sections=list(new_sections))
        await self._store_role(updated, target, key, "updateUserRole")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.UPDATE_USER_ROLE,
                description=(
                    f"Changed role of {target.email} from {target.role.value} to {new_role.value}"
                ),
                revert_data=_role_revert_data(target),
            ),
            None,
            key,
        )
        return updated

    async def approve_user(
        self,
        uid: str,
        role: UserRole,
        key: bytes,
        sections: list[Section] | None = None,
    ) -> UserRoleInfo:
        session, acting_role = await self._acting(key)
        require_role(acting_role, MANAGER_ROLES, "approve users")
        target = await self._require_target(uid, key)
        if target.role is not UserRole.PENDING:
            raise EntityValidationError(f"User {target.email} is not pending approval")
        if role is UserRole.PENDING:
            raise EntityValidationError("Approved users need a role other than pending")
        check_role_change(
            acting_uid=session.uid,
            acting_role=acting_role,
            target_uid=uid,
            target_role=target.role,
            new_role=role,
        )
        approved = replace(target, role=role, sections=list(sections or target.sections))
        await self._store_role(approved, target, key, "approveUser")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.APPROVE_USER,
                description=f"Approved {target.email} as {role.value}",
                revert_data=_role_revert_data(target),
            ),
            None,
            key,
        )
        return approved

    async def delete_user_role(self, uid: str, key: bytes) -> UserRoleInfo:
        session, acting_role = await self._acting(key)
        target = await self._require_target(uid, key)
        check_role_removal(
            acting_uid=session.uid,
            acting_role=acting_role,
            target_uid=uid,
            target_role=target.role,
        )
        await self._remove_role(target, key, "deleteUserRole")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.DELETE_USER_ROLE,
                description=f"Removed user {target.email} ({target.role.value})",
                revert_data=_role_revert_data(target),
            ),
            None,
            key,
        )
        return target

    async def deny_user(self, uid: str, key: bytes) -> UserRoleInfo:
        session, acting_role = await self._acting(key)
        require_role(acting_role, MANAGER_ROLES, "deny users")
        target = await self._require_target(uid, key)
        if target.role is not UserRole.PENDING:
            raise EntityValidationError(f"User {target.email} is not pending approval")
        await self._remove_role(target, key, "denyUser")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.DENY_USER,
                description=f"Denied access request from {target.email}",
                revert_data=_role_revert_data(target),
            ),
            None,
            key,
        )
        return target

    # -- invite codes -------------------------------------------------------

    async def _read_invite(self, code_id: str, key: bytes) -> InviteCode | None:
        row = await self._writer.read(Namespace.INVITE_CODES, None, code_id, key)
        if row is None and self.is_online:
            try:
                row = await self._engine.remote.select_one(INVITE_CODES, code_id)
            except TransientNetworkError:
                row = None
        return InviteCode.from_dict(row) if row else None

    async def _require_invite(self, code_id: str, key: bytes) -> InviteCode:
        invite = await self._read_invite(code_id, key)
        if invite is None:
            raise EntityValidationError(f"Invite code {code_id} not found")
        return invite

    async def _store_invite(
        self,
        invite: InviteCode,
        previous: InviteCode | None,
        key: bytes,
        operation: str,
    ) -> None:
        await self._writer.save(
            namespace=Namespace.INVITE_CODES,
            section=None,
            table=INVITE_CODES,
            row=invite.to_dict(),
            previous=previous.to_dict() if previous else None,
            key=key,
            operation=operation,
            kind=WriteKind.INSERT if previous is None else WriteKind.UPSERT,
        )

    async def generate_invite_code(
        self,
        key: bytes,
        role: UserRole = UserRole.OFFICER,
        section: Section | None = None,
        expires_in_days: int = DEFAULT_INVITE_EXPIRY_DAYS,
    ) -> InviteCode:
        session, acting_role = await self._acting(key)
        require_role(acting_role, MANAGER_ROLES, "generate invite codes")
        if role is UserRole.ADMIN and acting_role is not UserRole.ADMIN:
            raise PermissionDeniedError("Only Admins can issue Admin invite codes.")
        if role is UserRole.PENDING:
            raise EntityValidationError("Invite codes cannot grant the pending role")
        now = utc_now()
        invite = InviteCode(
            id=generate_invite_code_id(),
            generated_by=session.email,
            generated_at=now.isoformat(),
            default_user_role=role,
            section=section,
            expires_at=(now + timedelta(days=expires_in_days)).isoformat(),
        )
        await self._store_invite(invite, None, key, "generateInviteCode")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.GENERATE_INVITE_CODE,
                description=f"Generated invite code {invite.id} for {role.value}",
                revert_data={"invite_code_id": invite.id},
            ),
            None,
            key,
        )
        return invite

    async def update_invite_code(
        self,
        code_id: str,
        key: bytes,
        *,
        default_user_role: UserRole | None = None,
        expires_at: str | None = None,
        section: Section | None = _UNCHANGED,
    ) -> InviteCode:
        """Change selected fields; pass ``section=None`` to make the code section-less."""
        _, acting_role = await self._acting(key)
        require_role(acting_role, MANAGER_ROLES, "update invite codes")
        if default_user_role is UserRole.ADMIN and acting_role is not UserRole.ADMIN:
            raise PermissionDeniedError("Only Admins can issue Admin invite codes.")
        previous = await self._require_invite(code_id, key)
        updated = replace(
            previous,
            default_user_role=default_user_role or previous.default_user_role,
            expires_at=expires_at or previous.expires_at,
            section=previous.section if section is _UNCHANGED else section,
        )
        await self._store_invite(updated, previous, key, "updateInviteCode")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.UPDATE_INVITE_CODE,
                description=f"Updated invite code {code_id}",
                revert_data={"previous": previous.to_dict()},
            ),
            None,
            key,
        )
        return updated

    async def revoke_invite_code(self, code_id: str, key: bytes) -> InviteCode:
        await self._require(key, MANAGER_ROLES, "revoke invite codes")
        previous = await self._require_invite(code_id, key)
        revoked = replace(previous, revoked=True)
        await self._store_invite(revoked, previous, key, "revokeInviteCode")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.REVOKE_INVITE_CODE,
                description=f"Revoked invite code {code_id}",
                revert_data={"previous": previous.to_dict()},
            ),
            None,
            key,
        )
        return revoked

    async def fetch_invite_codes(self, key: bytes) -> list[InviteCode]:
        await self._require(key, MANAGER_ROLES, "view invite codes")
        rows, _ = await self._writer.read_all(Namespace.INVITE_CODES, None, key)
        if self.is_online:
            try:
                fresh = await self._engine.remote.select(
                    INVITE_CODES, order_by="generated_at", descending=True
                )
            except TransientNetworkError as exc:
                logger.info("Invite code list fell back to cache: %s", exc)
            else:
                rows = await self._writer.reconcile_all(
                    Namespace.INVITE_CODES, None, INVITE_CODES, fresh, rows, key
                )
        invites = [InviteCode.from_dict(row) for row in rows]
        return sorted(invites, key=lambda i: i.generated_at, reverse=True)

    # -- administrative clears ----------------------------------------------

    def _require_online(self, action: str) -> None:
        if not self.is_online:
            raise TransientNetworkError(f"{action} requires a connection")

    async def clear_audit_logs(self, section: Section | None, key: bytes) -> int:
        await self._require(key, ADMIN_ONLY, "clear audit logs")
        return await self._audit.clear_audit_logs(section, key)

    async def clear_used_revoked_invite_codes(self, key: bytes) -> int:
        await self._require(key, ADMIN_ONLY, "clear invite codes")
        self._require_online("Clearing invite codes")
        removed = await self._engine.remote.delete_where(INVITE_CODES, [eq("is_used", True)])
        removed += await self._engine.remote.delete_where(INVITE_CODES, [eq("revoked", True)])

        rows, _ = await self._writer.read_all(Namespace.INVITE_CODES, None, key)
        stale = [
            str(row["id"]) for row in rows if row.get("is_used") or row.get("revoked")
        ]
        await self._local.remove_many(None, stale, Namespace.INVITE_CODES)
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.CLEAR_USED_REVOKED_INVITE_CODES,
                description=f"Cleared {removed} used or revoked invite codes",
            ),
            None,
            key,
        )
        return removed

    async def clear_local_data(self, section: Section, key: bytes) -> int:
        """Drop the device cache for ``section``; queued writes still replay."""
        await self._require(key, ADMIN_ONLY, "clear local data")
        removed = await self._local.clear_section_data(section)
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.CLEAR_LOCAL_DATA,
                description=f"Cleared local cache for {section.value} ({removed} records)",
            ),
            section,
            key,
        )
        return removed

    # -- revert handlers ----------------------------------------------------

    async def _revert_role(self, log: AuditLog, key: bytes) -> str:
        data = require_fields(log, "uid", "previous_role")
        try:
            previous = UserRoleInfo.from_dict(
                {
                    "id": data["uid"],
                    "email": data.get("email") or "",
                    "role": data["previous_role"],
                    "sections": data.get("previous_sections") or [],
                }
            )
        except (KeyError, ValueError) as exc:
            raise NotRevertibleError(f"Previous role data is invalid: {exc}") from exc

        session, acting_role = await self._acting(key)
        current = await self.fetch_user_role(previous.uid, key)
        check_role_change(
            acting_uid=session.uid,
            acting_role=acting_role,
            target_uid=previous.uid,
            target_role=current.role if current else None,
            new_role=previous.role,
        )
        await self._store_role(previous, current, key, "restoreUserRole")
        return f"restored {previous.email or previous.uid} to {previous.role.value}"

    async def _revert_generate_invite(self, log: AuditLog, key: bytes) -> str:
        code_id = str(require_fields(log, "invite_code_id")["invite_code_id"])
        await self._require(key, MANAGER_ROLES, "revoke invite codes")
        invite = await self._read_invite(code_id, key)
        if invite is None:
            raise NotRevertibleError(f"Invite code {code_id} no longer exists")
        await self._store_invite(replace(invite, revoked=True), invite, key, "revokeInviteCode")
        return f"revoked invite code {code_id}"

    async def _revert_invite_snapshot(self, log: AuditLog, key: bytes) -> str:
        data = require_fields(log, "previous")
        try:
            previous = InviteCode.from_dict(data["previous"])
        except (KeyError, TypeError, ValueError) as exc:
            raise NotRevertibleError(f"Previous invite code data is invalid: {exc}") from exc
        await self._require(key, MANAGER_ROLES, "update invite codes")
        current = await self._read_invite(previous.id, key)
        await self._store_invite(previous, current, key, "restoreInviteCode")
        return f"restored invite code {previous.id}"
