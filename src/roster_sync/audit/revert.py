"""Revert dispatch for audit logs.

Each revertible action type maps to one handler that applies the inverse
mutation from ``revert_data``. Handlers validate everything they need before
touching any state so a failed revert is a no-op.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from roster_sync.audit.models import ActionType, AuditEntry, AuditLog
from roster_sync.audit.service import AuditLogService, has_been_reverted
from roster_sync.errors import NotRevertibleError

logger = logging.getLogger(__name__)

# Returns a short description of what was restored.
RevertHandler = Callable[[AuditLog, bytes], Awaitable[str]]


def require_fields(log: AuditLog, *names: str) -> dict[str, Any]:
    data = log.revert_data
    if not isinstance(data, dict):
        raise NotRevertibleError(f"Log {log.id} has no revert data")
    missing = [name for name in names if data.get(name) is None]
    if missing:
        raise NotRevertibleError(
            f"Revert data for {log.action_type.value} is missing: {', '.join(missing)}"
        )
    return data


class RevertService:
    def __init__(self, audit: AuditLogService) -> None:
        self._audit = audit
        self._handlers: dict[ActionType, RevertHandler] = {}

    def register(self, action_type: ActionType, handler: RevertHandler) -> None:
        if action_type is ActionType.REVERT_ACTION:
            raise ValueError("Revert entries are not themselves revertible")
        self._handlers[action_type] = handler

    def is_revertible(self, log: AuditLog) -> bool:
        return log.action_type in self._handlers and log.revert_data is not None

    async def revert(
        self,
        log: AuditLog,
        key: bytes,
        logs: list[AuditLog] | None = None,
    ) -> AuditLog:
        """Apply the inverse of ``log`` and append a REVERT_ACTION log.

        Raises:
            NotRevertibleError: unsupported action, missing revert data, or
                ``log`` was already reverted. Nothing is written in that case.
        """
        handler = self._handlers.get(log.action_type)
        if handler is None:
            raise NotRevertibleError(f"Action {log.action_type.value} cannot be reverted")
        if log.revert_data is None:
            raise NotRevertibleError(f"Log {log.id} has no revert data")

        if logs is None:
            logs = await self._audit.fetch_audit_logs(log.section, key)
        if has_been_reverted(log, logs):
            raise NotRevertibleError(f"Log {log.id} has already been reverted")

        restored = await handler(log, key)
        logger.info("Reverted %s log %s", log.action_type.value, log.id)
        return await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.REVERT_ACTION,
                description=f"Reverted action: {log.description} ({restored})",
                reverted_log_id=log.id,
            ),
            log.section,
            key,
        )
