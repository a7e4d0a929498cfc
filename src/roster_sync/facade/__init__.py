"""Public API consumed by the presentation layer."""

from roster_sync.facade.admin import AdminService, generate_invite_code_id
from roster_sync.facade.data_access import DataAccess
from roster_sync.facade.records import RecordWriter

__all__ = [
    "AdminService",
    "DataAccess",
    "RecordWriter",
    "generate_invite_code_id",
]
