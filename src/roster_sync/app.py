"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from roster_sync.audit.revert import RevertService
from roster_sync.audit.service import AuditLogService
from roster_sync.auth.device_keys import DeviceKeyStore
from roster_sync.auth.session import AuthProvider, JwtAuthProvider, StaticAuthProvider
from roster_sync.config import Settings, load_settings
from roster_sync.facade.admin import AdminService
from roster_sync.facade.data_access import DataAccess
from roster_sync.facade.records import RecordWriter
from roster_sync.logging_utils import get_logger
from roster_sync.remote.base import RemoteStore
from roster_sync.remote.rest import RestRemoteStore
from roster_sync.remote.settings_store import RemoteSettingsStore, SettingsStore
from roster_sync.storage.local_store import LocalStore
from roster_sync.storage.notifier import RefreshNotifier
from roster_sync.sync.classifier import ErrorClassifier, default_classifier
from roster_sync.sync.engine import SyncEngine
from roster_sync.sync.scheduler import ConnectivityMonitor, SyncScheduler, remote_check


@dataclass
class AppContext:
    """Application-wide dependency container.

    The presentation layer talks to ``data`` and ``admin`` and subscribes to
    ``notifier``; everything else is wiring.
    """

    settings: Settings
    auth: AuthProvider
    key_store: DeviceKeyStore
    notifier: RefreshNotifier
    local: LocalStore
    remote: RemoteStore
    connectivity: ConnectivityMonitor
    engine: SyncEngine
    audit: AuditLogService
    reverts: RevertService
    data: DataAccess
    admin: AdminService
    scheduler: SyncScheduler

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.remote.aclose()
        self.local.close()


def _default_remote(settings: Settings) -> RemoteStore:
    if not settings.remote.base_url or not settings.remote.api_key:
        raise RuntimeError(
            "ROSTER_REMOTE_URL and ROSTER_REMOTE_API_KEY must be set to reach the remote store"
        )
    return RestRemoteStore(
        settings.remote.base_url,
        settings.remote.api_key,
        timeout_seconds=settings.remote.timeout_seconds,
    )


def build_app_context(
    settings: Settings,
    *,
    remote: RemoteStore | None = None,
    auth: AuthProvider | None = None,
    settings_store: SettingsStore | None = None,
    classifier: ErrorClassifier = default_classifier,
    connectivity: ConnectivityMonitor | None = None,
) -> AppContext:
    """Wire every component from ``settings``; collaborators can be injected."""
    key_store = DeviceKeyStore(settings.storage.device_key_path)
    if auth is None:
        if settings.auth.jwt_secret:
            auth = JwtAuthProvider(
                settings.auth.jwt_secret, key_store, audience=settings.auth.jwt_audience
            )
        else:
            auth = StaticAuthProvider()

    remote = remote or _default_remote(settings)
    notifier = RefreshNotifier()
    local = LocalStore(
        settings.storage.sqlite_path, wal=settings.storage.sqlite_wal, notifier=notifier
    )
    connectivity = connectivity or ConnectivityMonitor(online=True, check=remote_check(remote))
    engine = SyncEngine(local, remote, connectivity, classifier=classifier, notifier=notifier)
    audit = AuditLogService(
        local,
        engine,
        auth,
        retention_days=settings.audit.retention_days,
        fetch_limit=settings.audit.fetch_limit,
    )
    reverts = RevertService(audit)
    writer = RecordWriter(local, engine)
    data = DataAccess(writer, audit, reverts, settings_store or RemoteSettingsStore(remote))
    admin = AdminService(writer, audit, reverts, auth)

    def _current_key() -> bytes | None:
        session = auth.current_session_optional()
        return session.key if session else None

    scheduler = SyncScheduler(
        engine,
        connectivity,
        _current_key,
        interval_seconds=settings.sync.interval_seconds,
        check_interval_seconds=settings.sync.check_interval_seconds,
    )

    get_logger(__name__, settings).info(
        "Roster sync context ready (cache=%s)", settings.storage.sqlite_path
    )
    return AppContext(
        settings=settings,
        auth=auth,
        key_store=key_store,
        notifier=notifier,
        local=local,
        remote=remote,
        connectivity=connectivity,
        engine=engine,
        audit=audit,
        reverts=reverts,
        data=data,
        admin=admin,
        scheduler=scheduler,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the process-wide application context.

    Configures logging on first use.
    """
    get_logger(__name__).debug("Building application context")
    return build_app_context(load_settings())
