from __future__ import annotations

from typing import Callable

import pytest

from fakes import ADMIN_EMAIL, ADMIN_UID, FakeRemoteStore
from roster_sync.app import AppContext, build_app_context
from roster_sync.auth.session import Session, StaticAuthProvider
from roster_sync.config import Settings, StorageSettings
from roster_sync.crypto.adapter import generate_key
from roster_sync.domain.models import UserRole
from roster_sync.remote.base import USER_ROLES
from roster_sync.remote.settings_store import SettingsStore
from roster_sync.sync.scheduler import ConnectivityMonitor


@pytest.fixture
def key() -> bytes:
    return generate_key()


@pytest.fixture
def remote() -> FakeRemoteStore:
    store = FakeRemoteStore()
    store.seed(
        USER_ROLES,
        {"id": ADMIN_UID, "email": ADMIN_EMAIL, "role": "admin", "sections": ["company"]},
    )
    return store


@pytest.fixture
def make_ctx(tmp_path, remote, key) -> Callable[..., AppContext]:
    contexts: list[AppContext] = []

    def _make(
        uid: str = ADMIN_UID,
        email: str = ADMIN_EMAIL,
        role: UserRole | None = UserRole.ADMIN,
        settings_store: SettingsStore | None = None,
    ) -> AppContext:
        settings = Settings(
            storage=StorageSettings(
                sqlite_path=str(tmp_path / f"cache-{len(contexts)}.sqlite"),
                device_key_path=str(tmp_path / "keys"),
            )
        )
        session = Session(uid=uid, email=email, key=key, role=role)
        ctx = build_app_context(
            settings,
            remote=remote,
            auth=StaticAuthProvider(session),
            settings_store=settings_store,
            connectivity=ConnectivityMonitor(online=True),
        )
        contexts.append(ctx)
        return ctx

    yield _make
    for ctx in contexts:
        ctx.local.close()


@pytest.fixture
def ctx(make_ctx) -> AppContext:
    return make_ctx()
