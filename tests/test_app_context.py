from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from fakes import FakeRemoteStore
from roster_sync import logging_utils
from roster_sync.app import _default_remote, build_app_context, get_app_context
from roster_sync.auth.session import JwtAuthProvider, StaticAuthProvider
from roster_sync.config import AuthSettings, RemoteSettings, Settings, StorageSettings
from roster_sync.remote.rest import RestRemoteStore


@pytest.fixture
def clean_context():
    get_app_context.cache_clear()
    yield
    get_app_context.cache_clear()


def _settings(tmp_path, **overrides) -> Settings:
    return Settings(
        storage=StorageSettings(
            sqlite_path=str(tmp_path / "cache.sqlite"),
            device_key_path=str(tmp_path / "keys"),
        ),
        **overrides,
    )


@pytest.mark.asyncio
async def test_build_app_context_wires_shared_components(tmp_path) -> None:
    remote = FakeRemoteStore()

    ctx = build_app_context(_settings(tmp_path), remote=remote)

    assert isinstance(ctx.auth, StaticAuthProvider)
    assert ctx.remote is remote
    assert ctx.engine.remote is remote
    assert ctx.engine.connectivity is ctx.connectivity
    assert ctx.local.notifier is ctx.notifier
    assert ctx.connectivity.has_check
    assert (tmp_path / "keys").is_dir()
    await ctx.aclose()


def test_build_app_context_configures_logging_from_settings(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(logging_utils, "_logging_configured", False)
    settings = _settings(tmp_path)

    with patch("roster_sync.logging_utils.configure_logging") as mock_configure:
        ctx = build_app_context(settings, remote=FakeRemoteStore())

    mock_configure.assert_called_once_with(settings)
    ctx.local.close()


@pytest.mark.asyncio
async def test_jwt_secret_selects_token_provider(tmp_path) -> None:
    settings = _settings(tmp_path, auth=AuthSettings(jwt_secret="s3cret"))

    ctx = build_app_context(settings, remote=FakeRemoteStore())

    assert isinstance(ctx.auth, JwtAuthProvider)
    await ctx.aclose()


def test_default_remote_requires_url_and_key(tmp_path) -> None:
    with pytest.raises(RuntimeError, match="ROSTER_REMOTE_URL"):
        _default_remote(_settings(tmp_path))
    with pytest.raises(RuntimeError):
        _default_remote(
            _settings(tmp_path, remote=RemoteSettings(base_url="https://db.example.org"))
        )


@pytest.mark.asyncio
async def test_default_remote_is_rest_store(tmp_path) -> None:
    settings = _settings(
        tmp_path,
        remote=RemoteSettings(base_url="https://db.example.org/rest/v1", api_key="anon"),
    )

    remote = _default_remote(settings)

    assert isinstance(remote, RestRemoteStore)
    await remote.aclose()


@patch("roster_sync.app.get_logger")
@patch("roster_sync.app.build_app_context")
@patch("roster_sync.app.load_settings")
def test_get_app_context_is_cached(
    mock_load_settings: MagicMock,
    mock_build: MagicMock,
    _mock_get_logger: MagicMock,
    clean_context,
) -> None:
    settings = MagicMock(spec=Settings)
    mock_load_settings.return_value = settings

    first = get_app_context()
    second = get_app_context()

    assert first is second
    mock_build.assert_called_once_with(settings)
