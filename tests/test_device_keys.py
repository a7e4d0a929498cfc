from __future__ import annotations

import base64
import stat

import pytest

from roster_sync.auth.device_keys import DeviceKeyStore
from roster_sync.crypto.adapter import KEY_LENGTH_BYTES


def test_get_or_create_persists_across_instances(tmp_path) -> None:
    first = DeviceKeyStore(str(tmp_path / "keys"))
    key = first.get_or_create("user-1")

    second = DeviceKeyStore(str(tmp_path / "keys"))

    assert len(key) == KEY_LENGTH_BYTES
    assert second.get_or_create("user-1") == key
    assert second.get_or_create("user-2") != key


def test_key_file_is_owner_only(tmp_path) -> None:
    store = DeviceKeyStore(str(tmp_path))
    store.get_or_create("user-1")

    mode = stat.S_IMODE((tmp_path / "device_key_user-1").stat().st_mode)

    assert mode == 0o600
    assert [p.name for p in tmp_path.iterdir()] == ["device_key_user-1"]


def test_missing_key_loads_as_none(tmp_path) -> None:
    assert DeviceKeyStore(str(tmp_path)).load("nobody") is None


@pytest.mark.parametrize("user_id", ["../escape", "a/b", "", "x" * 129])
def test_unsafe_user_ids_rejected(tmp_path, user_id: str) -> None:
    store = DeviceKeyStore(str(tmp_path))

    with pytest.raises(ValueError, match="Unsupported user id"):
        store.get_or_create(user_id)


@pytest.mark.parametrize(
    "content",
    ["not base64 !!", base64.b64encode(b"short").decode("ascii")],
)
def test_unusable_key_file_is_replaced(tmp_path, content: str) -> None:
    (tmp_path / "device_key_user-1").write_text(content, encoding="utf-8")
    store = DeviceKeyStore(str(tmp_path))

    assert store.load("user-1") is None
    key = store.get_or_create("user-1")
    assert store.load("user-1") == key
