"""Per-user device key storage.

The key survives access-token refreshes so that data cached in one session
stays readable in the next one on the same device.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import logging
import os
import re
import tempfile
from pathlib import Path

from roster_sync.crypto.adapter import KEY_LENGTH_BYTES, generate_key

logger = logging.getLogger(__name__)

_KEY_PREFIX = "device_key_"
_SAFE_USER_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


class DeviceKeyStore:
    """Persist one base64 AES key per user id with owner-only permissions."""

    def __init__(self, base_path: str) -> None:
        self._base_path = Path(base_path).expanduser()
        self._base_path.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(OSError):
            os.chmod(self._base_path, 0o700)

    def _path(self, user_id: str) -> Path:
        if not _SAFE_USER_ID_RE.match(user_id):
            raise ValueError(f"Unsupported user id for key storage: {user_id[:32]!r}")
        return self._base_path / f"{_KEY_PREFIX}{user_id}"

    def load(self, user_id: str) -> bytes | None:
        path = self._path(user_id)
        if not path.exists():
            return None
        encoded = path.read_text(encoding="utf-8").strip()
        try:
            key = base64.b64decode(encoded, validate=True)
        except binascii.Error:
            logger.warning("Ignoring unreadable device key for user %s", user_id)
            return None
        if len(key) != KEY_LENGTH_BYTES:
            logger.warning("Ignoring device key with wrong length for user %s", user_id)
            return None
        return key

    def save(self, user_id: str, key: bytes) -> None:
        path = self._path(user_id)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._base_path), prefix=".key_", suffix=".tmp")
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(base64.b64encode(key).decode("ascii"))
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise

    def get_or_create(self, user_id: str) -> bytes:
        key = self.load(user_id)
        if key is not None:
            return key
        key = generate_key()
        self.save(user_id, key)
        logger.info("Generated new device key for user %s", user_id)
        return key
