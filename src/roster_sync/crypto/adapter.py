"""AES-256-GCM encryption of cached payloads.

The key is always supplied by the caller (derived once per session by the
authentication layer); this module never derives or stores keys.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from roster_sync.errors import DecryptionError
from roster_sync.utils.serialization import json_default

KEY_LENGTH_BYTES = 32
IV_LENGTH_BYTES = 12


@dataclass(frozen=True)
class EncryptedPayload:
    ciphertext: bytes
    iv: bytes


def generate_key() -> bytes:
    return AESGCM.generate_key(bit_length=KEY_LENGTH_BYTES * 8)


def _has_valid_length(key: bytes | None) -> bool:
    return bool(key) and len(key) == KEY_LENGTH_BYTES


def encrypt(payload: Any, key: bytes) -> EncryptedPayload:
    """Serialize ``payload`` to JSON and encrypt it under a fresh 96-bit IV."""
    if not _has_valid_length(key):
        raise ValueError("Encryption key is missing or has the wrong length")
    cipher = AESGCM(key)
    data = json.dumps(payload, ensure_ascii=True, default=json_default).encode("utf-8")
    iv = os.urandom(IV_LENGTH_BYTES)
    return EncryptedPayload(ciphertext=cipher.encrypt(iv, data, None), iv=iv)


def decrypt(blob: EncryptedPayload, key: bytes | None) -> Any:
    """Decrypt and deserialize a payload produced by :func:`encrypt`.

    Raises:
        DecryptionError: missing/invalid key, tampered ciphertext or wrong key.
    """
    if key is None or not _has_valid_length(key):
        raise DecryptionError("Decryption key is missing or has the wrong length")
    cipher = AESGCM(key)
    try:
        plaintext = cipher.decrypt(blob.iv, blob.ciphertext, None)
    except (InvalidTag, ValueError) as exc:
        raise DecryptionError("Cached payload cannot be decrypted with the current key") from exc
    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionError(f"Decrypted payload is not valid JSON: {exc}") from exc
