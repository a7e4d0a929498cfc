"""Payload encryption for the local cache."""

from roster_sync.crypto.adapter import EncryptedPayload, decrypt, encrypt, generate_key

__all__ = ["EncryptedPayload", "decrypt", "encrypt", "generate_key"]
