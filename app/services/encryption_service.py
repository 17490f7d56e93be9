# app/services/encryption_service.py
"""
AES-256-GCM encryption for PBX credentials at rest.

Envelope format: ``iv:authTag:ciphertext``, every part hex encoded.
The key comes from ENCRYPTION_KEY (64 hex chars = 32 bytes) and is only
checked when a credential is actually encrypted or decrypted.
"""
from __future__ import annotations

import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import get_settings

KEY_LENGTH = 32
IV_LENGTH = 12
AUTH_TAG_LENGTH = 16


class EncryptionConfigError(RuntimeError):
    """ENCRYPTION_KEY is missing or malformed."""


class DecryptionError(ValueError):
    """The envelope is malformed or failed authentication."""


class CredentialStore:
    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise EncryptionConfigError(
                f"Encryption key must be exactly {KEY_LENGTH} bytes, got {len(key)}"
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: Optional[str]) -> "CredentialStore":
        if not hex_key:
            raise EncryptionConfigError("ENCRYPTION_KEY environment variable is not set")
        if len(hex_key) != KEY_LENGTH * 2:
            raise EncryptionConfigError(
                f"ENCRYPTION_KEY must be {KEY_LENGTH * 2} hex characters ({KEY_LENGTH} bytes)"
            )
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as exc:
            raise EncryptionConfigError("ENCRYPTION_KEY must be hex encoded") from exc
        return cls(key)

    @classmethod
    def from_settings(cls) -> "CredentialStore":
        return cls.from_hex(get_settings().ENCRYPTION_KEY)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, auth_tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return f"{iv.hex()}:{auth_tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, envelope: str) -> str:
        parts = envelope.split(":")
        if len(parts) != 3:
            raise DecryptionError("Invalid ciphertext format. Expected: iv:authTag:encrypted")

        iv_hex, auth_tag_hex, ciphertext_hex = parts
        try:
            iv = binascii.unhexlify(iv_hex)
            auth_tag = binascii.unhexlify(auth_tag_hex)
            ciphertext = binascii.unhexlify(ciphertext_hex)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Invalid ciphertext format: parts must be hex encoded") from exc

        if len(iv) != IV_LENGTH or len(auth_tag) != AUTH_TAG_LENGTH:
            raise DecryptionError("Invalid ciphertext format: bad iv or auth tag length")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + auth_tag, None)
        except InvalidTag as exc:
            raise DecryptionError("Authentication tag mismatch: ciphertext was tampered with") from exc

        return plaintext.decode("utf-8")


def encrypt(plaintext: str) -> str:
    return CredentialStore.from_settings().encrypt(plaintext)


def decrypt(envelope: str) -> str:
    return CredentialStore.from_settings().decrypt(envelope)
