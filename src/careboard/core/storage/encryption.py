"""Fernet-based field encryption for free-text patient data at rest.

Sample notes and alert metadata may carry identifying details, so they are
encrypted before being written to SQLite. Metric values, timestamps and alert
state stay in the clear: the latest-value, window and dedup queries run on
them.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """Encrypts text and JSON fields with Fernet symmetric encryption.

    Usage::

        encryptor = FieldEncryptor(key="...")
        token = encryptor.encrypt_text("felt dizzy after reading")
        encryptor.decrypt_text(token)  # "felt dizzy after reading"
    """

    def __init__(self, key: str) -> None:
        """Initialize with a Fernet key.

        Args:
            key: A valid Fernet key string (see :meth:`generate_key`).

        Raises:
            EncryptionError: If the key is empty or invalid.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode())
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt_text(self, text: str | None) -> str:
        """Encrypt a string. Empty or missing text is stored as ``""``."""
        if not text:
            return ""
        return self._fernet.encrypt(text.encode("utf-8")).decode("utf-8")

    def decrypt_text(self, token: str | None) -> str:
        """Decrypt a token produced by :meth:`encrypt_text`.

        Raises:
            EncryptionError: If the token is invalid or the key is wrong.
        """
        if not token:
            return ""
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc

    def encrypt_json(self, data: Any) -> str:
        """Encrypt a JSON-serializable value (``None`` and empty dicts map to ``""``)."""
        if not data:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self.encrypt_text(plaintext)

    def decrypt_json(self, token: str | None) -> Any:
        """Decrypt a token produced by :meth:`encrypt_json`; ``""`` yields ``{}``."""
        plaintext = self.decrypt_text(token)
        if not plaintext:
            return {}
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64-encoded 32-byte Fernet key."""
        return Fernet.generate_key().decode("utf-8")
