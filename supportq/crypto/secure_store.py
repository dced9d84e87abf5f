"""Encryption for OAuth tokens and API keys at rest

SECURITY:
- Fernet (AES-128-CBC + HMAC-SHA256) from the cryptography package
- Key comes from SUPPORTQ_ENCRYPTION_KEY and is never stored in the database
- Ciphertext is stored as the URL-safe base64 Fernet token string
"""

from __future__ import annotations

import json
import os
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from supportq.observability.logging import get_logger

logger = get_logger(__name__)

ENCRYPTION_KEY_ENV = "SUPPORTQ_ENCRYPTION_KEY"


class CredentialEncryptionError(Exception):
    """Raised when credential encryption/decryption fails"""


def generate_key() -> str:
    return Fernet.generate_key().decode()


def get_cipher() -> Fernet:
    """
    Build the Fernet cipher from the environment

    Read on every call so key rotation in tests and deployments takes effect
    without a restart of the import graph.

    Raises:
        ValueError: If SUPPORTQ_ENCRYPTION_KEY is not set or malformed
    """
    encryption_key = os.getenv(ENCRYPTION_KEY_ENV)

    if not encryption_key:
        raise ValueError(
            f"{ENCRYPTION_KEY_ENV} environment variable must be set. "
            "Generate one with: python -c "
            "'from cryptography.fernet import Fernet; "
            "print(Fernet.generate_key().decode())'"
        )

    try:
        return Fernet(encryption_key.encode())
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid encryption key format: {e}") from e


def encrypt(plaintext: str) -> str:
    """
    Encrypt a string

    Raises:
        CredentialEncryptionError: If encryption fails
    """
    cipher = get_cipher()
    try:
        return cipher.encrypt(plaintext.encode("utf-8")).decode()
    except (TypeError, ValueError) as e:
        logger.error("Failed to encrypt secret: %s", e)
        raise CredentialEncryptionError(f"Encryption failed: {e}") from e


def decrypt(blob: str) -> str:
    """
    Decrypt a string produced by encrypt()

    Raises:
        CredentialEncryptionError: If the blob is corrupt or was encrypted
            with another key
    """
    cipher = get_cipher()
    try:
        return cipher.decrypt(blob.encode()).decode("utf-8")
    except (InvalidToken, TypeError, ValueError) as e:
        logger.error("Failed to decrypt secret: %s", type(e).__name__)
        raise CredentialEncryptionError("Decryption failed") from e


def encrypt_json(payload: dict[str, Any]) -> str:
    return encrypt(json.dumps(payload))


def decrypt_json(blob: str) -> dict[str, Any]:
    """
    Decrypt a JSON object

    Raises:
        CredentialEncryptionError: If decryption fails or the plaintext is
            not a JSON object
    """
    plaintext = decrypt(blob)
    try:
        value = json.loads(plaintext or "{}")
    except json.JSONDecodeError as e:
        raise CredentialEncryptionError("Decrypted payload is not JSON") from e
    if not isinstance(value, dict):
        raise CredentialEncryptionError("Decrypted payload is not a JSON object")
    return value
