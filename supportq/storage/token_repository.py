"""Encrypted OAuth token storage

One row per (user_id, provider). Token JSON is encrypted with the Fernet
cipher from supportq.crypto.secure_store; meta (e.g. the Shopify shop
domain, granted scopes) is stored in clear.

Providers:
- "google" (legacy rows: "gmail") for the Gmail API
- "shopify" for the Shopify Admin API
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Sequence
from typing import Any

from supportq.crypto.secure_store import CredentialEncryptionError, decrypt_json, encrypt_json
from supportq.infrastructure.database import retry_on_db_lock
from supportq.observability.logging import get_logger
from supportq.storage import BaseRepository
from supportq.storage.models import StoredToken, load_json, parse_iso, to_iso, utc_now
from supportq.utils.redaction import redact

logger = get_logger(__name__)

GMAIL_PROVIDERS: tuple[str, ...] = ("google", "gmail")
SHOPIFY_PROVIDERS: tuple[str, ...] = ("shopify",)


class TokenRepository(BaseRepository):
    """Repository for encrypted OAuth tokens."""

    def __init__(self) -> None:
        super().__init__("tokens")

    @retry_on_db_lock()
    def store(
        self,
        user_id: str,
        provider: str,
        token: dict[str, Any],
        meta: dict[str, Any] | None = None,
    ) -> str:
        """
        Insert or replace the token for (user_id, provider)

        Returns:
            Row id (kept stable across updates)

        Raises:
            CredentialEncryptionError: If encryption fails

        Side Effects:
            - Upserts a row in tokens
        """
        encrypted = encrypt_json(token)
        now = to_iso(utc_now())
        token_id = str(uuid.uuid4())
        self.execute(
            """
            INSERT INTO tokens (id, user_id, provider, encrypted_token, meta, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, provider) DO UPDATE SET
                encrypted_token = excluded.encrypted_token,
                meta = excluded.meta,
                updated_at = excluded.updated_at
            """,
            (token_id, user_id, provider, encrypted, json.dumps(meta or {}), now, now),
        )
        row = self.query_one(
            "SELECT id FROM tokens WHERE user_id = ? AND provider = ?", (user_id, provider)
        )
        logger.info("Stored %s token for user %s", provider, redact(user_id))
        return row["id"] if row else token_id

    def get(self, user_id: str, providers: Sequence[str]) -> StoredToken | None:
        """
        Load and decrypt the newest token for any of the given providers

        An undecryptable token (key rotated, corrupt row) is treated as an
        empty token so callers report "no access token" instead of crashing.
        """
        if not providers:
            return None
        placeholders = ",".join("?" * len(providers))
        row = self.query_one(
            f"""
            SELECT * FROM tokens
            WHERE user_id = ? AND provider IN ({placeholders})
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (user_id, *providers),
        )
        if not row:
            return None

        try:
            token = decrypt_json(row["encrypted_token"])
        except CredentialEncryptionError:
            logger.warning(
                "Could not decrypt %s token for user %s", row["provider"], redact(user_id)
            )
            token = {}

        return StoredToken(
            id=row["id"],
            user_id=row["user_id"],
            provider=row["provider"],
            token=token,
            meta=load_json(row["meta"], {}),
            created_at=parse_iso(row["created_at"]) or utc_now(),
            updated_at=parse_iso(row["updated_at"]) or utc_now(),
        )

    def has_token(self, user_id: str, providers: Sequence[str]) -> bool:
        placeholders = ",".join("?" * len(providers))
        row = self.query_one(
            f"SELECT 1 FROM tokens WHERE user_id = ? AND provider IN ({placeholders}) LIMIT 1",
            (user_id, *providers),
        )
        return row is not None

    @retry_on_db_lock()
    def update_token(self, token_id: str, token: dict[str, Any]) -> None:
        """
        Re-encrypt and save a refreshed token

        Side Effects:
            - Updates encrypted_token and updated_at for the row
        """
        self.execute(
            "UPDATE tokens SET encrypted_token = ?, updated_at = ? WHERE id = ?",
            (encrypt_json(token), to_iso(utc_now()), token_id),
        )

    @retry_on_db_lock()
    def delete(self, user_id: str, provider: str) -> bool:
        return (
            self.execute(
                "DELETE FROM tokens WHERE user_id = ? AND provider = ?", (user_id, provider)
            )
            > 0
        )
