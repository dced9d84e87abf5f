"""Per-user settings (Shopify shop, Gmail query, LLM provider) and poll bookkeeping"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from supportq.crypto.secure_store import CredentialEncryptionError, decrypt, encrypt
from supportq.infrastructure.database import retry_on_db_lock
from supportq.observability.logging import get_logger
from supportq.storage import BaseRepository
from supportq.storage.models import UserSettings, to_iso, utc_now
from supportq.utils.redaction import redact

logger = get_logger(__name__)

# Columns callers may write through upsert(); poll bookkeeping goes through record_poll()
EDITABLE_FIELDS = frozenset(
    {
        "shop_domain",
        "gmail_label_query",
        "llm_provider",
        "llm_model",
        "llm_base_url",
        "gmail_auto_pull_enabled",
        "gmail_polling_interval_sec",
    }
)


class SettingsRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("user_settings")

    def get(self, user_id: str) -> UserSettings | None:
        row = self.query_one("SELECT * FROM user_settings WHERE user_id = ?", (user_id,))
        return UserSettings.from_db_row(dict(row)) if row else None

    def get_or_default(self, user_id: str) -> UserSettings:
        return self.get(user_id) or UserSettings(user_id=user_id)

    @retry_on_db_lock()
    def upsert(
        self,
        user_id: str,
        fields: dict[str, Any],
        llm_api_key: str | None = None,
    ) -> UserSettings:
        """
        Create or partially update the settings row

        Args:
            fields: Subset of EDITABLE_FIELDS; unknown keys raise ValueError
            llm_api_key: Plaintext key, encrypted before storage. An empty
                string clears the stored key; None leaves it untouched.

        Side Effects:
            - Upserts a row in user_settings
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings fields: {sorted(unknown)}")

        values = dict(fields)
        if "gmail_auto_pull_enabled" in values:
            values["gmail_auto_pull_enabled"] = 1 if values["gmail_auto_pull_enabled"] else 0
        if llm_api_key is not None:
            values["encrypted_llm_api_key"] = encrypt(llm_api_key) if llm_api_key else None

        now = to_iso(utc_now())
        self._ensure_row(user_id, now)
        if values:
            assignments = ", ".join(f"{column} = ?" for column in values)
            self.execute(
                f"UPDATE user_settings SET {assignments}, updated_at = ? WHERE user_id = ?",
                (*values.values(), now, user_id),
            )

        logger.info("Updated settings for user %s: %s", redact(user_id), sorted(values))
        return self.get_or_default(user_id)

    @retry_on_db_lock()
    def record_poll(
        self,
        user_id: str,
        *,
        polled_at: datetime,
        fetched: int,
        proposed: int,
        error: str | None,
        history_id: str | None = None,
    ) -> None:
        """
        Save the outcome of a Gmail poll

        history_id=None keeps the stored cursor.

        Side Effects:
            - Upserts last_poll_* columns (and the history cursor) in user_settings
        """
        now = to_iso(utc_now())
        self._ensure_row(user_id, now)
        self.execute(
            """
            UPDATE user_settings SET
                last_poll_at = ?,
                last_poll_fetched = ?,
                last_poll_proposed = ?,
                last_poll_error = ?,
                gmail_last_history_id = COALESCE(?, gmail_last_history_id),
                updated_at = ?
            WHERE user_id = ?
            """,
            (to_iso(polled_at), fetched, proposed, error, history_id, now, user_id),
        )

    def list_auto_pull(self) -> list[UserSettings]:
        rows = self.query_all(
            "SELECT * FROM user_settings WHERE gmail_auto_pull_enabled = 1 ORDER BY user_id"
        )
        return [UserSettings.from_db_row(dict(row)) for row in rows]

    def get_llm_api_key(self, user_id: str) -> str:
        """Decrypted per-user LLM API key, or "" when unset or unreadable."""
        settings = self.get(user_id)
        if not settings or not settings.encrypted_llm_api_key:
            return ""
        try:
            return decrypt(settings.encrypted_llm_api_key)
        except CredentialEncryptionError:
            logger.warning("Stored LLM API key for %s could not be decrypted", redact(user_id))
            return ""

    def _ensure_row(self, user_id: str, now: str | None) -> None:
        self.execute(
            """
            INSERT INTO user_settings (user_id, created_at, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO NOTHING
            """,
            (user_id, now, now),
        )
