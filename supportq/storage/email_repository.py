"""
Email Repository - persistence for fetched Gmail messages.

Rows are unique per (user_id, gmail_message_id); inserts use
ON CONFLICT DO NOTHING so concurrent or repeated polls never duplicate.
"""

from __future__ import annotations

from supportq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from supportq.observability.logging import get_logger
from supportq.storage.models import EmailRecord

logger = get_logger(__name__)


class EmailRepository:
    @staticmethod
    def exists(user_id: str, gmail_message_id: str) -> bool:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM emails WHERE user_id = ? AND gmail_message_id = ?",
                (user_id, gmail_message_id),
            ).fetchone()
        return row is not None

    @staticmethod
    def get_by_gmail_id(user_id: str, gmail_message_id: str) -> EmailRecord | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM emails WHERE user_id = ? AND gmail_message_id = ?",
                (user_id, gmail_message_id),
            ).fetchone()
        return EmailRecord.from_db_row(dict(row)) if row else None

    @staticmethod
    def get_by_id(email_id: str) -> EmailRecord | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM emails WHERE id = ?", (email_id,)).fetchone()
        return EmailRecord.from_db_row(dict(row)) if row else None

    @staticmethod
    @retry_on_db_lock()
    def insert_if_absent(email: EmailRecord) -> EmailRecord:
        """
        Insert the email unless (user_id, gmail_message_id) already exists.

        Returns:
            The stored row (the pre-existing one if another poll won the race)

        Side Effects:
            - Inserts into emails
        """
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO emails (
                    id, user_id, gmail_message_id, thread_id, history_id,
                    from_address, to_address, subject, snippet, body_hash,
                    labels, summary, received_at, created_at
                ) VALUES (
                    :id, :user_id, :gmail_message_id, :thread_id, :history_id,
                    :from_address, :to_address, :subject, :snippet, :body_hash,
                    :labels, :summary, :received_at, :created_at
                )
                ON CONFLICT(user_id, gmail_message_id) DO NOTHING
                """,
                email.to_db_dict(),
            )
        stored = EmailRepository.get_by_gmail_id(email.user_id, email.gmail_message_id)
        return stored or email

    @staticmethod
    @retry_on_db_lock()
    def delete_for_user(user_id: str) -> int:
        """
        Delete a user's emails (their proposals and actions cascade).

        Side Effects:
            - Deletes rows from emails, proposals and actions
        """
        with db_transaction() as conn:
            cursor = conn.execute("DELETE FROM emails WHERE user_id = ?", (user_id,))
            deleted = cursor.rowcount
        logger.info("Deleted %d emails", deleted)
        return deleted
