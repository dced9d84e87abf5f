"""
Database schema for SupportQ.

Five tables:
- tokens: encrypted OAuth tokens, one row per (user_id, provider)
- emails: fetched Gmail messages, unique per (user_id, gmail_message_id)
- proposals: generated actions, unique per (email_id, action_type, payload_hash)
- actions: execution attempts for a proposal
- user_settings: per-user Shopify/Gmail/LLM settings and poll bookkeeping
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from supportq.observability.logging import get_logger

logger = get_logger(__name__)


SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS tokens (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        provider TEXT NOT NULL,
        encrypted_token TEXT NOT NULL,
        meta TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(user_id, provider)
    );

    CREATE TABLE IF NOT EXISTS emails (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        gmail_message_id TEXT NOT NULL,
        thread_id TEXT,
        history_id TEXT,
        from_address TEXT,
        to_address TEXT,
        subject TEXT,
        snippet TEXT,
        body_hash TEXT,
        labels TEXT,
        summary TEXT,
        received_at TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(user_id, gmail_message_id)
    );

    CREATE TABLE IF NOT EXISTS proposals (
        id TEXT PRIMARY KEY,
        email_id TEXT NOT NULL REFERENCES emails(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        action_type TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        payload_hash TEXT NOT NULL,
        summary TEXT,
        status TEXT NOT NULL DEFAULT 'proposed'
            CHECK (status IN ('proposed', 'approved', 'rejected', 'executed', 'failed')),
        model_meta TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(email_id, action_type, payload_hash)
    );

    CREATE TABLE IF NOT EXISTS actions (
        id TEXT PRIMARY KEY,
        proposal_id TEXT NOT NULL REFERENCES proposals(id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'executed', 'failed')),
        result_json TEXT,
        error TEXT,
        executed_at TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS user_settings (
        user_id TEXT PRIMARY KEY,
        shop_domain TEXT,
        gmail_label_query TEXT,
        llm_provider TEXT,
        llm_model TEXT,
        llm_base_url TEXT,
        encrypted_llm_api_key TEXT,
        gmail_auto_pull_enabled INTEGER NOT NULL DEFAULT 0,
        gmail_polling_interval_sec INTEGER NOT NULL DEFAULT 300,
        last_poll_at TEXT,
        last_poll_fetched INTEGER,
        last_poll_proposed INTEGER,
        last_poll_error TEXT,
        gmail_last_history_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_emails_user_received
        ON emails(user_id, received_at DESC);
    CREATE INDEX IF NOT EXISTS idx_proposals_user_created
        ON proposals(user_id, created_at DESC, id DESC);
    CREATE INDEX IF NOT EXISTS idx_proposals_user_status
        ON proposals(user_id, status);
    CREATE INDEX IF NOT EXISTS idx_actions_proposal
        ON actions(proposal_id, created_at DESC);
"""

REQUIRED_TABLES: dict[str, list[str]] = {
    "tokens": ["id", "user_id", "provider", "encrypted_token"],
    "emails": ["id", "user_id", "gmail_message_id", "thread_id", "history_id", "body_hash"],
    "proposals": ["id", "email_id", "user_id", "action_type", "payload_hash", "status"],
    "actions": ["id", "proposal_id", "status", "result_json", "error"],
    "user_settings": ["user_id", "gmail_auto_pull_enabled", "gmail_last_history_id"],
}


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Side Effects:
        - Creates db_path's directory if needed
        - Creates tables and indexes that do not exist yet
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables or columns are missing
    """
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(REQUIRED_TABLES) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {sorted(missing_tables)}")

    for table, required_cols in REQUIRED_TABLES.items():
        # Identifiers come from the dict above, never from input
        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}
        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table {table} missing columns: {sorted(missing_cols)}")

    return True
