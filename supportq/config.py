"""Centralized configuration for the SupportQ backend.

Re-exports everything from supportq.infrastructure.settings, then adds typed
constants for database, HTTP retry, polling, LLM and API settings.
Environment variable overrides use safe defaults so the app starts without
extra env configuration.
"""

from __future__ import annotations

import os

from supportq.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.3.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("SUPPORTQ_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("SUPPORTQ_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("SUPPORTQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("SUPPORTQ_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("SUPPORTQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("SUPPORTQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("SUPPORTQ_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("SUPPORTQ_DB_RETRY_JITTER", "0.1"))
DB_WAL_CHECKPOINT_INTERVAL: int = int(os.getenv("SUPPORTQ_WAL_CHECKPOINT_INTERVAL", "300"))

# --- HTTP retry (shared by Gmail and Shopify clients) ---
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("SUPPORTQ_HTTP_TIMEOUT", "15.0"))
HTTP_RETRIES: int = int(os.getenv("SUPPORTQ_HTTP_RETRIES", "2"))
HTTP_BACKOFF_SECONDS: float = float(os.getenv("SUPPORTQ_HTTP_BACKOFF", "0.5"))
HTTP_JITTER_SECONDS: float = 0.25
HTTP_MAX_RETRY_AFTER_SECONDS: float = float(os.getenv("SUPPORTQ_HTTP_MAX_RETRY_AFTER", "60"))

# --- Gmail ---
GMAIL_API_BASE: str = "https://gmail.googleapis.com/gmail/v1/users/me"
GMAIL_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
GMAIL_AUTH_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
GMAIL_RETRIES: int = 3
GMAIL_BACKOFF_SECONDS: float = 0.5
GMAIL_REFRESH_TIMEOUT: float = 10.0
GMAIL_REFRESH_RETRIES: int = 2
GMAIL_REFRESH_BACKOFF: float = 0.4
GMAIL_HISTORY_MAX_PAGES: int = 5
GMAIL_HISTORY_MIN_PAGE_SIZE: int = 100
GMAIL_CIRCUIT_FAIL_MAX: int = int(os.getenv("SUPPORTQ_GMAIL_CIRCUIT_FAIL_MAX", "5"))
GMAIL_CIRCUIT_RESET_SECONDS: float = float(os.getenv("SUPPORTQ_GMAIL_CIRCUIT_RESET", "60"))

# --- Polling ---
POLL_MIN_INTERVAL_SECONDS: int = int(os.getenv("SUPPORTQ_POLL_MIN_INTERVAL", "5"))
POLL_DEFAULT_MAX_RESULTS: int = 25
POLL_MAX_RESULTS_CAP: int = 100
POLL_DEFAULT_INTERVAL_SECONDS: int = 300
POLL_SCHEDULER_TICK_SECONDS: int = int(os.getenv("SUPPORTQ_POLL_TICK", "30"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("SUPPORTQ_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("SUPPORTQ_LLM_MAX_RETRIES", "3"))
LLM_CONTENT_MAX_CHARS: int = 4000

# --- API ---
API_LIST_LIMIT_DEFAULT: int = 20
API_LIST_LIMIT_MAX: int = 100
API_BULK_REVIEW_MAX: int = 200
