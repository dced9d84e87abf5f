"""
Error message sanitization.

Keeps stack traces, SQL errors, tokens and internal module names out of
HTTP responses. The original error is logged server-side.
"""

from __future__ import annotations

import re

from supportq.observability.logging import get_logger

logger = get_logger(__name__)

SENSITIVE_PATTERNS = [
    # File paths
    r"/[^\s]+\.py",
    r"[A-Za-z]:\\[^\s]+",
    # Stack traces
    r"Traceback \(most recent call last\)",
    r"File \".*\"",
    # Database errors
    r"sqlite3?\.",
    r"UNIQUE constraint",
    r"FOREIGN KEY constraint",
    r"no such (table|column)",
    # Credentials
    r"Bearer [A-Za-z0-9._-]+",
    r"shpat_[A-Za-z0-9]+",
    r"ya29\.[A-Za-z0-9._-]+",
    r"[A-Za-z0-9_-]{32,}",
    # Internal module names
    r"supportq\.[a-z_.]+",
]
_SENSITIVE_REGEX = re.compile("|".join(f"(?:{p})" for p in SENSITIVE_PATTERNS), re.IGNORECASE)

GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required.",
    403: "Access denied.",
    404: "Resource not found.",
    409: "Request conflicts with the current state.",
    422: "Invalid data format.",
    429: "Too many requests. Please try again later.",
    500: "An internal error occurred. Please try again later.",
    502: "Upstream service error.",
    503: "Service temporarily unavailable.",
}


def sanitize_error_message(message: str | None, status_code: int = 500) -> str:
    """
    Return message if it is short and harmless, else a generic message for status_code.

    4xx messages under 200 characters without sensitive content pass
    through so clients see "Please wait 3s before polling again." and
    similar; 5xx always collapse to the generic text.
    """
    fallback = GENERIC_MESSAGES.get(status_code, "An error occurred.")
    if not message:
        return fallback

    if _SENSITIVE_REGEX.search(message):
        logger.warning("Sanitized sensitive error message (status=%d)", status_code)
        return fallback

    if 400 <= status_code < 500 and len(message) < 200 and "\n" not in message:
        return message

    return fallback


def get_safe_error_detail(error: Exception, status_code: int = 500, context: str | None = None) -> str:
    """
    Log error in full and return a client-safe detail string.

    For 5xx responses the context string (e.g. "Failed to execute proposal")
    is returned when given.
    """
    logger.error("Error (status=%d): %s - %s", status_code, type(error).__name__, error)
    if context and status_code >= 500:
        return context
    return sanitize_error_message(str(error), status_code)
