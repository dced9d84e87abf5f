"""
Redaction helpers for logs and LLM prompts.

- redact(): stable short hash for correlating user ids/emails in logs
- redact_email_address(): keep the domain, hide the local part
- sanitize_for_prompt(): strip prompt-injection markers from email text
"""

from __future__ import annotations

import re
from hashlib import sha256

INJECTION_PATTERNS = [
    r"ignore\s+(previous|above|all)\s+instructions?",
    r"disregard\s+(previous|above|all)\s+instructions?",
    r"forget\s+(previous|above|all)\s+instructions?",
    r"new\s+instructions?:",
    r"^\s*system\s*:",
    r"^\s*assistant\s*:",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
]
INJECTION_REGEX = re.compile("|".join(INJECTION_PATTERNS), re.IGNORECASE | re.MULTILINE)

_EMAIL_REGEX = re.compile(r"([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")


def redact(value: str | None) -> str:
    """Return a stable hash representation of a sensitive string."""
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def redact_email_address(value: str | None) -> str:
    """
    "Jane <jane.doe@example.com>" -> "Jane <***@example.com>"
    """
    if not value:
        return ""
    return _EMAIL_REGEX.sub(lambda m: f"***@{m.group(2)}", value)


def sanitize_for_prompt(text: str, max_length: int = 4000) -> str:
    """
    Sanitize email text before including it in an LLM prompt.

    Truncates, removes known injection markers and drops characters that
    could close the prompt's delimiters. Output validation in the proposer
    is the primary defense; this only narrows the attack surface.
    """
    if not text:
        return ""

    text = text[:max_length]
    text = INJECTION_REGEX.sub("[REDACTED]", text)
    text = re.sub(r"[<>{}|\\`]", "", text)
    return text.strip()
