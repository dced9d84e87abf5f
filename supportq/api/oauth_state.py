"""
OAuth state cookies.

The install/auth route stores {state, user_id} in an encrypted cookie; the
callback decrypts it, compares the state and learns which user started
the flow (the provider's redirect carries no Authorization header).
"""

from __future__ import annotations

import secrets

from fastapi import Request, Response

from supportq.crypto.secure_store import CredentialEncryptionError, decrypt_json, encrypt_json
from supportq.infrastructure.settings import ENV

STATE_MAX_AGE_SECONDS = 600


def new_state() -> str:
    return secrets.token_hex(16)


def set_state_cookie(response: Response, name: str, state: str, user_id: str) -> None:
    response.set_cookie(
        name,
        encrypt_json({"state": state, "user_id": user_id}),
        max_age=STATE_MAX_AGE_SECONDS,
        httponly=True,
        secure=ENV == "production",
        samesite="lax",
        path="/",
    )


def clear_state_cookie(response: Response, name: str) -> None:
    response.delete_cookie(name, path="/")


def read_state_cookie(request: Request, name: str, state: str | None) -> tuple[str | None, str | None]:
    """
    (cookie_state, user_id) from the cookie.

    user_id is None unless the cookie decrypts and its state matches.
    """
    raw = request.cookies.get(name)
    if not raw:
        return None, None
    try:
        data = decrypt_json(raw)
    except (CredentialEncryptionError, ValueError):
        return None, None
    cookie_state = data.get("state")
    if not cookie_state or not state or not secrets.compare_digest(cookie_state, state):
        return cookie_state, None
    return cookie_state, data.get("user_id")
