"""Gmail endpoints: OAuth connect, manual poll, inbox preview, reply"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from supportq.api.middleware.user_auth import get_current_user_id
from supportq.api.oauth_state import (
    clear_state_cookie,
    new_state,
    read_state_cookie,
    set_state_cookie,
)
from supportq.api.responses import result_response
from supportq.config import POLL_DEFAULT_MAX_RESULTS, POLL_MAX_RESULTS_CAP
from supportq.gmail import sync
from supportq.gmail.oauth import GmailOAuthError, build_authorization_url, exchange_code
from supportq.observability.logging import get_logger
from supportq.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/gmail", tags=["gmail"])
logger = get_logger(__name__)

STATE_COOKIE = "gmail_oauth_state"
SETTINGS_PAGE = "/settings"


class PollRequest(BaseModel):
    max_results: int = Field(default=POLL_DEFAULT_MAX_RESULTS, ge=1, le=POLL_MAX_RESULTS_CAP)


class ReplyRequest(BaseModel):
    thread_id: str | None = Field(default=None, max_length=100)
    to: str = Field(..., min_length=3, max_length=320)
    subject: str = Field(default="", max_length=998)
    body: str = Field(..., min_length=1, max_length=100_000)


@router.get("/auth")
async def gmail_auth(user_id: str = Depends(get_current_user_id)) -> RedirectResponse:
    """Redirect to Google's consent screen."""
    state = new_state()
    try:
        url = build_authorization_url(state)
    except GmailOAuthError as e:
        raise HTTPException(status_code=500, detail=str(e)) from None
    response = RedirectResponse(url, status_code=302)
    set_state_cookie(response, STATE_COOKIE, state, user_id)
    return response


@router.get("/callback")
def gmail_callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
) -> RedirectResponse:
    """
    Finish the OAuth flow.

    Side Effects:
        - Exchanges the code with Google and stores the token encrypted
    """
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing required parameters")
    _, user_id = read_state_cookie(request, STATE_COOKIE, state)
    if not user_id:
        raise HTTPException(status_code=400, detail="Invalid state")

    try:
        exchange_code(user_id, code, state)
    except GmailOAuthError as e:
        raise HTTPException(status_code=502, detail=str(e)) from None

    response = RedirectResponse(SETTINGS_PAGE, status_code=302)
    clear_state_cookie(response, STATE_COOKIE)
    return response


@router.get("/emails")
def list_emails(
    label_query: str | None = Query(None, max_length=500),
    max_results: int = Query(POLL_DEFAULT_MAX_RESULTS, ge=1, le=POLL_MAX_RESULTS_CAP),
    user_id: str = Depends(get_current_user_id),
) -> JSONResponse:
    """Fetch matching messages without storing them."""
    return result_response(sync.load_emails(user_id, label_query, max_results))


@router.post("/poll")
def poll_now(
    request: PollRequest | None = None, user_id: str = Depends(get_current_user_id)
) -> JSONResponse:
    """
    Manual poll (throttled, one at a time per user).

    Side Effects:
        - Gmail API calls; inserts emails and proposals
    """
    max_results = request.max_results if request else POLL_DEFAULT_MAX_RESULTS
    return result_response(sync.poll(user_id, max_results))


@router.post("/reply")
def reply(request: ReplyRequest, user_id: str = Depends(get_current_user_id)) -> JSONResponse:
    """Send a plain-text reply in a thread."""
    if "\n" in request.to or "\r" in request.to or "\n" in request.subject:
        raise HTTPException(
            status_code=400, detail=sanitize_error_message("Invalid header value", 400)
        )
    return result_response(
        sync.send_reply(user_id, request.thread_id, request.to, request.subject, request.body)
    )
