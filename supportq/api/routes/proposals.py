"""
Proposal review endpoints.

List/count for the dashboard, approve/reject (single and bulk), execute,
and the latest execution record per proposal.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from supportq.api.middleware.user_auth import get_current_user_id
from supportq.api.responses import result_response
from supportq.config import API_BULK_REVIEW_MAX, API_LIST_LIMIT_DEFAULT, API_LIST_LIMIT_MAX
from supportq.observability.logging import get_logger
from supportq.proposals import service
from supportq.proposals.models import Proposal, ProposalFilters, ProposalStatus, ReviewDecision
from supportq.proposals.repository import ProposalRepository
from supportq.storage.models import to_iso
from supportq.utils.error_sanitizer import get_safe_error_detail

router = APIRouter(prefix="/api/proposals", tags=["proposals"])
logger = get_logger(__name__)


class ReviewRequest(BaseModel):
    decision: ReviewDecision


class BulkReviewRequest(BaseModel):
    proposal_ids: list[str] = Field(..., min_length=1, max_length=API_BULK_REVIEW_MAX)
    decision: ReviewDecision


def _proposal_body(proposal: Proposal) -> dict[str, Any]:
    return {
        "id": proposal.id,
        "email_id": proposal.email_id,
        "action_type": proposal.action_type,
        "status": proposal.status,
        "payload": proposal.payload,
        "summary": proposal.summary,
        "model_meta": proposal.model_meta,
        "created_at": to_iso(proposal.created_at),
        "updated_at": to_iso(proposal.updated_at),
        "email": {
            "snippet": proposal.snippet,
            "from": proposal.from_address,
            "subject": proposal.subject,
            "received_at": to_iso(proposal.received_at),
            "thread_id": proposal.thread_id,
        },
    }


def _filters(
    status: ProposalStatus | None,
    action_type: str | None,
    date_from: datetime | None,
    date_to: datetime | None,
    q: str | None,
) -> ProposalFilters:
    return ProposalFilters(
        status=status, action_type=action_type, date_from=date_from, date_to=date_to, q=q
    )


@router.get("")
async def list_proposals(
    status: ProposalStatus | None = Query(None),
    action_type: str | None = Query(None, max_length=50),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    q: str | None = Query(None, max_length=200),
    limit: int = Query(API_LIST_LIMIT_DEFAULT, ge=1, le=API_LIST_LIMIT_MAX),
    cursor: str | None = Query(None, max_length=500),
    user_id: str = Depends(get_current_user_id),
) -> dict[str, Any]:
    """Newest-first page of proposals with keyset pagination."""
    page = ProposalRepository.list_for_user(
        user_id, _filters(status, action_type, date_from, date_to, q), limit=limit, cursor=cursor
    )
    return {
        "ok": True,
        "proposals": [_proposal_body(p) for p in page.proposals],
        "page": {
            "limit": page.limit,
            "cursor": page.cursor,
            "next_cursor": page.next_cursor,
            "has_more": page.has_more,
            "total_count": page.total_count,
        },
    }


@router.get("/counts")
async def count_proposals(
    action_type: str | None = Query(None, max_length=50),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    q: str | None = Query(None, max_length=200),
    user_id: str = Depends(get_current_user_id),
) -> dict[str, Any]:
    counts = ProposalRepository.count_by_status(
        user_id, _filters(None, action_type, date_from, date_to, q)
    )
    return {"ok": True, "counts": counts}


@router.post("/bulk-review")
async def bulk_review(
    request: BulkReviewRequest, user_id: str = Depends(get_current_user_id)
) -> JSONResponse:
    try:
        result = service.bulk_review(user_id, request.proposal_ids, request.decision)
    except service.ProposalError as e:
        raise HTTPException(status_code=400, detail=get_safe_error_detail(e, 400)) from None
    return result_response(result)


@router.post("/{proposal_id}/review")
async def review(
    proposal_id: str, request: ReviewRequest, user_id: str = Depends(get_current_user_id)
) -> JSONResponse:
    return result_response(service.review_proposal(user_id, proposal_id, request.decision))


@router.post("/{proposal_id}/execute")
def execute(proposal_id: str, user_id: str = Depends(get_current_user_id)) -> JSONResponse:
    """
    Execute the proposal against Shopify.

    Side Effects:
        - Shopify API calls; inserts an actions row; updates status
    """
    return result_response(service.execute_proposal(user_id, proposal_id))


@router.get("/{proposal_id}/action")
async def latest_action(
    proposal_id: str, user_id: str = Depends(get_current_user_id)
) -> JSONResponse:
    return result_response(service.get_proposal_action(user_id, proposal_id))
