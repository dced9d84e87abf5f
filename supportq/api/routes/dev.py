"""
Development helpers: seed and clear demo data.

Both endpoints refuse to run when SUPPORTQ_ENV is production.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from supportq.agent.proposer import ALLOWED_ACTIONS
from supportq.api.middleware.user_auth import get_current_user_id
from supportq.infrastructure import settings
from supportq.infrastructure.database import db_transaction
from supportq.observability.logging import get_logger
from supportq.proposals.models import ALL_STATUSES, Proposal, payload_hash
from supportq.storage.email_repository import EmailRepository
from supportq.storage.models import EmailRecord, utc_now

router = APIRouter(prefix="/api/dev", tags=["dev"])
logger = get_logger(__name__)

SEED_COUNT = 50

_SEED_SUBJECTS = {
    "cancel_order": "Please cancel my order",
    "update_address": "Wrong shipping address",
    "resend_order": "My package never arrived",
}


def _require_non_production() -> None:
    if settings.ENV == "production":
        raise HTTPException(status_code=403, detail="Not available in production")


def _seed_rows(user_id: str, index: int, created_at: Any) -> tuple[EmailRecord, Proposal]:
    action_type = sorted(ALLOWED_ACTIONS)[index % len(ALLOWED_ACTIONS)]
    order_name = f"#{1001 + index}"
    email = EmailRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        gmail_message_id=f"seed-{uuid.uuid4().hex[:16]}",
        thread_id=f"seed-thread-{index}",
        from_address=f"customer{index}@example.com",
        subject=f"{_SEED_SUBJECTS[action_type]} {order_name}",
        snippet=f"Hi, regarding order {order_name}: {_SEED_SUBJECTS[action_type].lower()}.",
        received_at=created_at,
        created_at=created_at,
    )
    payload = {"order_name": order_name}
    proposal = Proposal(
        id=str(uuid.uuid4()),
        email_id=email.id,
        user_id=user_id,
        action_type=action_type,
        payload=payload,
        payload_hash=payload_hash(payload),
        summary=f"{_SEED_SUBJECTS[action_type]} ({order_name})",
        status=ALL_STATUSES[index % len(ALL_STATUSES)],
        model_meta={"source": "seed"},
        created_at=created_at,
        updated_at=created_at,
    )
    return email, proposal


@router.post("/seed")
async def seed(user_id: str = Depends(get_current_user_id)) -> dict[str, Any]:
    """
    Insert demo emails with one proposal each.

    Side Effects:
        - Inserts SEED_COUNT emails and proposals with distinct created_at values
    """
    _require_non_production()
    now = utc_now()
    with db_transaction() as conn:
        for index in range(SEED_COUNT):
            email, proposal = _seed_rows(user_id, index, now - timedelta(minutes=index))
            email_row = email.to_db_dict()
            conn.execute(
                f"INSERT INTO emails ({', '.join(email_row)}) "
                f"VALUES ({', '.join(':' + k for k in email_row)})",
                email_row,
            )
            proposal_row = proposal.to_db_dict()
            conn.execute(
                f"INSERT INTO proposals ({', '.join(proposal_row)}) "
                f"VALUES ({', '.join(':' + k for k in proposal_row)})",
                proposal_row,
            )
    logger.info("Seeded %d demo proposals", SEED_COUNT)
    return {"ok": True, "seeded": SEED_COUNT}


@router.post("/clear")
async def clear(user_id: str = Depends(get_current_user_id)) -> dict[str, Any]:
    """Delete the user's emails (proposals and actions cascade)."""
    _require_non_production()
    deleted = EmailRepository.delete_for_user(user_id)
    return {"ok": True, "deleted_emails": deleted}
