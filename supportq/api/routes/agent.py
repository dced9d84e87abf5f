"""Direct agent endpoints (propose/orchestrate ad-hoc content, run one action)"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from supportq.agent import bridge
from supportq.agent.orchestrator import DatabaseReporter, orchestrate_email
from supportq.agent.proposer import ActionType
from supportq.api.middleware.user_auth import get_current_user_id
from supportq.api.responses import result_response
from supportq.storage.email_repository import EmailRepository

router = APIRouter(prefix="/api", tags=["agent"])


class ProposeRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=50_000)


class OrchestrateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=50_000)
    email_id: str | None = Field(default=None, max_length=100)
    execute: bool = False


class ExecuteActionRequest(BaseModel):
    action_type: ActionType
    payload: dict[str, Any] = Field(default_factory=dict)


@router.post("/agent/propose")
def propose(request: ProposeRequest, user_id: str = Depends(get_current_user_id)) -> dict[str, Any]:
    """Propose actions for pasted content; nothing is stored."""
    batch = bridge.propose_for_user(user_id, request.content)
    return {
        "ok": True,
        "proposals": [action.to_dict() for action in batch.actions],
        "model_meta": batch.model_meta,
    }


@router.post("/agent/orchestrate")
def orchestrate(
    request: OrchestrateRequest, user_id: str = Depends(get_current_user_id)
) -> dict[str, Any]:
    """
    Propose (and optionally execute) actions for content.

    With an email_id owned by the user, proposals and executions are stored.

    Side Effects:
        - LLM call; Shopify calls when execute=true; DB writes via DatabaseReporter
    """
    email_id = request.email_id
    if email_id:
        email = EmailRepository.get_by_id(email_id)
        if email is None or email.user_id != user_id:
            raise HTTPException(status_code=404, detail="Email not found")

    result = orchestrate_email(
        user_id,
        request.content,
        execute=request.execute,
        email_id=email_id,
        reporter=DatabaseReporter(),
    )
    return {"ok": True, **result.to_dict()}


@router.post("/actions/execute")
def execute_action(
    request: ExecuteActionRequest, user_id: str = Depends(get_current_user_id)
) -> JSONResponse:
    """Run one action directly (no proposal record)."""
    return result_response(
        bridge.run_action_for_user(user_id, request.action_type.value, request.payload)
    )
