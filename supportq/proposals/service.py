"""
Proposal workflow - review and execution.

Review moves proposed/approved/rejected to approved or rejected.
Execution runs the Shopify bridge for a proposed or approved proposal,
records an actions row and marks the proposal executed or failed.
Concurrent executions of one proposal within the process are refused.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from supportq.agent import bridge
from supportq.config import API_BULK_REVIEW_MAX
from supportq.contracts.envelope import Result
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter, log_event
from supportq.proposals.models import (
    EXECUTABLE_STATUSES,
    REVIEWABLE_STATUSES,
    ProposalStatus,
    ReviewDecision,
)
from supportq.proposals.repository import ProposalRepository

logger = get_logger(__name__)


class ProposalError(ValueError):
    """Invalid workflow input (e.g. an unknown decision)."""


_executing: set[str] = set()
_executing_lock = threading.Lock()


def _decision_status(decision: str | ReviewDecision) -> ProposalStatus:
    try:
        return ProposalStatus(ReviewDecision(decision).value)
    except ValueError as e:
        raise ProposalError(f"Invalid decision: {decision}") from e


def review_proposal(user_id: str, proposal_id: str, decision: str | ReviewDecision) -> Result:
    """
    Approve or reject one proposal.

    Raises:
        ProposalError: If decision is not approved/rejected
    """
    to_status = _decision_status(decision)
    proposal = ProposalRepository.get(user_id, proposal_id)
    if proposal is None:
        return Result.failure("proposal_not_found", "Proposal not found")
    if proposal.status not in REVIEWABLE_STATUSES:
        return Result.failure("invalid_status", f"Cannot change status from {proposal.status}")

    if not ProposalRepository.transition(user_id, proposal_id, to_status, REVIEWABLE_STATUSES):
        # Executed between the read and the update
        current = ProposalRepository.get(user_id, proposal_id)
        status = current.status if current else "unknown"
        return Result.failure("invalid_status", f"Cannot change status from {status}")

    counter(f"proposals.review.{to_status.value}")
    return Result.success()


def bulk_review(
    user_id: str, proposal_ids: Sequence[str], decision: str | ReviewDecision
) -> Result:
    """
    Review many proposals; ineligible or unknown ids are skipped.

    Returns:
        Result with data {"updated": [ids]}

    Raises:
        ProposalError: On an invalid decision, no ids, or too many ids
    """
    to_status = _decision_status(decision)
    if not proposal_ids:
        raise ProposalError("proposal_ids must not be empty")
    if len(proposal_ids) > API_BULK_REVIEW_MAX:
        raise ProposalError(f"At most {API_BULK_REVIEW_MAX} proposals per request")

    updated = ProposalRepository.bulk_transition(
        user_id, proposal_ids, to_status, REVIEWABLE_STATUSES
    )
    counter(f"proposals.review.{to_status.value}", len(updated))
    return Result.success(data={"updated": updated})


def execute_proposal(user_id: str, proposal_id: str) -> Result:
    """
    Execute a proposal through the Shopify bridge.

    The proposal id is the correlation id logged with every Shopify retry.

    Returns:
        Result with data {"action_id"}; on failure the bridge's code (or
        execution_failed) and message

    Side Effects:
        - Shopify API calls
        - Inserts an actions row, updates the proposal status
    """
    with _executing_lock:
        if proposal_id in _executing:
            return Result.failure("execution_in_progress", "Proposal is already executing")
        _executing.add(proposal_id)

    try:
        proposal = ProposalRepository.get(user_id, proposal_id)
        if proposal is None:
            return Result.failure("proposal_not_found", "Proposal not found")
        if proposal.status not in EXECUTABLE_STATUSES:
            return Result.failure("invalid_status", f"Cannot execute in status {proposal.status}")

        result = bridge.run_action_for_user(
            user_id, proposal.action_type, proposal.payload, correlation_id=proposal.id
        )
        action = ProposalRepository.record_execution(
            proposal.id,
            ok=result.ok,
            result=result.data if result.ok else None,
            error=None if result.ok else (result.message or result.code),
        )
    finally:
        with _executing_lock:
            _executing.discard(proposal_id)

    log_event(
        "proposals.executed",
        proposal_id=proposal_id,
        action_type=proposal.action_type,
        ok=result.ok,
        code=result.code,
    )
    if result.ok:
        return Result.success(result.message, {"action_id": action.id, **result.data})
    return Result.failure(
        result.code or "execution_failed",
        result.message or "Execution failed",
        {"action_id": action.id},
    )


def get_proposal_action(user_id: str, proposal_id: str) -> Result:
    action = ProposalRepository.latest_action(user_id, proposal_id)
    return Result.success(data={"action": action.model_dump(mode="json") if action else None})
