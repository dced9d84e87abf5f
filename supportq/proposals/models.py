"""
Proposal domain models.

A proposal is one action extracted from one email, waiting for review.
Lifecycle:

    proposed -> approved | rejected -> executed | failed

Review may flip between approved and rejected until the proposal is
executed. Execution is allowed from proposed or approved.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from supportq.storage.models import load_json, parse_iso, to_iso, utc_now


class ProposalStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ActionStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


ALL_STATUSES: tuple[str, ...] = tuple(s.value for s in ProposalStatus)
REVIEWABLE_STATUSES = frozenset({"proposed", "approved", "rejected"})
EXECUTABLE_STATUSES = frozenset({"proposed", "approved"})


def canonical_json(payload: dict[str, Any]) -> str:
    """Key-sorted compact JSON, so equal payloads hash equally."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def payload_hash(payload: dict[str, Any]) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


class Proposal(BaseModel):
    """A stored proposal, optionally joined with its source email."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    email_id: str
    user_id: str
    action_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    payload_hash: str
    summary: str | None = None
    status: ProposalStatus = ProposalStatus.PROPOSED
    model_meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Joined from emails (list queries only)
    snippet: str | None = None
    from_address: str | None = None
    subject: str | None = None
    received_at: datetime | None = None
    thread_id: str | None = None

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "email_id": self.email_id,
            "user_id": self.user_id,
            "action_type": self.action_type,
            "payload_json": canonical_json(self.payload),
            "payload_hash": self.payload_hash,
            "summary": self.summary,
            "status": self.status if isinstance(self.status, str) else self.status.value,
            "model_meta": json.dumps(self.model_meta),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Proposal:
        """Create Proposal from a proposals row (optionally joined with emails)."""
        return cls(
            id=row["id"],
            email_id=row["email_id"],
            user_id=row["user_id"],
            action_type=row["action_type"],
            payload=load_json(row.get("payload_json"), {}),
            payload_hash=row["payload_hash"],
            summary=row.get("summary"),
            status=ProposalStatus(row["status"]),
            model_meta=load_json(row.get("model_meta"), {}),
            created_at=parse_iso(row.get("created_at")) or utc_now(),
            updated_at=parse_iso(row.get("updated_at")) or utc_now(),
            snippet=row.get("snippet"),
            from_address=row.get("from_address"),
            subject=row.get("subject"),
            received_at=parse_iso(row.get("received_at")),
            thread_id=row.get("thread_id"),
        )


class ActionRecord(BaseModel):
    """One execution attempt of a proposal."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    proposal_id: str
    status: ActionStatus
    result: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    executed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "status": self.status if isinstance(self.status, str) else self.status.value,
            "result_json": json.dumps(self.result) if self.result else None,
            "error": self.error,
            "executed_at": to_iso(self.executed_at),
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> ActionRecord:
        return cls(
            id=row["id"],
            proposal_id=row["proposal_id"],
            status=ActionStatus(row["status"]),
            result=load_json(row.get("result_json"), {}),
            error=row.get("error"),
            executed_at=parse_iso(row.get("executed_at")),
            created_at=parse_iso(row.get("created_at")) or utc_now(),
        )


class ProposalFilters(BaseModel):
    """Filters shared by list and count queries."""

    status: ProposalStatus | None = None
    action_type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    q: str | None = Field(default=None, max_length=200)


class ProposalPage(BaseModel):
    """Keyset page of proposals."""

    proposals: list[Proposal]
    limit: int
    cursor: str | None = None
    next_cursor: str | None = None
    has_more: bool = False
    total_count: int = 0
