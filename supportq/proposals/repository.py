"""
Proposal Repository - CRUD for the proposals and actions tables.

Proposals are unique per (email_id, action_type, payload_hash): repeated
polls of the same email never create duplicates. Listing uses keyset
pagination on (created_at DESC, id DESC) with an opaque base64 cursor.
"""

from __future__ import annotations

import base64
import binascii
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from supportq.config import API_LIST_LIMIT_DEFAULT, API_LIST_LIMIT_MAX
from supportq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from supportq.observability.logging import get_logger
from supportq.proposals.models import (
    ALL_STATUSES,
    ActionRecord,
    ActionStatus,
    Proposal,
    ProposalFilters,
    ProposalPage,
    ProposalStatus,
    payload_hash,
)
from supportq.storage.models import to_iso, utc_now

logger = get_logger(__name__)

_LIST_COLUMNS = """
    p.*,
    e.snippet AS snippet,
    e.from_address AS from_address,
    e.subject AS subject,
    e.received_at AS received_at,
    e.thread_id AS thread_id
"""


def encode_cursor(created_at: datetime, proposal_id: str) -> str:
    raw = f"{to_iso(created_at)}|{proposal_id}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str | None) -> tuple[str, str] | None:
    """(created_at_iso, id) or None for a missing or malformed cursor."""
    if not cursor:
        return None
    try:
        raw = base64.b64decode(cursor.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None
    created_at, sep, proposal_id = raw.partition("|")
    if not sep or not created_at or not proposal_id:
        return None
    return created_at, proposal_id


def _filter_clauses(user_id: str, filters: ProposalFilters) -> tuple[list[str], list[Any]]:
    clauses = ["p.user_id = ?"]
    params: list[Any] = [user_id]
    if filters.status:
        status = filters.status
        clauses.append("p.status = ?")
        params.append(status if isinstance(status, str) else status.value)
    if filters.action_type:
        clauses.append("p.action_type = ?")
        params.append(filters.action_type)
    if filters.date_from:
        clauses.append("p.created_at >= ?")
        params.append(to_iso(filters.date_from))
    if filters.date_to:
        clauses.append("p.created_at <= ?")
        params.append(to_iso(filters.date_to))
    if filters.q and filters.q.strip():
        # SQLite LIKE is case-insensitive for ASCII
        like = f"%{filters.q.strip()}%"
        clauses.append("(e.snippet LIKE ? OR p.payload_json LIKE ?)")
        params.extend([like, like])
    return clauses, params


class ProposalRepository:
    """Repository for proposals and their execution attempts."""

    @staticmethod
    @retry_on_db_lock()
    def insert_if_absent(
        *,
        email_id: str,
        user_id: str,
        action_type: str,
        payload: dict[str, Any],
        summary: str | None,
        model_meta: dict[str, Any] | None = None,
        proposal_id: str | None = None,
    ) -> bool:
        """
        Insert a proposal unless an identical one exists for the email.

        Returns:
            True if a row was inserted

        Side Effects:
            - Inserts into proposals
        """
        now = utc_now()
        proposal = Proposal(
            id=proposal_id or str(uuid.uuid4()),
            email_id=email_id,
            user_id=user_id,
            action_type=action_type,
            payload=payload,
            payload_hash=payload_hash(payload),
            summary=summary,
            model_meta=model_meta or {},
            created_at=now,
            updated_at=now,
        )
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO proposals (
                    id, email_id, user_id, action_type, payload_json, payload_hash,
                    summary, status, model_meta, created_at, updated_at
                ) VALUES (
                    :id, :email_id, :user_id, :action_type, :payload_json, :payload_hash,
                    :summary, :status, :model_meta, :created_at, :updated_at
                )
                ON CONFLICT(email_id, action_type, payload_hash) DO NOTHING
                """,
                proposal.to_db_dict(),
            )
            inserted = cursor.rowcount > 0
        if inserted:
            logger.info("Created %s proposal %s", action_type, proposal.id)
        return inserted

    @staticmethod
    def get(user_id: str, proposal_id: str) -> Proposal | None:
        """Proposal owned by user_id, or None."""
        with get_db_connection() as conn:
            row = conn.execute(
                f"""
                SELECT {_LIST_COLUMNS}
                FROM proposals p LEFT JOIN emails e ON e.id = p.email_id
                WHERE p.id = ? AND p.user_id = ?
                """,
                (proposal_id, user_id),
            ).fetchone()
        return Proposal.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_for_user(
        user_id: str,
        filters: ProposalFilters | None = None,
        limit: int = API_LIST_LIMIT_DEFAULT,
        cursor: str | None = None,
    ) -> ProposalPage:
        """
        Page of proposals, newest first.

        A malformed cursor is ignored (first page). total_count applies the
        filters but not the cursor.
        """
        filters = filters or ProposalFilters()
        limit = max(1, min(limit, API_LIST_LIMIT_MAX))
        clauses, params = _filter_clauses(user_id, filters)
        count_where = " AND ".join(clauses)

        page_clauses = list(clauses)
        page_params = list(params)
        keyset = decode_cursor(cursor)
        if keyset:
            page_clauses.append("(p.created_at < ? OR (p.created_at = ? AND p.id < ?))")
            page_params.extend([keyset[0], keyset[0], keyset[1]])
        page_where = " AND ".join(page_clauses)

        with get_db_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_LIST_COLUMNS}
                FROM proposals p LEFT JOIN emails e ON e.id = p.email_id
                WHERE {page_where}
                ORDER BY p.created_at DESC, p.id DESC
                LIMIT ?
                """,
                (*page_params, limit + 1),
            ).fetchall()
            total = conn.execute(
                f"""
                SELECT COUNT(*) FROM proposals p LEFT JOIN emails e ON e.id = p.email_id
                WHERE {count_where}
                """,
                tuple(params),
            ).fetchone()[0]

        proposals = [Proposal.from_db_row(dict(row)) for row in rows[:limit]]
        has_more = len(rows) > limit
        next_cursor = None
        if has_more and proposals:
            last = proposals[-1]
            next_cursor = encode_cursor(last.created_at, last.id)

        return ProposalPage(
            proposals=proposals,
            limit=limit,
            cursor=cursor,
            next_cursor=next_cursor,
            has_more=has_more,
            total_count=int(total),
        )

    @staticmethod
    def count_by_status(user_id: str, filters: ProposalFilters | None = None) -> dict[str, int]:
        """Counts for every status (zero-filled). filters.status is ignored."""
        base = (filters or ProposalFilters()).model_copy(update={"status": None})
        clauses, params = _filter_clauses(user_id, base)
        counts = dict.fromkeys(ALL_STATUSES, 0)
        with get_db_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT p.status, COUNT(*) AS c
                FROM proposals p LEFT JOIN emails e ON e.id = p.email_id
                WHERE {" AND ".join(clauses)}
                GROUP BY p.status
                """,
                tuple(params),
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["c"]
        return counts

    @staticmethod
    @retry_on_db_lock()
    def transition(
        user_id: str,
        proposal_id: str,
        to_status: ProposalStatus,
        from_statuses: Iterable[str],
    ) -> bool:
        """
        Set status only if the current status is one of from_statuses.

        Returns:
            True if the row changed

        Side Effects:
            - Updates proposals.status and updated_at
        """
        allowed = list(from_statuses)
        placeholders = ",".join("?" * len(allowed))
        with db_transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE proposals SET status = ?, updated_at = ?
                WHERE id = ? AND user_id = ? AND status IN ({placeholders})
                """,
                (to_status.value, to_iso(utc_now()), proposal_id, user_id, *allowed),
            )
            return cursor.rowcount > 0

    @staticmethod
    @retry_on_db_lock()
    def bulk_transition(
        user_id: str,
        proposal_ids: Sequence[str],
        to_status: ProposalStatus,
        from_statuses: Iterable[str],
    ) -> list[str]:
        """
        Transition every eligible proposal in proposal_ids.

        Returns:
            Ids actually updated (ineligible and foreign ids are skipped)
        """
        ids = list(dict.fromkeys(proposal_ids))
        allowed = list(from_statuses)
        if not ids:
            return []
        id_marks = ",".join("?" * len(ids))
        status_marks = ",".join("?" * len(allowed))
        with db_transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT id FROM proposals
                WHERE user_id = ? AND id IN ({id_marks}) AND status IN ({status_marks})
                """,
                (user_id, *ids, *allowed),
            ).fetchall()
            updated = [row["id"] for row in rows]
            if updated:
                marks = ",".join("?" * len(updated))
                conn.execute(
                    f"UPDATE proposals SET status = ?, updated_at = ? WHERE id IN ({marks})",
                    (to_status.value, to_iso(utc_now()), *updated),
                )
        return updated

    @staticmethod
    @retry_on_db_lock()
    def record_execution(
        proposal_id: str,
        *,
        ok: bool,
        result: dict[str, Any] | None,
        error: str | None,
    ) -> ActionRecord:
        """
        Store an execution attempt and move the proposal to executed/failed.

        Side Effects:
            - Inserts into actions
            - Updates proposals.status in the same transaction
        """
        now = utc_now()
        action = ActionRecord(
            id=str(uuid.uuid4()),
            proposal_id=proposal_id,
            status=ActionStatus.EXECUTED if ok else ActionStatus.FAILED,
            result=result or {},
            error=None if ok else (error or ""),
            executed_at=now,
            created_at=now,
        )
        new_status = ProposalStatus.EXECUTED if ok else ProposalStatus.FAILED
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO actions (id, proposal_id, status, result_json, error, executed_at, created_at)
                VALUES (:id, :proposal_id, :status, :result_json, :error, :executed_at, :created_at)
                """,
                action.to_db_dict(),
            )
            conn.execute(
                "UPDATE proposals SET status = ?, updated_at = ? WHERE id = ?",
                (new_status.value, to_iso(now), proposal_id),
            )
        logger.info("Proposal %s %s", proposal_id, new_status.value)
        return action

    @staticmethod
    def latest_action(user_id: str, proposal_id: str) -> ActionRecord | None:
        with get_db_connection() as conn:
            row = conn.execute(
                """
                SELECT a.* FROM actions a
                JOIN proposals p ON p.id = a.proposal_id
                WHERE p.user_id = ? AND a.proposal_id = ?
                ORDER BY a.created_at DESC
                LIMIT 1
                """,
                (user_id, proposal_id),
            ).fetchone()
        return ActionRecord.from_db_row(dict(row)) if row else None
