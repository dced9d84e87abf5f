"""Integration tests for proposal storage, review and execution"""

from __future__ import annotations

import functools
import threading
import uuid
from datetime import timedelta

import httpx
import pytest

from supportq.agent import bridge, orchestrator
from supportq.agent.orchestrator import DatabaseReporter, orchestrate_email
from supportq.contracts.envelope import Result
from supportq.proposals import service
from supportq.proposals.models import ProposalFilters, ProposalStatus, payload_hash
from supportq.proposals.repository import ProposalRepository, decode_cursor, encode_cursor
from supportq.proposals.service import (
    ProposalError,
    bulk_review,
    execute_proposal,
    get_proposal_action,
    review_proposal,
)
from supportq.storage.email_repository import EmailRepository
from supportq.storage.models import EmailRecord, utc_now
from supportq.storage.token_repository import TokenRepository

USER = "user-1"
OTHER = "user-2"
BASE = "/admin/api/2024-10"


def make_email(user_id: str = USER, snippet: str = "Please cancel my order") -> EmailRecord:
    return EmailRepository.insert_if_absent(
        EmailRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            gmail_message_id=f"gm-{uuid.uuid4().hex[:8]}",
            thread_id="thread-1",
            subject="Order help",
            from_address="jane@example.com",
            snippet=snippet,
            received_at=utc_now(),
        )
    )


def make_proposal(
    user_id: str = USER,
    action_type: str = "cancel_order",
    payload: dict | None = None,
    email: EmailRecord | None = None,
) -> str:
    email = email or make_email(user_id)
    proposal_id = str(uuid.uuid4())
    assert ProposalRepository.insert_if_absent(
        email_id=email.id,
        user_id=user_id,
        action_type=action_type,
        payload=payload if payload is not None else {"order_name": "#1001"},
        summary=f"{action_type} for the customer",
        model_meta={"source": "heuristic"},
        proposal_id=proposal_id,
    )
    return proposal_id


def status_of(proposal_id: str, user_id: str = USER) -> str:
    return ProposalRepository.get(user_id, proposal_id).status


def connect_shopify(user_id: str = USER):
    TokenRepository().store(
        user_id, "shopify", {"access_token": "shpat_test"}, {"shop": "r901.myshopify.com"}
    )


class FakeShop:
    """Order #1001 (id 555) can be looked up and cancelled."""

    def __init__(self, cancel_status: int = 200):
        self.cancel_status = cancel_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == f"{BASE}/orders.json":
            return httpx.Response(200, json={"orders": [{"id": 555, "name": "#1001"}]})
        if request.url.path == f"{BASE}/orders/555/cancel.json":
            if self.cancel_status != 200:
                return httpx.Response(self.cancel_status, json={"error": "already fulfilled"})
            return httpx.Response(200, json={"order": {"id": 555}})
        return httpx.Response(404, json={"errors": "Not Found"})


class TestProposalRepository:
    def test_identical_payloads_are_stored_once(self):
        email = make_email()

        first = ProposalRepository.insert_if_absent(
            email_id=email.id,
            user_id=USER,
            action_type="update_address",
            payload={"order_name": "#1001", "shipping_address": {"city": "Austin", "zip": "78701"}},
            summary="Update address",
        )
        second = ProposalRepository.insert_if_absent(
            email_id=email.id,
            user_id=USER,
            action_type="update_address",
            payload={"shipping_address": {"zip": "78701", "city": "Austin"}, "order_name": "#1001"},
            summary="Update address again",
        )
        other_action = ProposalRepository.insert_if_absent(
            email_id=email.id,
            user_id=USER,
            action_type="resend_order",
            payload={"order_name": "#1001"},
            summary="Resend",
        )

        assert first is True
        assert second is False
        assert other_action is True
        assert ProposalRepository.list_for_user(USER).total_count == 2

    def test_payload_hash_ignores_key_order(self):
        assert payload_hash({"a": 1, "b": 2}) == payload_hash({"b": 2, "a": 1})
        assert payload_hash({"a": 1}) != payload_hash({"a": 2})

    def test_get_joins_email_and_scopes_to_user(self):
        proposal_id = make_proposal()

        proposal = ProposalRepository.get(USER, proposal_id)

        assert proposal.status == "proposed"
        assert proposal.subject == "Order help"
        assert proposal.thread_id == "thread-1"
        assert ProposalRepository.get(OTHER, proposal_id) is None

    def test_keyset_pagination(self):
        email = make_email()
        ids = [make_proposal(payload={"order_name": f"#{1000 + i}"}, email=email) for i in range(5)]

        first = ProposalRepository.list_for_user(USER, limit=2)
        second = ProposalRepository.list_for_user(USER, limit=2, cursor=first.next_cursor)
        third = ProposalRepository.list_for_user(USER, limit=2, cursor=second.next_cursor)

        assert first.has_more and second.has_more
        assert not third.has_more
        assert third.next_cursor is None
        assert first.total_count == second.total_count == 5
        seen = [p.id for page in (first, second, third) for p in page.proposals]
        assert sorted(seen) == sorted(ids)
        assert len(set(seen)) == 5

    def test_malformed_cursor_returns_first_page(self):
        make_proposal()

        page = ProposalRepository.list_for_user(USER, cursor="not-a-cursor!!")

        assert len(page.proposals) == 1
        assert page.cursor == "not-a-cursor!!"

    def test_cursor_round_trip(self):
        now = utc_now()
        created_at, proposal_id = decode_cursor(encode_cursor(now, "abc"))

        assert proposal_id == "abc"
        assert created_at.startswith(str(now.year))
        assert decode_cursor(None) is None
        assert decode_cursor("bm8tc2VwYXJhdG9y") is None  # "no-separator"

    def test_filters(self):
        cancel_id = make_proposal(action_type="cancel_order")
        resend_id = make_proposal(
            action_type="resend_order", email=make_email(snippet="Parcel lost in transit")
        )
        make_proposal(OTHER)
        review_proposal(USER, resend_id, "approved")

        by_status = ProposalRepository.list_for_user(
            USER, ProposalFilters(status=ProposalStatus.APPROVED)
        )
        by_action = ProposalRepository.list_for_user(USER, ProposalFilters(action_type="cancel_order"))
        by_text = ProposalRepository.list_for_user(USER, ProposalFilters(q="PARCEL"))
        by_payload = ProposalRepository.list_for_user(USER, ProposalFilters(q="#1001"))
        future = ProposalRepository.list_for_user(
            USER, ProposalFilters(date_from=utc_now() + timedelta(days=1))
        )

        assert [p.id for p in by_status.proposals] == [resend_id]
        assert [p.id for p in by_action.proposals] == [cancel_id]
        assert [p.id for p in by_text.proposals] == [resend_id]
        assert by_payload.total_count == 2
        assert future.total_count == 0

    def test_counts_are_zero_filled(self):
        approved = make_proposal()
        make_proposal(action_type="resend_order")
        review_proposal(USER, approved, "approved")
        make_proposal(OTHER)

        counts = ProposalRepository.count_by_status(USER)

        assert counts == {"proposed": 1, "approved": 1, "rejected": 0, "executed": 0, "failed": 0}

    def test_deleting_email_cascades(self):
        make_proposal()

        assert EmailRepository.delete_for_user(USER) == 1
        assert ProposalRepository.list_for_user(USER).total_count == 0


class TestReview:
    def test_approve_then_reject(self):
        proposal_id = make_proposal()

        assert review_proposal(USER, proposal_id, "approved").ok
        assert status_of(proposal_id) == "approved"
        assert review_proposal(USER, proposal_id, "rejected").ok
        assert status_of(proposal_id) == "rejected"

    def test_unknown_proposal(self):
        result = review_proposal(USER, "missing", "approved")

        assert result.code == "proposal_not_found"

    def test_other_users_proposal_is_not_found(self):
        proposal_id = make_proposal(OTHER)

        assert review_proposal(USER, proposal_id, "approved").code == "proposal_not_found"
        assert status_of(proposal_id, OTHER) == "proposed"

    def test_invalid_decision_raises(self):
        proposal_id = make_proposal()

        with pytest.raises(ProposalError):
            review_proposal(USER, proposal_id, "executed")

    def test_executed_proposal_cannot_be_reviewed(self):
        proposal_id = make_proposal()
        ProposalRepository.record_execution(proposal_id, ok=True, result={}, error=None)

        result = review_proposal(USER, proposal_id, "rejected")

        assert result.code == "invalid_status"
        assert result.message == "Cannot change status from executed"

    def test_bulk_review_skips_ineligible(self):
        eligible = [make_proposal(), make_proposal()]
        executed = make_proposal()
        ProposalRepository.record_execution(executed, ok=False, result=None, error="boom")
        foreign = make_proposal(OTHER)

        result = bulk_review(USER, [*eligible, executed, foreign, "missing"], "rejected")

        assert result.ok
        assert sorted(result.data["updated"]) == sorted(eligible)
        assert status_of(executed) == "failed"
        assert status_of(foreign, OTHER) == "proposed"

    @pytest.mark.parametrize(
        "ids, decision",
        [
            ([], "approved"),
            (["x"] * 201, "approved"),
            (["x"], "maybe"),
        ],
    )
    def test_bulk_review_rejects_bad_input(self, ids, decision):
        with pytest.raises(ProposalError):
            bulk_review(USER, ids, decision)


class TestExecute:
    def test_success_records_action(self, monkeypatch):
        proposal_id = make_proposal()
        calls = []

        def fake_run(user_id, action_type, payload, correlation_id=None, client=None):
            calls.append((user_id, action_type, payload, correlation_id))
            return Result.success("Order cancelled", {"order": {"id": 555}})

        monkeypatch.setattr(bridge, "run_action_for_user", fake_run)

        result = execute_proposal(USER, proposal_id)

        assert result.ok
        assert result.message == "Order cancelled"
        assert calls == [(USER, "cancel_order", {"order_name": "#1001"}, proposal_id)]
        assert status_of(proposal_id) == "executed"

        action = get_proposal_action(USER, proposal_id).data["action"]
        assert action["id"] == result.data["action_id"]
        assert action["status"] == "executed"
        assert action["result"] == {"order": {"id": 555}}
        assert action["error"] is None

        again = execute_proposal(USER, proposal_id)
        assert again.code == "invalid_status"
        assert len(calls) == 1

    def test_rejected_proposal_is_not_executed(self, monkeypatch):
        proposal_id = make_proposal()
        review_proposal(USER, proposal_id, "rejected")
        monkeypatch.setattr(
            bridge, "run_action_for_user", lambda *a, **k: pytest.fail("should not execute")
        )

        assert execute_proposal(USER, proposal_id).code == "invalid_status"

    def test_failure_marks_proposal_failed(self, monkeypatch):
        proposal_id = make_proposal()
        monkeypatch.setattr(
            bridge,
            "run_action_for_user",
            lambda *a, **k: Result.failure("ShopifyCancelFailed", "Shopify cancel failed"),
        )

        result = execute_proposal(USER, proposal_id)

        assert result.code == "ShopifyCancelFailed"
        assert "action_id" in result.data
        assert status_of(proposal_id) == "failed"
        action = get_proposal_action(USER, proposal_id).data["action"]
        assert action["error"] == "Shopify cancel failed"

    def test_missing_shopify_token(self):
        proposal_id = make_proposal()

        result = execute_proposal(USER, proposal_id)

        assert result.code == "shopify_auth_missing"
        assert status_of(proposal_id) == "failed"

    def test_unknown_proposal(self):
        assert execute_proposal(USER, "missing").code == "proposal_not_found"
        assert get_proposal_action(USER, "missing").data == {"action": None}

    def test_concurrent_execution_is_refused(self, monkeypatch):
        proposal_id = make_proposal()
        started = threading.Event()
        release = threading.Event()

        def slow_run(*args, **kwargs):
            started.set()
            release.wait(5)
            return Result.success("Order cancelled")

        monkeypatch.setattr(bridge, "run_action_for_user", slow_run)
        results = []
        worker = threading.Thread(
            target=lambda: results.append(execute_proposal(USER, proposal_id))
        )
        worker.start()
        assert started.wait(5)

        concurrent = execute_proposal(USER, proposal_id)
        release.set()
        worker.join(5)

        assert concurrent.code == "execution_in_progress"
        assert results[0].ok
        assert proposal_id not in service._executing

    def test_end_to_end_against_shopify(self, monkeypatch, mock_http):
        connect_shopify()
        proposal_id = make_proposal()
        shop = FakeShop()
        monkeypatch.setattr(
            bridge,
            "run_action_for_user",
            functools.partial(bridge.run_action_for_user, client=mock_http(shop)),
        )

        result = execute_proposal(USER, proposal_id)

        assert result.ok
        cancel = shop.requests[-1]
        assert cancel.url.path == f"{BASE}/orders/555/cancel.json"
        assert cancel.headers["X-Shopify-Access-Token"] == "shpat_test"
        assert cancel.headers["X-Idempotency-Key"] != proposal_id
        assert status_of(proposal_id) == "executed"


class TestOrchestrator:
    def test_propose_only(self):
        result = orchestrate_email(USER, "Please cancel my order #1001")

        assert result.executed is None
        assert [a.action_type for a in result.proposed] == ["cancel_order"]
        body = result.to_dict()
        assert "executed" not in body
        assert body["proposed"][0]["payload"] == {"order_name": "#1001"}

    def test_database_reporter_persists_and_records(self, mock_http):
        connect_shopify()
        email = make_email()

        result = orchestrate_email(
            USER,
            "Please cancel my order #1001",
            execute=True,
            email_id=email.id,
            reporter=DatabaseReporter(),
            client=mock_http(FakeShop()),
        )

        [record] = result.executed
        assert record.ok
        proposal = ProposalRepository.get(USER, record.id)
        assert proposal.status == "executed"
        assert proposal.model_meta["correlation_id"] == result.correlation_id
        assert ProposalRepository.latest_action(USER, record.id).status == "executed"

    def test_missing_shopify_auth(self):
        result = orchestrate_email(USER, "Cancel my order #1001 or send a replacement", execute=True)

        assert [r.code for r in result.executed] == ["MissingShopifyAuth", "MissingShopifyAuth"]
        assert not any(r.ok for r in result.executed)

    def test_reporter_errors_are_swallowed(self):
        class BrokenReporter:
            def on_proposed(self, **kwargs):
                raise RuntimeError("reporter down")

            def on_executed(self, **kwargs):
                raise RuntimeError("reporter down")

        result = orchestrate_email(
            USER, "Please cancel my order", execute=True, reporter=BrokenReporter()
        )

        assert len(result.executed) == 1

    def test_executor_exception_becomes_failure(self, monkeypatch):
        connect_shopify()

        def explode(*args, **kwargs):
            raise RuntimeError("socket closed")

        monkeypatch.setattr(orchestrator, "run_shopify_action", explode)

        result = orchestrate_email(USER, "Please cancel my order #1001", execute=True)

        [record] = result.executed
        assert record.code == "ExecutionFailed"
        assert record.message == "socket closed"
