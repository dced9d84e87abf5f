"""
Orchestrator - propose actions for one email and optionally execute them.

Reporters receive the proposed batch and each execution result. Reporter
failures are logged and never change the orchestration outcome.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from supportq.agent.bridge import load_shopify_auth, resolve_llm_options
from supportq.agent.proposer import ActionProposer, ProposedAction
from supportq.contracts.envelope import Result
from supportq.contracts.reporting import Reporter
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter
from supportq.proposals.repository import ProposalRepository
from supportq.shopify.executor import ShopifyAuth, run_shopify_action

logger = get_logger(__name__)


@dataclass
class ExecutionRecord:
    id: str
    action_type: str
    ok: bool
    code: str | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "action_type": self.action_type, "ok": self.ok}
        if self.code is not None:
            out["code"] = self.code
        if self.message is not None:
            out["message"] = self.message
        if self.data:
            out["data"] = self.data
        return out


@dataclass
class OrchestrationResult:
    correlation_id: str
    proposed: list[ProposedAction]
    executed: list[ExecutionRecord] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "correlation_id": self.correlation_id,
            "proposed": [action.to_dict() for action in self.proposed],
        }
        if self.executed is not None:
            out["executed"] = [record.to_dict() for record in self.executed]
        return out


class NullReporter:
    def on_proposed(self, **_: Any) -> None:
        return None

    def on_executed(self, **_: Any) -> None:
        return None


class DatabaseReporter:
    """
    Persists proposals (keyed by the proposed action id) and executions.

    Proposals need a source email, so nothing is stored without email_id.
    Executions are only recorded for proposals this reporter inserted.
    """

    def __init__(self) -> None:
        self.inserted_ids: set[str] = set()

    def on_proposed(
        self,
        *,
        user_id: str,
        email_id: str | None,
        correlation_id: str,
        actions: list[ProposedAction],
        model_meta: dict[str, Any],
    ) -> None:
        if not email_id:
            return
        for action in actions:
            inserted = ProposalRepository.insert_if_absent(
                email_id=email_id,
                user_id=user_id,
                action_type=action.action_type,
                payload=action.payload,
                summary=action.summary,
                model_meta={**model_meta, "correlation_id": correlation_id},
                proposal_id=action.id,
            )
            if inserted:
                self.inserted_ids.add(action.id)

    def on_executed(
        self,
        *,
        user_id: str,
        correlation_id: str,
        action: ProposedAction,
        result: Result,
    ) -> None:
        if action.id not in self.inserted_ids:
            return
        ProposalRepository.record_execution(
            action.id,
            ok=result.ok,
            result=result.data if result.ok else None,
            error=None if result.ok else (result.message or result.code),
        )


def _notify(hook: str, reporter: Reporter, **kwargs: Any) -> None:
    try:
        getattr(reporter, hook)(**kwargs)
    except Exception:
        counter("orchestrator.reporter_error")
        logger.exception("Reporter %s failed", hook)


def orchestrate_email(
    user_id: str,
    content: str,
    execute: bool = False,
    email_id: str | None = None,
    reporter: Reporter | None = None,
    client: httpx.Client | None = None,
) -> OrchestrationResult:
    """
    Propose actions for content and, when execute is set, run them.

    Side Effects:
        - Calls the LLM (or heuristics)
        - Shopify API calls when execute=True
        - Whatever the reporter persists
    """
    reporter = reporter or NullReporter()
    correlation_id = str(uuid.uuid4())
    batch = ActionProposer(resolve_llm_options(user_id)).propose(content)
    _notify(
        "on_proposed",
        reporter,
        user_id=user_id,
        email_id=email_id,
        correlation_id=correlation_id,
        actions=batch.actions,
        model_meta=batch.model_meta,
    )
    if not execute:
        return OrchestrationResult(correlation_id, batch.actions)

    auth = load_shopify_auth(user_id)
    executed: list[ExecutionRecord] = []
    for action in batch.actions:
        if not isinstance(auth, ShopifyAuth):
            result = Result.failure("MissingShopifyAuth", "Missing Shopify auth")
        else:
            try:
                result = run_shopify_action(
                    action.action_type,
                    action.payload,
                    auth,
                    correlation_id=correlation_id,
                    client=client,
                )
            except Exception as e:
                logger.exception("Execution of %s failed", action.action_type)
                result = Result.failure("ExecutionFailed", str(e) or "Execution failed")

        executed.append(
            ExecutionRecord(
                id=action.id,
                action_type=action.action_type,
                ok=result.ok,
                code=result.code,
                message=result.message,
                data=result.data,
            )
        )
        _notify(
            "on_executed",
            reporter,
            user_id=user_id,
            correlation_id=correlation_id,
            action=action,
            result=result,
        )

    return OrchestrationResult(correlation_id, batch.actions, executed)
