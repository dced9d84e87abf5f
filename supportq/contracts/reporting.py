"""
Reporter protocol for the orchestrator

Design: the orchestrator proposes and (optionally) executes actions but
does not know where results go. Reporters persist or forward them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from supportq.agent.proposer import ProposedAction
    from supportq.contracts.envelope import Result


class Reporter(Protocol):
    """Receives orchestration events. Implementations must not raise for control flow."""

    def on_proposed(
        self,
        *,
        user_id: str,
        email_id: str | None,
        correlation_id: str,
        actions: list[ProposedAction],
        model_meta: dict[str, Any],
    ) -> None: ...

    def on_executed(
        self,
        *,
        user_id: str,
        correlation_id: str,
        action: ProposedAction,
        result: Result,
    ) -> None: ...
