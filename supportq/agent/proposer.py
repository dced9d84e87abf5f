"""
Action proposer - turn support email text into proposed commerce actions.

Gemini extracts actions when enabled (SUPPORTQ_USE_LLM=true or a per-user
API key is configured). Any LLM failure, or LLM disabled, falls back to
keyword heuristics so polling never stalls on the model.

Allowed actions: cancel_order, update_address, resend_order.
"""

from __future__ import annotations

import json
import os
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from supportq.config import LLM_CONTENT_MAX_CHARS
from supportq.llm.gemini import GeminiInitializationError, GeminiRequestError, LlmOptions
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter, log_event
from supportq.utils.redaction import sanitize_for_prompt

logger = get_logger(__name__)


def _use_llm() -> bool:
    """Read the flag at call time; dotenv may load after import."""
    return os.getenv("SUPPORTQ_USE_LLM", "false").lower() == "true"


class ActionType(str, Enum):
    CANCEL_ORDER = "cancel_order"
    UPDATE_ADDRESS = "update_address"
    RESEND_ORDER = "resend_order"


ALLOWED_ACTIONS: tuple[str, ...] = tuple(a.value for a in ActionType)


@dataclass
class ProposedAction:
    action_type: str
    payload: dict[str, Any]
    summary: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "payload": self.payload,
            "summary": self.summary,
        }


@dataclass
class ProposalBatch:
    """Actions plus a description of how they were produced (stored as model_meta)."""

    actions: list[ProposedAction]
    model_meta: dict[str, Any]


class LlmActionSchema(BaseModel):
    """Schema for one action in the LLM response."""

    action_type: ActionType
    payload: dict[str, Any] = Field(default_factory=dict)
    summary: str = Field(default="", max_length=500)


PROMPT_TEMPLATE = """You triage customer-support email for a Shopify store.

Extract the commerce actions the customer is asking for. Allowed action_type values:
- cancel_order: payload {{"order_id": <number>}} or {{"order_name": "#1234"}}
- update_address: payload {{"order_id" or "order_name", "shipping_address": {{"address1", "address2", "city", "province", "zip", "country", "name"}}}}
- resend_order: payload {{"order_id" or "order_name", "note": <string, optional>}}

Only include fields stated in the email. Return [] when nothing applies.
Respond with a JSON array only, each element:
{{"action_type": "...", "payload": {{...}}, "summary": "<one sentence>"}}

Email:
<<<
{content}
>>>"""


# Order references like "#1001", "order 1001", "order no. 1001", "order number: 1001"
_ORDER_REF = re.compile(r"(?:#|\border\s*(?:number|no\.?|num|#)?\s*[:#]?\s*)(\d{3,12})\b", re.I)
_CANCEL = re.compile(r"(cancel|refund).{0,20}order")
_ADDRESS_VERB = re.compile(r"change|update")
_ADDRESS_NOUN = re.compile(r"address|shipping")
_RESEND = re.compile(r"resend|replacement")


def extract_order_reference(content: str) -> str | None:
    match = _ORDER_REF.search(content)
    return f"#{match.group(1)}" if match else None


def heuristic_proposals(content: str) -> list[ProposedAction]:
    """Keyword rules; each matching rule yields one action."""
    lower = content.lower()
    order_ref = extract_order_reference(content)
    payload: dict[str, Any] = {"order_name": order_ref} if order_ref else {}
    out: list[ProposedAction] = []

    if _CANCEL.search(lower):
        out.append(
            ProposedAction(
                ActionType.CANCEL_ORDER.value,
                dict(payload),
                "Customer requests to cancel/refund an order.",
            )
        )
    if _ADDRESS_VERB.search(lower) and _ADDRESS_NOUN.search(lower):
        out.append(
            ProposedAction(
                ActionType.UPDATE_ADDRESS.value,
                dict(payload),
                "Customer requests a shipping address update.",
            )
        )
    if _RESEND.search(lower):
        out.append(
            ProposedAction(
                ActionType.RESEND_ORDER.value,
                dict(payload),
                "Customer requests a resend/replacement.",
            )
        )
    return out


def _normalize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    out = dict(payload)
    order_id = out.get("order_id")
    if isinstance(order_id, str) and order_id.strip().isdigit():
        out["order_id"] = int(order_id.strip())
    return out


def parse_llm_response(response_text: str) -> list[ProposedAction]:
    """
    Parse the model's JSON into actions.

    Accepts a bare array or {"actions": [...]}, with or without ``` fences.
    Elements with unknown action types or bad shapes are dropped.

    Raises:
        ValueError: If the text is not JSON or not a list of actions
    """
    text = response_text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("actions")
    if not isinstance(data, list):
        raise ValueError("LLM response is not a list of actions")

    actions: list[ProposedAction] = []
    for item in data:
        try:
            parsed = LlmActionSchema.model_validate(item)
        except ValidationError:
            counter("proposer.llm.invalid_action")
            continue
        actions.append(
            ProposedAction(
                action_type=parsed.action_type.value,
                payload=_normalize_payload(parsed.payload),
                summary=parsed.summary or f"Customer requests {parsed.action_type.value}.",
            )
        )
    return actions


class ActionProposer:
    """Extracts proposed actions from email content."""

    def __init__(self, llm: LlmOptions | None = None):
        self.llm = llm or LlmOptions()

    def llm_enabled(self) -> bool:
        return _use_llm() or bool(self.llm.api_key)

    def propose(self, content: str) -> ProposalBatch:
        """
        Propose actions for one email.

        Side Effects:
            - May call Gemini (one request, retried on transient errors)
            - Increments proposer.* counters
        """
        if not content or not content.strip():
            return ProposalBatch([], {"source": "empty"})

        if self.llm_enabled():
            try:
                actions = self._propose_with_llm(content)
            except (
                GeminiInitializationError,
                GeminiRequestError,
                TimeoutError,
                ConnectionError,
                httpx.TransportError,
                ValueError,
            ) as e:
                counter("proposer.llm.fallback")
                logger.warning("LLM extraction failed, using heuristics: %s", type(e).__name__)
            else:
                counter("proposer.llm.success")
                log_event("proposer.llm.result", actions=len(actions), model=self.llm.model_name)
                return ProposalBatch(
                    actions,
                    {"source": "llm", "provider": self.llm.provider or "gemini", "model": self.llm.model_name},
                )

        counter("proposer.heuristic")
        return ProposalBatch(heuristic_proposals(content), {"source": "heuristic"})

    def _propose_with_llm(self, content: str) -> list[ProposedAction]:
        from supportq.llm.retry import call_llm

        prompt = PROMPT_TEMPLATE.format(
            content=sanitize_for_prompt(content, max_length=LLM_CONTENT_MAX_CHARS)
        )
        return parse_llm_response(call_llm(prompt, self.llm))


def propose_actions(content: str, llm: LlmOptions | None = None) -> list[ProposedAction]:
    """Extract proposed actions from email text (LLM, else heuristics)."""
    return ActionProposer(llm).propose(content).actions
