"""SupportQ - turn customer-support email into reviewable Shopify actions"""

from __future__ import annotations

__version__ = "0.3.0"


# Lazy imports so lightweight modules don't pull in FastAPI or the LLM SDK
def __getattr__(name: str):
    if name in ("ProposedAction", "propose_actions"):
        from supportq.agent import proposer

        return getattr(proposer, name)

    if name in ("poll", "poll_for_user"):
        from supportq.gmail import sync

        return getattr(sync, name)

    if name == "run_shopify_action":
        from supportq.shopify.executor import run_shopify_action

        return run_shopify_action

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "ProposedAction",
    "poll",
    "poll_for_user",
    "propose_actions",
    "run_shopify_action",
]
