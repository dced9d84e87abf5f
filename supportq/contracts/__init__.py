"""
Type contracts shared across SupportQ layers

- Result: the {ok, code, message, data} envelope returned by Gmail sync,
  the Shopify executor and the proposal workflow
- Reporter: persistence hooks the orchestrator calls after proposing and
  executing actions
"""

from supportq.contracts.envelope import Result
from supportq.contracts.reporting import Reporter

__all__ = ["Reporter", "Result"]
