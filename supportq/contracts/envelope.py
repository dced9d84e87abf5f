"""
Result envelope

Every operation that talks to an external API reports success or failure
through this shape instead of raising, so routes and the poller can
serialize it as-is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Result:
    ok: bool
    code: str | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls, message: str | None = None, data: dict[str, Any] | None = None, code: str | None = None
    ) -> Result:
        return cls(ok=True, code=code, message=message, data=data or {})

    @classmethod
    def failure(cls, code: str, message: str, data: dict[str, Any] | None = None) -> Result:
        return cls(ok=False, code=code, message=message, data=data or {})

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok}
        if self.code is not None:
            out["code"] = self.code
        if self.message is not None:
            out["message"] = self.message
        if self.data:
            out["data"] = self.data
        return out
