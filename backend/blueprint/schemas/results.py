"""
Operation Results
=================

Structured outcome of a state-store, reconciler, or dashboard operation.
Mutators return these instead of raising so UI layers can render a
dismissible notice.
"""

from typing import Any, Optional

from pydantic import BaseModel


class OperationResult(BaseModel):
    success: bool
    message: Optional[str] = None
    data: Any = None
    # Machine-readable reason for failures (e.g. "login_required", "forbidden").
    reason: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "OperationResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, message: str, reason: str = "error") -> "OperationResult":
        return cls(success=False, message=message, reason=reason)

    def __bool__(self) -> bool:
        return self.success
