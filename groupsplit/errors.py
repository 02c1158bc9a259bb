from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional, Tuple


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    expense_id: Optional[Hashable] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.expense_id is not None:
            data["expense_id"] = self.expense_id
        return data


@dataclass(frozen=True)
class FallbackApplied:
    strategy: str
    member_ids: Tuple[Hashable, ...]
    message: str
    expense_id: Optional[Hashable] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "code": "fallback_applied",
            "strategy": self.strategy,
            "member_ids": list(self.member_ids),
            "message": self.message,
        }
        if self.expense_id is not None:
            data["expense_id"] = self.expense_id
        return data


class SplitValidationError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(code)
        self.code = code
        self.message = message

    def to_issue(self, expense_id: Optional[Hashable] = None) -> ValidationIssue:
        return ValidationIssue(self.code, self.message, expense_id)
