from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from apps.common.exceptions import DomainError


@dataclass
class ActionResult:
    ok: bool
    data: Any = None
    code: str = ""
    message: str = ""
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, data: Any = None) -> "ActionResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, code: str, message: str, details: dict | None = None) -> "ActionResult":
        return cls(ok=False, code=code, message=message, details=details or {})

    @classmethod
    def from_error(cls, exc: DomainError) -> "ActionResult":
        return cls.failure(exc.code, exc.message, exc.details)
