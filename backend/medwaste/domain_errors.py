"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


def rule_violation(code: str, error: ValueError, *, status: str | None = None, http_status: int = 409) -> DomainError:
    """Wrap a handoff rule failure; the rule's message becomes the problem detail."""
    return DomainError(
        code=code,
        http_status=http_status,
        message=str(error),
        details={"status": status} if status is not None else None,
    )
