from __future__ import annotations
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .schemas import Violation


class FlowError(Exception):
    """Base of every error a caller of ``FlowRunner.run`` can observe.

    Carries a human-readable summary and the number of provider attempts
    made before the failure (0 when no provider was called).
    """

    tag = "FlowError"

    def __init__(self, summary: str, attempts: int = 0) -> None:
        super().__init__(summary)
        self.summary = summary
        self.attempts = attempts

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.tag,
            "summary": self.summary,
            "attempts": self.attempts,
            "details": self.details(),
        }


def _attempts(n: int) -> str:
    return f"{n} attempt" if n == 1 else f"{n} attempts"


def _violation_dicts(violations: List["Violation"]) -> List[Dict[str, str]]:
    return [v.to_dict() for v in violations]


class InvalidInput(FlowError):
    tag = "InvalidInput"

    def __init__(self, violations: List["Violation"], flow: Optional[str] = None) -> None:
        fields = ", ".join(v.field or "<root>" for v in violations)
        where = f" for flow '{flow}'" if flow else ""
        super().__init__(f"Invalid input{where}: {fields}", attempts=0)
        self.violations = list(violations)

    def details(self) -> Dict[str, Any]:
        return {"violations": _violation_dicts(self.violations)}


class ConfigurationError(FlowError):
    tag = "ConfigurationError"

    def __init__(self, summary: str) -> None:
        super().__init__(summary, attempts=0)


class UnknownFlow(ConfigurationError):
    tag = "UnknownFlow"


class ProviderUnavailable(FlowError):
    tag = "ProviderUnavailable"

    def __init__(self, cause: BaseException, attempts: int, model: Optional[str] = None) -> None:
        on = f" ({model})" if model else ""
        super().__init__(f"Provider unavailable{on} after {_attempts(attempts)}: {cause}", attempts=attempts)
        self.cause = cause
        self.model = model

    def details(self) -> Dict[str, Any]:
        return {
            "cause": type(self.cause).__name__,
            "message": str(self.cause),
            "model": self.model,
            "retryable": bool(getattr(self.cause, "retryable", False)),
        }


class OutputSchemaViolation(FlowError):
    tag = "OutputSchemaViolation"

    def __init__(self, violations: List["Violation"], attempts: int, model: Optional[str] = None) -> None:
        fields = ", ".join(v.field or "<root>" for v in violations)
        super().__init__(
            f"Model output did not match the expected structure after {_attempts(attempts)}: {fields}",
            attempts=attempts,
        )
        self.violations = list(violations)
        self.model = model

    def details(self) -> Dict[str, Any]:
        return {"violations": _violation_dicts(self.violations), "model": self.model}


class Cancelled(FlowError):
    tag = "Cancelled"

    def __init__(self, attempts: int, reason: str = "cancelled") -> None:
        super().__init__(f"Generation {reason} after {_attempts(attempts)}", attempts=attempts)
        self.reason = reason

    def details(self) -> Dict[str, Any]:
        return {"reason": self.reason}
