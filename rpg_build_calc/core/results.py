"""
RPG Build Calculator - Result Types
===================================
Tagged success/failure values returned by the top-level entry points.

compute_status() and calculate_damage() never raise; they return a
CalcResult whose ``error`` names one of the ErrorCode kinds.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

from .constants import ErrorCode

T = TypeVar('T')


class DamageCalculationError(RuntimeError):
    """The primary damage number cannot be produced (e.g. no base-damage formula)."""


class CalcResultError(RuntimeError):
    """Raised by CalcResult.unwrap() on a failed result."""

    def __init__(self, error: 'CalcError'):
        super().__init__(f"{error.code.value}: {error.message}")
        self.error = error


@dataclass(frozen=True)
class CalcError:
    """Why a calculation failed."""
    code: ErrorCode
    message: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CalcResult(Generic[T]):
    """Either ``data`` (success) or ``error`` (failure), never both."""
    success: bool
    data: Optional[T] = None
    error: Optional[CalcError] = None

    @classmethod
    def ok(cls, data: T) -> 'CalcResult[T]':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, **context: Any) -> 'CalcResult[T]':
        return cls(success=False, error=CalcError(code, message, dict(context)))

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return the data or raise CalcResultError."""
        if not self.success:
            raise CalcResultError(self.error)
        return self.data
