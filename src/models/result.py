"""Typed success/failure result returned by every mutating service call"""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from src.exceptions import CompanionError

T = TypeVar('T')


@dataclass
class OperationResult(Generic[T]):
    """
    Outcome of a mutating operation

    Callers branch on ``ok`` instead of guessing from zero/default values:
    a failure always carries the CompanionError that caused it, with its
    reason code and retryable flag.
    """
    ok: bool
    value: Optional[T] = None
    error: Optional[CompanionError] = None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: CompanionError) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    @property
    def reason_code(self) -> Optional[str]:
        return self.error.reason_code if self.error else None

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)

    def unwrap(self) -> T:
        """Return the value or raise the carried error"""
        if not self.ok:
            raise self.error
        return self.value
