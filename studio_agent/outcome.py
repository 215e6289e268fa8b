"""Result wrapper for calls to fallible collaborators.

Every external call (language model, calendar) either produces a real
value or a safe default. ``Outcome`` carries which of the two happened
so callers and tests can tell a genuine verdict from a degraded one.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """A value plus a flag telling whether it is a degraded default."""

    value: T
    degraded: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, error: object) -> "Outcome[T]":
        return cls(value=value, degraded=True, error=str(error) or type(error).__name__)
