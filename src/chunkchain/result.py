"""
Result type for explicit error handling at transport boundaries.

Ledger RPC calls, session-service requests and S3 index operations report
failures as values rather than exceptions so that callers decide, case by
case, whether a failure is retried, swallowed (e.g. "storage already
initialized") or escalated into a terminal transfer error.

Usage:
    >>> def parse_index(raw: bytes) -> Result[int, str]:
    ...     if len(raw) != 4:
    ...         return Failure(f"expected 4 bytes, got {len(raw)}")
    ...     return Success(int.from_bytes(raw, "little"))
    ...
    >>> match parse_index(b"\\x07\\x00\\x00\\x00"):
    ...     case Success(index):
    ...         print(f"chunk {index}")
    ...     case Failure(error):
    ...         print(f"bad layout: {error}")
    chunk 7
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar


T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")
F = TypeVar("F")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Outcome of a boundary call that produced ``value``."""

    value: T

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        """Transform the carried value, e.g. service metadata into a snapshot."""
        return Success(f(self.value))

    def map_error(self, f: Callable[[E], F]) -> Result[T, F]:
        kept: Result[T, F] = self
        return kept

    def and_then(self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Feed the value into the next fallible step."""
        return f(self.value)


@dataclass(frozen=True)
class Failure(Generic[E]):
    """Outcome of a boundary call that failed with ``error``."""

    error: E

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        kept: Result[U, E] = self
        return kept

    def map_error(self, f: Callable[[E], F]) -> Result[T, F]:
        """Rewrap the error, e.g. a pydantic error as ``ServiceInvalidResponse``."""
        return Failure(f(self.error))

    def and_then(self, f: Callable[[T], Result[U, E]]) -> Result[U, E]:
        kept: Result[U, E] = self
        return kept


Result = Success[T] | Failure[E]


def partition_results(results: Iterable[Result[T, E]]) -> tuple[list[T], list[E]]:
    """Split Results into ``(values, errors)``, each keeping input order."""
    values: list[T] = []
    errors: list[E] = []
    for result in results:
        match result:
            case Success(value):
                values.append(value)
            case Failure(error):
                errors.append(error)
    return values, errors


__all__ = ["Success", "Failure", "Result", "partition_results"]
