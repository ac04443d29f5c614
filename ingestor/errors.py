"""Audio Resource Ingestor - Error taxonomy and outcome values.

Workflows report failures as values, not exceptions. Every failure carries one
of a closed set of error kinds:

- INVALID_INPUT: rejected before any side effect (client error)
- NOT_FOUND: identifier has no record, or the record's blob has vanished
- INFRASTRUCTURE: store / publisher failure after retries were exhausted

Exceptions remain for programming errors only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(StrEnum):
    """Closed set of caller-visible error classifications."""

    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    INFRASTRUCTURE = "INFRASTRUCTURE"


@dataclass(frozen=True)
class ResourceError:
    """A classified failure with a human-readable message."""

    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an operation: either a value or a ResourceError.

    Use Outcome.success() / Outcome.failure() rather than the constructor.
    """

    value: T | None = None
    error: ResourceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> Outcome[T]:
        return cls(error=ResourceError(kind=kind, message=message))

    @classmethod
    def from_error(cls, error: ResourceError) -> Outcome[T]:
        return cls(error=error)


def invalid_input(message: str) -> Outcome:
    return Outcome.failure(ErrorKind.INVALID_INPUT, message)


def not_found(message: str) -> Outcome:
    return Outcome.failure(ErrorKind.NOT_FOUND, message)


def infrastructure(message: str) -> Outcome:
    return Outcome.failure(ErrorKind.INFRASTRUCTURE, message)


__all__ = [
    "ErrorKind",
    "ResourceError",
    "Outcome",
    "invalid_input",
    "not_found",
    "infrastructure",
]
