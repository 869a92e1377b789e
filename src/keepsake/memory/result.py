"""Typed results for operations that must not raise."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure paths inside the pipeline."""

    TRANSPORT = "transport_error"
    TIMEOUT = "timeout"
    DECLARED = "declared_error"
    MALFORMED = "malformed_response"
    PERSISTENCE = "persistence_error"
    UNEXPECTED = "unexpected_error"
    LOCAL_ONLY = "local_only"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an internal operation.

    Attributes:
        ok: True if the operation succeeded.
        value: Payload on success.
        error: Which failure path was taken.
        detail: Human-readable context for logs.
    """

    ok: bool
    value: T | None = None
    error: ErrorKind | None = None
    detail: str | None = None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str | None = None) -> Result[T]:
        return cls(ok=False, error=error, detail=detail)
