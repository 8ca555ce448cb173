"""Explicit success/failure values returned by every core operation.

Callers branch on ``isinstance(result, Err)`` (or ``result.ok``) instead of
relying on exceptions for expected outcomes such as "not found" or
"could not parse".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    CONFIG = "config"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    AUTH = "auth"
    DATA = "data"
    INTEGRITY = "integrity"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    detail: dict[str, Any] = field(default_factory=dict)
    ok: bool = field(default=False, init=False)

    @property
    def transient(self) -> bool:
        """True for failures worth retrying on the next scheduled run."""
        return self.kind in (ErrorKind.TRANSPORT, ErrorKind.TIMEOUT)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


Result = Union[Ok[T], Err]
