"""Helpers for tagged ``{ok}`` / ``{err}`` update results.

Stubs hand results back verbatim; these helpers are for callers that want
to branch on the tag or turn a rejection into an ``ApplicationError``.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Generic, TypeVar

from canister_client.errors import ApplicationError

T = TypeVar("T")


@dataclasses.dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclasses.dataclass(frozen=True)
class Err:
    reason: str


def as_result(raw: Any) -> Ok[Any] | Err:
    match raw:
        case {"err": reason} if reason is not None:
            return Err(str(reason))
        case {"ok": value}:
            return Ok(value)
        case _:
            raise ValueError(f"Not a tagged result: {raw!r}")


def unwrap(raw: Any) -> Any:
    """Return the ``ok`` payload or raise ``ApplicationError`` with the remote reason."""
    match as_result(raw):
        case Ok(value=value):
            return value
        case Err(reason=reason):
            raise ApplicationError(reason)
