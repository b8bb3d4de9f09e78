"""Invariant markers for tracemark."""

from __future__ import annotations

from typing import NoReturn, TypeVar

from tracemark.exceptions import NeverThrown

T = TypeVar("T")


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The optional env payload travels on the raised exception for diagnostics.
    """
    raise NeverThrown(str(reason or "never() invariant reached").strip(), env=env)


def require_not_none(value: T | None, *, reason: str = "", **env: object) -> T:
    if value is None:
        never(reason or "required value is None", **env)
    return value
