"""Deterministic ordering helpers.

Every ordering that reaches a report passes through one of these functions so
the output of two runs over the same inputs is identical.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, TypeVar

from tracemark.invariants import never


T = TypeVar("T")


def sort_once(
    values: Iterable[T],
    *,
    source: str,
    key: Callable[[T], Any] | None = None,
    reverse: bool = False,
) -> list[T]:
    """Sort ``values`` once at a named carrier boundary.

    ``source`` names the call site; it is reported when ordering fails so the
    offending carrier can be found without a traceback.
    """
    items = list(values)
    try:
        return sorted(items, key=key, reverse=reverse)  # type: ignore[arg-type]
    except TypeError as exc:
        never("unorderable values", source=source, error=str(exc))


def enforce_ordered(
    values: Iterable[T],
    *,
    source: str,
    key: Callable[[T], Any] | None = None,
) -> list[T]:
    """Require caller-sorted input; fail via ``never()`` on a regression."""
    items = list(values)
    keyed = [key(item) if key is not None else item for item in items]
    for index in range(1, len(keyed)):
        if keyed[index] < keyed[index - 1]:
            never(
                "order contract violated",
                source=source,
                previous_index=index - 1,
                current_index=index,
                previous_key=repr(keyed[index - 1]),
                current_key=repr(keyed[index]),
            )
    return items
