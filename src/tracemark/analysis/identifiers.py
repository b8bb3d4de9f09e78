"""Identifier grammar shared by the extractor, registry loader and validator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import re
from typing import Iterator


class IdentifierKind(StrEnum):
    SPEC = "SPEC"
    CONCERN = "CONCERN"
    TASK = "TASK"
    TEST = "TEST"
    INTERFACE = "INTERFACE"


_KIND_BY_VALUE: dict[str, IdentifierKind] = {kind.value: kind for kind in IdentifierKind}
_KIND_ALTERNATION = "|".join(kind.value for kind in IdentifierKind)

# Trailing ':' and '.' fall outside the character class; trailing '-'/'_' are
# trimmed after matching.
MARKER_PATTERN = re.compile(
    rf"(?<![A-Za-z0-9_-])(?P<kind>{_KIND_ALTERNATION})-(?P<segments>[A-Za-z0-9_-]+)"
)
_FULL_PATTERN = re.compile(rf"^(?:{_KIND_ALTERNATION})-[A-Za-z0-9](?:[A-Za-z0-9_-]*[A-Za-z0-9])?$")
_SEGMENT_SPLIT = re.compile(r"[-_]")


@dataclass(frozen=True, order=True)
class Identifier:
    """A ``<KIND>-<SEGMENTS>`` token.

    Equality is the trimmed string form; case is significant.
    """

    value: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", str(self.value).strip())

    def __str__(self) -> str:
        return self.value

    @property
    def kind(self) -> IdentifierKind | None:
        prefix, _, _ = self.value.partition("-")
        return _KIND_BY_VALUE.get(prefix)

    @property
    def segments(self) -> tuple[str, ...]:
        _, _, rest = self.value.partition("-")
        return tuple(part for part in _SEGMENT_SPLIT.split(rest) if part)

    @property
    def well_formed(self) -> bool:
        return bool(_FULL_PATTERN.match(self.value))


def iter_identifiers(line: str) -> Iterator[tuple[int, Identifier]]:
    """Yield ``(column, identifier)`` for every marker-shaped token in ``line``."""
    for match in MARKER_PATTERN.finditer(line):
        text = match.group(0).rstrip("-_")
        _, _, rest = text.partition("-")
        if not rest:
            continue
        yield match.start(), Identifier(text)


def parse_identifier(text: str) -> Identifier | None:
    """Return the identifier if ``text`` is exactly one well-formed marker."""
    candidate = Identifier(text)
    return candidate if candidate.well_formed else None
