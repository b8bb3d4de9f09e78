from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from tracemark.analysis.identifiers import Identifier
from tracemark.analysis.model import (
    ComplianceRow,
    MarkerOccurrence,
    OccurrenceKind,
    PlaceholderNote,
    Registry,
    ValidatedOccurrence,
    ValidationStatus,
)
from tracemark.analysis.validator import validate_all
from tracemark.invariants import require_not_none
from tracemark.order_contract import sort_once


@dataclass(frozen=True)
class ComplianceMatrix:
    rows: tuple[ComplianceRow, ...]
    hallucinations: tuple[ValidatedOccurrence, ...]
    placeholders: PlaceholderNote

    def row(self, identifier: Identifier | str) -> ComplianceRow | None:
        key = identifier if isinstance(identifier, Identifier) else Identifier(identifier)
        for row in self.rows:
            if row.requirement.id == key:
                return row
        return None


def _sorted_refs(refs: Iterable[MarkerOccurrence], *, source: str) -> tuple[MarkerOccurrence, ...]:
    return tuple(sort_once(set(refs), source=source))


def build_matrix(
    registry: Registry,
    validated: Iterable[ValidatedOccurrence],
) -> ComplianceMatrix:
    """Requirement-driven join: every registry requirement yields exactly one row."""
    implementation: dict[Identifier, list[MarkerOccurrence]] = {}
    tests: dict[Identifier, list[MarkerOccurrence]] = {}
    hallucinations: list[ValidatedOccurrence] = []
    placeholders: list[MarkerOccurrence] = []
    for item in validated:
        status = item.status
        if status is ValidationStatus.HALLUCINATED:
            hallucinations.append(item)
            continue
        if status is ValidationStatus.PLACEHOLDER:
            placeholders.append(item.occurrence)
            continue
        requirement = require_not_none(
            item.result.requirement,
            reason="valid marker without a resolved requirement",
            marker=item.occurrence.id.value,
        )
        bucket = tests if item.occurrence.kind is OccurrenceKind.TEST else implementation
        bucket.setdefault(requirement.id, []).append(item.occurrence)

    rows = tuple(
        ComplianceRow(
            requirement=requirement,
            implementation_refs=_sorted_refs(
                implementation.get(requirement.id, ()),
                source="build_matrix.implementation_refs",
            ),
            test_refs=_sorted_refs(
                tests.get(requirement.id, ()),
                source="build_matrix.test_refs",
            ),
        )
        for requirement in registry.sorted_requirements()
    )
    return ComplianceMatrix(
        rows=rows,
        hallucinations=tuple(
            sort_once(
                hallucinations,
                source="build_matrix.hallucinations",
                key=lambda item: item.occurrence,
            )
        ),
        placeholders=PlaceholderNote(
            occurrences=_sorted_refs(placeholders, source="build_matrix.placeholders")
        ),
    )


def build(
    registry: Registry, occurrences: Iterable[MarkerOccurrence]
) -> tuple[ComplianceRow, ...]:
    """Validate ``occurrences`` against ``registry`` and return the matrix rows."""
    return build_matrix(registry, validate_all(occurrences, registry)).rows
