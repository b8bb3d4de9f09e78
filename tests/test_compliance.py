from __future__ import annotations

import random

from tracemark.analysis.compliance import build, build_matrix
from tracemark.analysis.identifiers import Identifier
from tracemark.analysis.model import (
    TEST_ONLY_NOTE,
    ComplianceStatus,
    MarkerOccurrence,
    OccurrenceKind,
    derive_status,
)
from tracemark.analysis.validator import validate_all


def _marker(
    value: str,
    *,
    kind: OccurrenceKind = OccurrenceKind.IMPLEMENTATION,
    file: str = "src/cache.rs",
    line: int = 1,
) -> MarkerOccurrence:
    return MarkerOccurrence(file=file, line=line, id=Identifier(value), kind=kind)


def _statuses(rows) -> dict[str, ComplianceStatus]:
    return {row.requirement.id.value: row.status for row in rows}


def test_every_requirement_yields_exactly_one_row(cache_registry) -> None:
    rows = build(cache_registry, [_marker("SPEC-CACHE-001"), _marker("SPEC-CACHE-001", line=9)])
    ids = [row.requirement.id.value for row in rows]
    assert ids == sorted(ids)
    assert ids == [requirement.id.value for requirement in cache_registry.sorted_requirements()]
    assert len(set(ids)) == len(ids)


def test_status_table() -> None:
    assert derive_status(False, False) is ComplianceStatus.MISSING
    assert derive_status(True, False) is ComplianceStatus.UNTESTED
    assert derive_status(False, True) is ComplianceStatus.UNTESTED
    assert derive_status(True, True) is ComplianceStatus.FULL


def test_refs_are_partitioned_by_kind(cache_registry) -> None:
    rows = build(
        cache_registry,
        [
            _marker("SPEC-CACHE-001", line=5),
            _marker("SPEC-CACHE-001", kind=OccurrenceKind.TEST, file="src/cache_tests.rs", line=5),
            _marker("SPEC-CACHE-002", kind=OccurrenceKind.TEST, file="tests/hit.rs", line=2),
        ],
    )
    statuses = _statuses(rows)
    assert statuses["SPEC-CACHE-001"] is ComplianceStatus.FULL
    assert statuses["SPEC-CACHE-002"] is ComplianceStatus.UNTESTED
    assert statuses["SPEC-CACHE-003"] is ComplianceStatus.MISSING
    test_only = next(row for row in rows if row.requirement.id.value == "SPEC-CACHE-002")
    assert test_only.note == TEST_ONLY_NOTE
    assert test_only.implementation_refs == ()
    assert [ref.citation for ref in test_only.test_refs] == ["tests/hit.rs:2"]


def test_hallucinations_and_placeholders_stay_out_of_rows(cache_registry) -> None:
    occurrences = [
        _marker("SPEC-CACHE-999", line=3),
        _marker("SPEC-PENDING", line=4),
        _marker("TASK-PENDING", line=5),
    ]
    matrix = build_matrix(cache_registry, validate_all(occurrences, cache_registry))
    assert all(row.status is ComplianceStatus.MISSING for row in matrix.rows)
    assert [item.occurrence.id.value for item in matrix.hallucinations] == ["SPEC-CACHE-999"]
    assert matrix.placeholders.count == 2
    assert matrix.row("SPEC-CACHE-999") is None


def test_adding_test_evidence_is_monotonic(cache_registry) -> None:
    implementation = [_marker("SPEC-CACHE-001")]
    before = _statuses(build(cache_registry, implementation))
    assert before["SPEC-CACHE-001"] is ComplianceStatus.UNTESTED
    with_test = implementation + [_marker("SPEC-CACHE-001", kind=OccurrenceKind.TEST, line=20)]
    after = _statuses(build(cache_registry, with_test))
    assert after["SPEC-CACHE-001"] is ComplianceStatus.FULL
    again = _statuses(
        build(cache_registry, with_test + [_marker("SPEC-CACHE-001", kind=OccurrenceKind.TEST, line=30)])
    )
    assert again["SPEC-CACHE-001"] is ComplianceStatus.FULL


def test_matrix_is_independent_of_occurrence_order(cache_registry) -> None:
    occurrences = [
        _marker(value, kind=kind, line=line)
        for line, (value, kind) in enumerate(
            [
                ("SPEC-CACHE-001", OccurrenceKind.IMPLEMENTATION),
                ("SPEC-CACHE-001", OccurrenceKind.TEST),
                ("SPEC-CACHE-003", OccurrenceKind.IMPLEMENTATION),
                ("SPEC-CACHE-123", OccurrenceKind.IMPLEMENTATION),
                ("SPEC-TBD", OccurrenceKind.TEST),
            ],
            start=1,
        )
    ]
    shuffled = list(occurrences)
    random.Random(7).shuffle(shuffled)
    first = build_matrix(cache_registry, validate_all(occurrences, cache_registry))
    second = build_matrix(cache_registry, validate_all(shuffled, cache_registry))
    assert first == second


def test_duplicate_occurrences_are_cited_once(cache_registry) -> None:
    marker = _marker("SPEC-CACHE-001", line=5)
    rows = build(cache_registry, [marker, marker])
    row = next(item for item in rows if item.requirement.id.value == "SPEC-CACHE-001")
    assert row.implementation_refs == (marker,)
