from __future__ import annotations

from typing import AbstractSet, Iterable

from tracemark.analysis.model import (
    SEVERITY_RANK,
    ComplianceRow,
    ComplianceStatus,
    Gap,
    Severity,
)
from tracemark.invariants import never
from tracemark.order_contract import sort_once

CRITICAL_WHEN_MISSING: frozenset[str] = frozenset({"SEC", "REL"})
CRITICAL_WHEN_UNTESTED: frozenset[str] = frozenset({"SEC"})


def classify(row: ComplianceRow, concern_tags: AbstractSet[str] | None = None) -> Gap | None:
    """Severity-tagged finding for a non-Full row; ``None`` for Full rows.

    ``concern_tags`` defaults to the tags declared on the row's requirement.
    """
    tags = row.requirement.concern_tags if concern_tags is None else frozenset(concern_tags)
    requirement_id = row.requirement.id
    status = row.status
    if status is ComplianceStatus.FULL:
        return None
    if status is ComplianceStatus.MISSING:
        severity = Severity.CRITICAL if tags & CRITICAL_WHEN_MISSING else Severity.WARNING
        match = row.heuristic_match
        if match is not None:
            return Gap(
                row=row,
                severity=severity,
                description=(
                    f"{requirement_id} has no markers; possibly implemented "
                    f"at {match.citation} (no marker)"
                ),
                action=f"Confirm {match.citation} implements {requirement_id} and mark it",
            )
        return Gap(
            row=row,
            severity=severity,
            description=f"{requirement_id} has no implementation or test markers",
            action=f"Implement {requirement_id} and mark the code and its tests",
        )
    if status is ComplianceStatus.UNTESTED:
        severity = Severity.CRITICAL if tags & CRITICAL_WHEN_UNTESTED else Severity.WARNING
        if row.implementation_refs:
            return Gap(
                row=row,
                severity=severity,
                description=f"{requirement_id} is implemented but has no test markers",
                action=f"Add tests marked with {requirement_id}",
            )
        return Gap(
            row=row,
            severity=severity,
            description=f"{requirement_id} has tests but no implementation markers",
            action=f"Mark the implementing code with {requirement_id}",
        )
    if status is ComplianceStatus.ORPHAN:
        return Gap(
            row=row,
            severity=Severity.INFO,
            description=f"{requirement_id} is not registered; it resembles {row.orphan_of}",
            action=f"Rename marker {requirement_id} to {row.orphan_of}",
        )
    never("unknown compliance status", status=str(status))


def classify_all(rows: Iterable[ComplianceRow]) -> tuple[Gap, ...]:
    gaps = [gap for gap in (classify(row) for row in rows) if gap is not None]
    return tuple(
        sort_once(
            gaps,
            source="classify_all.gaps",
            key=lambda gap: (SEVERITY_RANK[gap.severity], gap.requirement_id.value),
        )
    )
