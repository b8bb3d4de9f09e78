"""Summary, detailed and record projections of one verification result.

All three renderers read the same ``VerificationReport``; counts are computed
once in ``build_report`` so the views cannot disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Sequence

from tracemark.analysis.model import (
    ComplianceRow,
    ComplianceStatus,
    Gap,
    MarkerOccurrence,
    PlaceholderNote,
    SEVERITY_RANK,
    Severity,
    ValidatedOccurrence,
)
from tracemark.analysis.report_doc import ReportDoc
from tracemark.exceptions import FileReadError
from tracemark.json_types import JSONObject
from tracemark.order_contract import enforce_ordered
from tracemark.schema import (
    ComplianceCountsDTO,
    ComplianceRecordDTO,
    FileErrorDTO,
    GapRecordDTO,
    HallucinationRecordDTO,
    MarkerRecordDTO,
    PlaceholderSummaryDTO,
)

SUMMARY_GAP_LIMIT = 10


class OutcomeStatus(StrEnum):
    PASSED = "passed"
    WARNINGS = "warnings"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    line: str
    exit_code: int


PASSED_LINE = "✅ Validation passed"
WARNINGS_LINE = "⚠️ Validation passed with warnings"
LENIENT_LINE = "⚠️ Validation warnings (lenient mode - can proceed)"
FAILED_LINE = "❌ Validation FAILED (strict mode)"
BLOCKED_LINE = "❌ Validation BLOCKED (hallucinated markers)"

EXIT_PASSED = 0
EXIT_WARNINGS = 1
EXIT_FAILED = 2
EXIT_BLOCKED = 3
EXIT_FATAL = 4


def determine_outcome(
    *,
    gaps: Sequence[Gap],
    hallucination_count: int,
    placeholder_count: int,
    file_error_count: int,
    strict: bool = True,
    fail_on_warnings: bool = False,
) -> Outcome:
    """Hallucinations block regardless of mode; critical gaps fail in strict mode."""
    if hallucination_count:
        return Outcome(OutcomeStatus.BLOCKED, BLOCKED_LINE, EXIT_BLOCKED)
    if any(gap.severity is Severity.CRITICAL for gap in gaps):
        if strict:
            return Outcome(OutcomeStatus.FAILED, FAILED_LINE, EXIT_FAILED)
        return Outcome(OutcomeStatus.WARNINGS, LENIENT_LINE, EXIT_WARNINGS)
    if gaps or placeholder_count or file_error_count:
        return Outcome(
            OutcomeStatus.WARNINGS,
            WARNINGS_LINE,
            EXIT_WARNINGS if fail_on_warnings else EXIT_PASSED,
        )
    return Outcome(OutcomeStatus.PASSED, PASSED_LINE, EXIT_PASSED)


@dataclass(frozen=True)
class VerificationReport:
    scope: str
    timestamp: str
    specs_checked: int
    files_scanned: int
    rows: tuple[ComplianceRow, ...]
    gaps: tuple[Gap, ...]
    hallucinations: tuple[ValidatedOccurrence, ...]
    placeholders: PlaceholderNote
    file_errors: tuple[FileReadError, ...]
    outcome: Outcome
    mode: str = "error"
    spec_path: str | None = None
    incremental: bool = False

    def count(self, status: ComplianceStatus) -> int:
        return sum(1 for row in self.rows if row.status is status)

    @property
    def requirements_total(self) -> int:
        return sum(1 for row in self.rows if row.status is not ComplianceStatus.ORPHAN)

    def percentage(self, status: ComplianceStatus) -> float:
        total = self.requirements_total
        if not total:
            return 0.0
        return round(self.count(status) * 100.0 / total, 1)

    @property
    def compliance_percentage(self) -> float:
        return self.percentage(ComplianceStatus.FULL)

    def gaps_with(self, severity: Severity) -> list[Gap]:
        return [gap for gap in self.gaps if gap.severity is severity]

    @property
    def recommendation(self) -> str:
        if self.hallucinations:
            count = len(self.hallucinations)
            return (
                f"Fix {count} hallucinated marker(s): replace each with a registered "
                "identifier or a placeholder before proceeding."
            )
        critical = self.gaps_with(Severity.CRITICAL)
        if critical:
            return (
                f"Address {len(critical)} critical gap(s) before shipping, "
                f"starting with {critical[0].requirement_id}."
            )
        if self.gaps:
            return f"Close {len(self.gaps)} remaining gap(s) to reach full compliance."
        if self.file_errors:
            return f"Re-run after fixing {len(self.file_errors)} unreadable file(s)."
        return "All requirements are implemented and tested."


def build_report(
    *,
    scope: str,
    timestamp: str,
    specs_checked: int,
    files_scanned: int,
    rows: Sequence[ComplianceRow],
    gaps: Sequence[Gap],
    hallucinations: Sequence[ValidatedOccurrence],
    placeholders: PlaceholderNote,
    file_errors: Sequence[FileReadError],
    strict: bool = True,
    fail_on_warnings: bool = False,
    spec_path: str | None = None,
    incremental: bool = False,
) -> VerificationReport:
    outcome = determine_outcome(
        gaps=gaps,
        hallucination_count=len(hallucinations),
        placeholder_count=placeholders.count,
        file_error_count=len(file_errors),
        strict=strict,
        fail_on_warnings=fail_on_warnings,
    )
    return VerificationReport(
        scope=scope,
        timestamp=timestamp,
        specs_checked=specs_checked,
        files_scanned=files_scanned,
        rows=tuple(rows),
        gaps=tuple(
            enforce_ordered(
                gaps,
                source="build_report.gaps",
                key=lambda gap: (SEVERITY_RANK[gap.severity], gap.requirement_id.value),
            )
        ),
        hallucinations=tuple(hallucinations),
        placeholders=placeholders,
        file_errors=tuple(file_errors),
        outcome=outcome,
        mode="error" if strict else "warning",
        spec_path=spec_path,
        incremental=incremental,
    )


def _suggestion_text(item: ValidatedOccurrence) -> str:
    suggestions = [str(identifier) for identifier in item.result.suggestions]
    if not suggestions:
        return "no similar identifier registered"
    return "did you mean: " + ", ".join(suggestions) + "?"


def _gap_line(gap: Gap) -> str:
    return f"{gap.requirement_id} [{gap.row.display_status}] {gap.description}"


def render_summary(report: VerificationReport) -> str:
    lines = [
        "Traceability Verification Summary",
        "=================================",
        f"Scope: {report.scope}",
    ]
    if report.spec_path:
        lines.append(f"Spec path: {report.spec_path}")
    if report.incremental:
        lines.append("Mode: incremental")
    lines.extend(
        [
            f"Specs checked: {report.specs_checked}",
            f"Requirements: {report.requirements_total}",
            f"Files scanned: {report.files_scanned}",
            "",
            "Compliance:",
        ]
    )
    for status in (ComplianceStatus.FULL, ComplianceStatus.UNTESTED, ComplianceStatus.MISSING):
        label = f"{status.value.capitalize()}:"
        lines.append(
            f"  {label:<10}{report.count(status)} ({report.percentage(status):.1f}%)"
        )
    lines.append(f"  {'Orphan:':<10}{report.count(ComplianceStatus.ORPHAN)}")
    lines.extend(
        [
            f"Compliance: {report.compliance_percentage:.1f}%",
            f"Placeholders: {report.placeholders.count}",
            f"Hallucinated markers: {len(report.hallucinations)}",
            f"File errors: {len(report.file_errors)}",
        ]
    )
    if report.hallucinations:
        lines.extend(["", "Hallucinated markers:"])
        for item in report.hallucinations:
            occurrence = item.occurrence
            lines.append(
                f"  ❌ {occurrence.citation} {occurrence.id} ({_suggestion_text(item)})"
            )
    for severity, title in ((Severity.CRITICAL, "Critical gaps:"), (Severity.WARNING, "Warning gaps:")):
        selected = report.gaps_with(severity)
        if not selected:
            continue
        lines.extend(["", title])
        lines.extend(f"  - {_gap_line(gap)}" for gap in selected[:SUMMARY_GAP_LIMIT])
        if len(selected) > SUMMARY_GAP_LIMIT:
            lines.append(f"  ... and {len(selected) - SUMMARY_GAP_LIMIT} more")
    if report.file_errors:
        lines.extend(["", "File errors:"])
        lines.extend(f"  - {error}" for error in report.file_errors)
    lines.extend(
        [
            "",
            f"Recommendation: {report.recommendation}",
            report.outcome.line,
        ]
    )
    return "\n".join(lines) + "\n"


def _citations(refs: Sequence[MarkerOccurrence]) -> str:
    if not refs:
        return "(none)"
    return ", ".join(ref.citation for ref in refs)


def render_detailed(report: VerificationReport) -> str:
    doc = ReportDoc(doc_id="compliance_matrix")
    doc.header(1, "Compliance Matrix")
    doc.line()
    doc.bullets(
        [
            f"Scope: `{report.scope}`",
            f"Specs checked: {report.specs_checked}",
            f"Files scanned: {report.files_scanned}",
            f"Compliance: {report.compliance_percentage:.1f}%",
        ]
    )
    doc.line()
    doc.table(
        ["Status", "Count", "Percent"],
        [
            (status.value.capitalize(), report.count(status), f"{report.percentage(status):.1f}%")
            for status in (ComplianceStatus.FULL, ComplianceStatus.UNTESTED, ComplianceStatus.MISSING)
        ]
        + [("Orphan", report.count(ComplianceStatus.ORPHAN), "-")],
    )
    gaps_by_row = {gap.requirement_id: gap for gap in report.gaps}
    doc.line()
    doc.header(2, "Requirements")
    for row in report.rows:
        requirement = row.requirement
        doc.line()
        doc.header(3, str(requirement.id))
        doc.line()
        items = [
            f"Description: {requirement.description or '(none)'}",
            f"Declared: {requirement.location}",
            f"Status: {row.display_status}",
        ]
        if requirement.concern_tags:
            items.append("Concerns: " + ", ".join(sorted(requirement.concern_tags)))
        items.extend(
            [
                f"Implementation: {_citations(row.implementation_refs)}",
                f"Tests: {_citations(row.test_refs)}",
            ]
        )
        if row.note:
            items.append(f"Note: {row.note}")
        if row.heuristic_match is not None:
            items.append(
                f"Possible match: {row.heuristic_match.citation} `{row.heuristic_match.text}`"
            )
        gap = gaps_by_row.get(requirement.id)
        if gap is not None:
            items.append(f"Gap: [{gap.severity.value}] {gap.description}")
            items.append(f"Action: {gap.action}")
        doc.bullets(items)
    if report.hallucinations:
        doc.line()
        doc.header(2, "Hallucinated markers")
        doc.line()
        doc.table(
            ["Marker", "Location", "Kind", "Suggestions"],
            [
                (
                    item.occurrence.id,
                    item.occurrence.citation,
                    item.occurrence.kind.value,
                    ", ".join(str(s) for s in item.result.suggestions) or "-",
                )
                for item in report.hallucinations
            ],
        )
    if report.placeholders.count:
        doc.line()
        doc.header(2, "Placeholders")
        doc.line()
        doc.table(
            ["Marker", "Location", "Kind"],
            [
                (occurrence.id, occurrence.citation, occurrence.kind.value)
                for occurrence in report.placeholders.occurrences
            ],
        )
    if report.file_errors:
        doc.line()
        doc.header(2, "File errors")
        doc.line()
        doc.table(
            ["Path", "Reason"],
            [(error.path, error.reason) for error in report.file_errors],
        )
    doc.line()
    doc.header(2, "Outcome")
    doc.line()
    doc.line(f"Recommendation: {report.recommendation}")
    doc.line()
    doc.line(report.outcome.line)
    return doc.emit()


def _marker_dto(occurrence: MarkerOccurrence) -> MarkerRecordDTO:
    return MarkerRecordDTO(
        id=str(occurrence.id),
        file=occurrence.file,
        line=occurrence.line,
        kind=occurrence.kind.value,
    )


def build_record(report: VerificationReport) -> ComplianceRecordDTO:
    return ComplianceRecordDTO(
        scope=report.scope,
        timestamp=report.timestamp,
        specs_checked=report.specs_checked,
        requirements_total=report.requirements_total,
        compliance=ComplianceCountsDTO(
            full=report.count(ComplianceStatus.FULL),
            untested=report.count(ComplianceStatus.UNTESTED),
            missing=report.count(ComplianceStatus.MISSING),
            orphan=report.count(ComplianceStatus.ORPHAN),
        ),
        compliance_percentage=report.compliance_percentage,
        gaps=[
            GapRecordDTO(
                spec_id=gap.row.requirement.source_document,
                requirement_id=str(gap.requirement_id),
                severity=gap.severity.value,
                status=gap.row.status.value,
                description=gap.description,
                action=gap.action,
                display_status=gap.row.display_status,
                source=gap.row.requirement.location,
            )
            for gap in report.gaps
        ],
        recommendation=report.recommendation,
        placeholders=PlaceholderSummaryDTO(
            count=report.placeholders.count,
            occurrences=[_marker_dto(item) for item in report.placeholders.occurrences],
        ),
        hallucinations=[
            HallucinationRecordDTO(
                **_marker_dto(item.occurrence).model_dump(),
                suggestions=[str(s) for s in item.result.suggestions],
            )
            for item in report.hallucinations
        ],
        file_errors=[
            FileErrorDTO(path=error.path, reason=error.reason) for error in report.file_errors
        ],
        files_scanned=report.files_scanned,
        spec_path=report.spec_path,
        incremental=report.incremental,
        mode=report.mode,
        outcome=report.outcome.status.value,
        exit_code=report.outcome.exit_code,
    )


def render_record(report: VerificationReport) -> JSONObject:
    return build_record(report).model_dump(mode="json")
