"""Per-file marker guardrail.

Checks only the listed files against the registry, without building a
matrix. Placeholders are warnings; hallucinated identifiers and files that
cannot be read are errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Sequence

from tracemark.analysis.extractor import read_and_scan
from tracemark.analysis.model import Registry, ValidatedOccurrence, ValidationStatus
from tracemark.analysis.reporting import (
    EXIT_FAILED,
    EXIT_PASSED,
    EXIT_WARNINGS,
    FAILED_LINE,
    LENIENT_LINE,
    PASSED_LINE,
    WARNINGS_LINE,
)
from tracemark.analysis.validator import validate_all
from tracemark.config import DEFAULT_TEST_PATH_PATTERNS


class FileCheckStatus(StrEnum):
    CHECKED = "checked"
    NO_MARKERS = "no_markers"
    NOT_FOUND = "not_found"
    UNREADABLE = "unreadable"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FileCheck:
    path: str
    status: FileCheckStatus
    results: tuple[ValidatedOccurrence, ...] = ()
    reason: str = ""

    @property
    def errors(self) -> int:
        if self.status in {FileCheckStatus.NOT_FOUND, FileCheckStatus.UNREADABLE}:
            return 1
        return sum(1 for item in self.results if item.status is ValidationStatus.HALLUCINATED)

    @property
    def warnings(self) -> int:
        if self.status is FileCheckStatus.NO_MARKERS:
            return 1
        return sum(1 for item in self.results if item.status is ValidationStatus.PLACEHOLDER)


@dataclass(frozen=True)
class MarkerCheck:
    files: tuple[FileCheck, ...]
    strict: bool = True

    @property
    def validated(self) -> int:
        return sum(1 for item in self.files if item.status is not FileCheckStatus.SKIPPED)

    @property
    def errors(self) -> int:
        return sum(item.errors for item in self.files)

    @property
    def warnings(self) -> int:
        return sum(item.warnings for item in self.files)

    @property
    def exit_code(self) -> int:
        if self.errors:
            return EXIT_FAILED if self.strict else EXIT_WARNINGS
        if self.warnings:
            return EXIT_WARNINGS
        return EXIT_PASSED


def check_file(
    path: Path,
    registry: Registry,
    *,
    root: Path,
    extensions: Sequence[str],
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
) -> FileCheck:
    label = str(path)
    if path.suffix.lower() not in {ext.lower() for ext in extensions}:
        return FileCheck(path=label, status=FileCheckStatus.SKIPPED)
    if not path.is_file():
        return FileCheck(path=label, status=FileCheckStatus.NOT_FOUND)
    scan = read_and_scan(path, root=root, test_path_patterns=test_path_patterns)
    if scan.error is not None:
        return FileCheck(
            path=label, status=FileCheckStatus.UNREADABLE, reason=scan.error.reason
        )
    if not scan.occurrences:
        return FileCheck(path=label, status=FileCheckStatus.NO_MARKERS)
    return FileCheck(
        path=label,
        status=FileCheckStatus.CHECKED,
        results=validate_all(scan.occurrences, registry),
    )


def check_files(
    paths: Sequence[Path],
    registry: Registry,
    *,
    root: Path,
    extensions: Sequence[str],
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
    strict: bool = True,
) -> MarkerCheck:
    return MarkerCheck(
        files=tuple(
            check_file(
                path,
                registry,
                root=root,
                extensions=extensions,
                test_path_patterns=test_path_patterns,
            )
            for path in paths
        ),
        strict=strict,
    )


def _result_line(item: ValidatedOccurrence) -> str:
    occurrence = item.occurrence
    prefix = f"  Line {occurrence.line}: {occurrence.id}"
    if item.status is ValidationStatus.VALID:
        return f"{prefix} ✅"
    if item.status is ValidationStatus.PLACEHOLDER:
        return f"{prefix} ⚠️ placeholder"
    suggestions = ", ".join(str(value) for value in item.result.suggestions)
    hint = f" (did you mean: {suggestions}?)" if suggestions else ""
    return f"{prefix} ❌ NOT FOUND - hallucination?{hint}"


def render_marker_check(check: MarkerCheck) -> str:
    lines: list[str] = []
    for item in check.files:
        if item.status is FileCheckStatus.SKIPPED:
            continue
        if item.status is FileCheckStatus.NOT_FOUND:
            lines.append(f"❌ File not found: {item.path}")
            continue
        lines.append(f"Checking: {item.path}")
        if item.status is FileCheckStatus.UNREADABLE:
            lines.append(f"  ❌ Cannot read file: {item.reason}")
        elif item.status is FileCheckStatus.NO_MARKERS:
            lines.append("  ⚠️ No markers found")
        else:
            lines.extend(_result_line(result) for result in item.results)
        lines.append("")
    lines.append("Summary:")
    lines.append(f"  Validated {check.validated} files")
    lines.append(f"  Warnings: {check.warnings}")
    lines.append(f"  Errors: {check.errors}")
    lines.append("")
    if check.errors:
        if check.strict:
            lines.append(FAILED_LINE)
        else:
            lines.append(LENIENT_LINE)
    elif check.warnings:
        lines.append(WARNINGS_LINE)
    else:
        lines.append(PASSED_LINE)
    return "\n".join(lines) + "\n"
