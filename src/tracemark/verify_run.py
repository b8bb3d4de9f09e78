"""One verification run: registry, scan, validate, build, classify, report.

The registry loads first and any failure there aborts the run before a single
source file is read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from pathlib import Path, PurePosixPath
from typing import Sequence

from tracemark.analysis.compliance import ComplianceMatrix, build_matrix
from tracemark.analysis.extractor import (
    ExtractionResult,
    discover_source_files,
    scan_paths,
)
from tracemark.analysis.gaps import classify_all
from tracemark.analysis.heuristic import SourceIndex, apply_heuristics
from tracemark.analysis.model import (
    ComplianceRow,
    MarkerOccurrence,
    Registry,
    ValidatedOccurrence,
    ValidationStatus,
)
from tracemark.analysis.registry_loader import (
    load,
    read_concern_registry,
    read_spec_documents,
)
from tracemark.analysis.reporting import VerificationReport, build_report
from tracemark.analysis.validator import validate_all
from tracemark.config import DEFAULT_CONFIG_NAME, VerifyConfig
from tracemark.deadline_clock import Deadline
from tracemark.exceptions import HallucinatedMarkerError, PlaceholderWarning
from tracemark.order_contract import sort_once

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifyRequest:
    root: Path
    scope: str = "."
    spec_path: str | None = None
    incremental: bool = False
    changed_files: tuple[str, ...] = ()
    timestamp: str | None = None


@dataclass(frozen=True)
class VerifyOutcome:
    registry: Registry
    extraction: ExtractionResult
    matrix: ComplianceMatrix
    report: VerificationReport
    placeholder_warnings: tuple[PlaceholderWarning, ...] = field(default_factory=tuple)

    @property
    def exit_code(self) -> int:
        return self.report.outcome.exit_code

    def raise_for_status(self) -> None:
        if self.matrix.hallucinations:
            raise HallucinatedMarkerError(
                [str(item.occurrence.id) for item in self.matrix.hallucinations]
            )


def load_registry(root: Path, config: VerifyConfig) -> Registry:
    documents = read_spec_documents(
        root,
        config.spec_dirs,
        globs=config.spec_globs,
        max_workers=config.max_workers,
    )
    concern_text = read_concern_registry(root, config.concern_registry)
    return load(
        documents,
        concern_text,
        placeholders=config.placeholders,
        concern_registry_path=config.concern_registry or "concerns",
    )


def _normalize_rel(path: str) -> str:
    cleaned = PurePosixPath(path.replace("\\", "/")).as_posix()
    return cleaned[2:] if cleaned.startswith("./") else cleaned


def _under(path: str, prefix: str | None) -> bool:
    if not prefix:
        return True
    base = _normalize_rel(prefix).rstrip("/")
    if base in {"", "."}:
        return True
    rel = _normalize_rel(path)
    return rel == base or rel.startswith(f"{base}/")


def _registry_inputs(root: Path, config: VerifyConfig) -> tuple[set[Path], list[Path]]:
    """Files and directories the registry is read from; never scanned as source."""
    files = {(root / DEFAULT_CONFIG_NAME).resolve()}
    if config.config_file is not None:
        files.add((root / config.config_file).resolve())
    if config.concern_registry is not None:
        files.add((root / config.concern_registry).resolve())
    directories = [(root / name).resolve() for name in config.spec_dirs]
    return files, [item for item in directories if item != root.resolve()]


def select_source_files(request: VerifyRequest, config: VerifyConfig) -> list[Path]:
    discovered = discover_source_files(
        request.root,
        scope=request.scope,
        extensions=config.extensions,
        exclude=config.exclude,
    )
    root = request.root.resolve()
    registry_files, registry_dirs = _registry_inputs(root, config)
    discovered = [
        path
        for path in discovered
        if path.resolve() not in registry_files
        and not any(path.resolve().is_relative_to(base) for base in registry_dirs)
    ]
    if not request.incremental:
        return discovered
    changed = {_normalize_rel(item) for item in request.changed_files}
    selected = []
    for path in discovered:
        try:
            rel = path.resolve().relative_to(root).as_posix()
        except ValueError:
            rel = path.as_posix()
        if rel in changed:
            selected.append(path)
    return selected


def _touched(matrix: ComplianceMatrix) -> set[str]:
    touched: set[str] = set()
    for row in matrix.rows:
        if row.implementation_refs or row.test_refs:
            touched.add(str(row.requirement.id))
    return touched


def _reported_rows(
    matrix: ComplianceMatrix, request: VerifyRequest
) -> list[ComplianceRow]:
    touched = _touched(matrix) if request.incremental else None
    rows = [
        row
        for row in matrix.rows
        if _under(row.requirement.source_document, request.spec_path)
        and (touched is None or str(row.requirement.id) in touched)
    ]
    return rows


def run_verify(request: VerifyRequest, config: VerifyConfig) -> VerifyOutcome:
    registry = load_registry(request.root, config)
    paths = select_source_files(request, config)
    logger.info("scanning %d source files", len(paths))
    extraction = scan_paths(
        paths,
        root=request.root,
        test_path_patterns=config.test_path_patterns,
        max_workers=config.max_workers,
        deadline=Deadline.from_seconds(config.deadline_seconds),
    )
    validated = validate_all(extraction.occurrences, registry)
    matrix = build_matrix(registry, validated)
    matrix = apply_heuristics(matrix, registry, SourceIndex(extraction.declarations))

    placeholder_warnings = tuple(
        PlaceholderWarning(f"{item.citation}: placeholder {item.id}")
        for item in validated_placeholders(validated)
    )
    for warning in placeholder_warnings:
        logger.info("%s", warning)

    rows = _reported_rows(matrix, request)
    documents = [
        document for document in registry.documents if _under(document, request.spec_path)
    ]
    report = build_report(
        scope=request.scope,
        timestamp=request.timestamp or datetime.now(timezone.utc).isoformat(),
        specs_checked=len(documents),
        files_scanned=len(extraction.files),
        rows=rows,
        gaps=classify_all(rows),
        hallucinations=matrix.hallucinations,
        placeholders=matrix.placeholders,
        file_errors=extraction.errors,
        strict=config.strict,
        fail_on_warnings=config.fail_on_warnings,
        spec_path=request.spec_path,
        incremental=request.incremental,
    )
    return VerifyOutcome(
        registry=registry,
        extraction=extraction,
        matrix=matrix,
        report=report,
        placeholder_warnings=placeholder_warnings,
    )


def validated_placeholders(
    validated: Sequence[ValidatedOccurrence],
) -> list[MarkerOccurrence]:
    return sort_once(
        (
            item.occurrence
            for item in validated
            if item.status is ValidationStatus.PLACEHOLDER
        ),
        source="validated_placeholders",
    )
