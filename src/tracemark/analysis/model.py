from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Mapping

from tracemark.analysis.identifiers import Identifier, IdentifierKind
from tracemark.order_contract import sort_once


@dataclass(frozen=True)
class Requirement:
    id: Identifier
    description: str
    source_document: str
    source_line: int
    concern_tags: frozenset[str] = frozenset()

    @property
    def location(self) -> str:
        return f"{self.source_document}:{self.source_line}"


class OccurrenceKind(StrEnum):
    IMPLEMENTATION = "implementation"
    TEST = "test"


@dataclass(frozen=True, order=True)
class MarkerOccurrence:
    file: str
    line: int
    id: Identifier
    kind: OccurrenceKind = OccurrenceKind.IMPLEMENTATION
    column: int = 0

    @property
    def citation(self) -> str:
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class Registry:
    """Immutable snapshot of every identifier a marker may legally name."""

    requirements: Mapping[Identifier, Requirement]
    placeholders: frozenset[Identifier]
    concern_ids: tuple[str, ...] = ()
    documents: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.requirements, MappingProxyType):
            object.__setattr__(
                self, "requirements", MappingProxyType(dict(self.requirements))
            )

    def requirement(self, identifier: Identifier) -> Requirement | None:
        return self.requirements.get(identifier)

    def is_placeholder(self, identifier: Identifier) -> bool:
        return identifier in self.placeholders

    def sorted_requirements(self) -> list[Requirement]:
        return sort_once(
            self.requirements.values(),
            source="Registry.sorted_requirements",
            key=lambda requirement: requirement.id.value,
        )

    def candidates(self, kind: IdentifierKind | None) -> list[Identifier]:
        """Requirement and placeholder identifiers sharing ``kind``."""
        pool = set(self.requirements) | set(self.placeholders)
        return sort_once(
            (identifier for identifier in pool if identifier.kind == kind),
            source="Registry.candidates",
            key=lambda identifier: identifier.value,
        )


class ValidationStatus(StrEnum):
    VALID = "valid"
    PLACEHOLDER = "placeholder"
    HALLUCINATED = "hallucinated"


@dataclass(frozen=True)
class ValidationResult:
    status: ValidationStatus
    requirement: Requirement | None = None
    suggestions: tuple[Identifier, ...] = ()

    @classmethod
    def valid(cls, requirement: Requirement) -> "ValidationResult":
        return cls(status=ValidationStatus.VALID, requirement=requirement)

    @classmethod
    def placeholder(cls) -> "ValidationResult":
        return cls(status=ValidationStatus.PLACEHOLDER)

    @classmethod
    def hallucinated(cls, suggestions: tuple[Identifier, ...] = ()) -> "ValidationResult":
        return cls(status=ValidationStatus.HALLUCINATED, suggestions=tuple(suggestions))


@dataclass(frozen=True)
class ValidatedOccurrence:
    occurrence: MarkerOccurrence
    result: ValidationResult

    @property
    def status(self) -> ValidationStatus:
        return self.result.status


class ComplianceStatus(StrEnum):
    FULL = "full"
    UNTESTED = "untested"
    MISSING = "missing"
    ORPHAN = "orphan"


POSSIBLY_IMPLEMENTED_LABEL = "Possibly implemented (no marker)"
TEST_ONLY_NOTE = "tests reference this requirement but no implementation marker does"


def derive_status(has_implementation: bool, has_tests: bool) -> ComplianceStatus:
    if has_implementation and has_tests:
        return ComplianceStatus.FULL
    if has_implementation or has_tests:
        return ComplianceStatus.UNTESTED
    return ComplianceStatus.MISSING


@dataclass(frozen=True)
class HeuristicMatch:
    file: str
    line: int
    text: str
    keywords: tuple[str, ...]

    @property
    def citation(self) -> str:
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class ComplianceRow:
    requirement: Requirement
    implementation_refs: tuple[MarkerOccurrence, ...] = ()
    test_refs: tuple[MarkerOccurrence, ...] = ()
    orphan_of: Identifier | None = None
    heuristic_match: HeuristicMatch | None = None

    @property
    def status(self) -> ComplianceStatus:
        if self.orphan_of is not None:
            return ComplianceStatus.ORPHAN
        return derive_status(bool(self.implementation_refs), bool(self.test_refs))

    @property
    def display_status(self) -> str:
        status = self.status
        if status is ComplianceStatus.MISSING and self.heuristic_match is not None:
            return POSSIBLY_IMPLEMENTED_LABEL
        return status.value.capitalize()

    @property
    def note(self) -> str:
        if self.test_refs and not self.implementation_refs and self.orphan_of is None:
            return TEST_ONLY_NOTE
        return ""


class Severity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


SEVERITY_RANK: Mapping[Severity, int] = MappingProxyType(
    {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}
)


@dataclass(frozen=True)
class Gap:
    row: ComplianceRow
    severity: Severity
    description: str
    action: str = ""

    @property
    def requirement_id(self) -> Identifier:
        return self.row.requirement.id


@dataclass(frozen=True)
class PlaceholderNote:
    occurrences: tuple[MarkerOccurrence, ...] = field(default_factory=tuple)

    @property
    def count(self) -> int:
        return len(self.occurrences)


@dataclass(frozen=True, order=True)
class DeclarationLine:
    file: str
    line: int
    text: str
