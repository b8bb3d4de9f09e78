"""Advisory matching for requirements that carry no markers.

Nothing here changes a row's underlying status or any gap severity; a match
only changes how a Missing row is displayed. Orphan rows are the same kind of
advice for hallucinated markers that look like a mistyped registry identifier.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import re
from typing import Iterable, Mapping

from tracemark.analysis.compliance import ComplianceMatrix
from tracemark.analysis.extractor import iter_declaration_lines
from tracemark.analysis.identifiers import Identifier
from tracemark.analysis.model import (
    ComplianceRow,
    ComplianceStatus,
    DeclarationLine,
    HeuristicMatch,
    MarkerOccurrence,
    OccurrenceKind,
    Registry,
    Requirement,
)
from tracemark.order_contract import sort_once

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 8
MIN_KEYWORD_LENGTH = 3

_WORD_RE = re.compile(r"[A-Za-z][A-Za-z0-9]*")
_CAMEL_RE = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z0-9]+")
_NUMERIC_SEGMENT_RE = re.compile(r"(?<=-)0+(?=\d)")

STOPWORDS: frozenset[str] = frozenset(
    {
        "able", "about", "after", "all", "also", "and", "any", "are", "been",
        "before", "being", "between", "both", "but", "can", "could", "does",
        "each", "either", "ensure", "every", "for", "from", "has", "have",
        "into", "its", "may", "must", "not", "only", "other", "over", "provide",
        "shall", "should", "such", "support", "supports", "system", "than",
        "that", "the", "their", "them", "then", "there", "these", "this",
        "through", "under", "upon", "using", "via", "when", "where", "which",
        "while", "will", "with", "within", "without", "would",
    }
)


def _split_words(text: str) -> list[str]:
    words: list[str] = []
    for raw in _WORD_RE.findall(text):
        for part in raw.split("_"):
            words.extend(piece.lower() for piece in _CAMEL_RE.findall(part))
    return words


def _stem(word: str) -> str:
    for suffix in ("ing", "ed", "es", "s"):
        if len(word) > len(suffix) + 3 and word.endswith(suffix):
            return word[: -len(suffix)]
    return word


def significant_keywords(description: str, *, limit: int = MAX_KEYWORDS) -> tuple[str, ...]:
    """Significant terms of a requirement description, in first-seen order."""
    keywords: list[str] = []
    seen: set[str] = set()
    for word in _split_words(description):
        if len(word) < MIN_KEYWORD_LENGTH or word in STOPWORDS or word.isdigit():
            continue
        stem = _stem(word)
        if stem in seen:
            continue
        seen.add(stem)
        keywords.append(stem)
        if len(keywords) >= limit:
            break
    return tuple(keywords)


@dataclass(frozen=True)
class _IndexedDeclaration:
    declaration: DeclarationLine
    stems: frozenset[str]


class SourceIndex:
    """Searchable index over function and type declaration lines."""

    def __init__(self, declarations: Iterable[DeclarationLine]) -> None:
        ordered = sort_once(declarations, source="SourceIndex.declarations")
        self._entries = tuple(
            _IndexedDeclaration(
                declaration=declaration,
                stems=frozenset(_stem(word) for word in _split_words(declaration.text)),
            )
            for declaration in ordered
        )

    @classmethod
    def from_texts(cls, file_contents: Mapping[str, str]) -> "SourceIndex":
        return cls(
            declaration
            for path, text in file_contents.items()
            for declaration in iter_declaration_lines(path, text)
        )

    def __len__(self) -> int:
        return len(self._entries)

    def search(self, keywords: tuple[str, ...]) -> HeuristicMatch | None:
        if not keywords:
            return None
        required = min(2, len(keywords))
        best: tuple[int, _IndexedDeclaration, tuple[str, ...]] | None = None
        for entry in self._entries:
            matched = tuple(keyword for keyword in keywords if keyword in entry.stems)
            if len(matched) < required:
                continue
            if best is None or len(matched) > best[0]:
                best = (len(matched), entry, matched)
        if best is None:
            return None
        _, entry, matched = best
        return HeuristicMatch(
            file=entry.declaration.file,
            line=entry.declaration.line,
            text=entry.declaration.text,
            keywords=matched,
        )


def heuristic_match(requirement_description: str, source_index: SourceIndex) -> HeuristicMatch | None:
    return source_index.search(significant_keywords(requirement_description))


def relaxed_key(identifier: Identifier) -> str:
    """Case-folded form with ``_`` read as ``-`` and numeric zero padding dropped."""
    folded = identifier.value.upper().replace("_", "-")
    return _NUMERIC_SEGMENT_RE.sub("", folded)


def _orphan_rows(matrix: ComplianceMatrix, registry: Registry) -> list[ComplianceRow]:
    by_relaxed: dict[str, Requirement] = {}
    for requirement in registry.sorted_requirements():
        by_relaxed.setdefault(relaxed_key(requirement.id), requirement)
    grouped: dict[Identifier, list[MarkerOccurrence]] = {}
    targets: dict[Identifier, Requirement] = {}
    for item in matrix.hallucinations:
        identifier = item.occurrence.id
        target = by_relaxed.get(relaxed_key(identifier))
        if target is None:
            continue
        targets[identifier] = target
        grouped.setdefault(identifier, []).append(item.occurrence)
    rows: list[ComplianceRow] = []
    for identifier in sort_once(grouped, source="_orphan_rows.identifiers"):
        target = targets[identifier]
        occurrences = grouped[identifier]
        rows.append(
            ComplianceRow(
                requirement=Requirement(
                    id=identifier,
                    description=f"unregistered marker resembling {target.id}",
                    source_document=target.source_document,
                    source_line=target.source_line,
                    concern_tags=target.concern_tags,
                ),
                implementation_refs=tuple(
                    item for item in occurrences if item.kind is OccurrenceKind.IMPLEMENTATION
                ),
                test_refs=tuple(item for item in occurrences if item.kind is OccurrenceKind.TEST),
                orphan_of=target.id,
            )
        )
    return rows


def apply_heuristics(
    matrix: ComplianceMatrix,
    registry: Registry,
    source_index: SourceIndex,
) -> ComplianceMatrix:
    """Annotate Missing rows with possible matches and append Orphan rows."""
    rows: list[ComplianceRow] = []
    for row in matrix.rows:
        if row.status is ComplianceStatus.MISSING:
            match = heuristic_match(row.requirement.description, source_index)
            if match is not None:
                logger.debug(
                    "%s possibly implemented at %s", row.requirement.id, match.citation
                )
                row = replace(row, heuristic_match=match)
        rows.append(row)
    rows.extend(_orphan_rows(matrix, registry))
    return replace(matrix, rows=tuple(rows))
