"""Build the requirement registry from specification documents.

Only declarations register requirements. A declaration is an identifier that
opens a requirement definition:

- a bold label at the start of a line or list item (``**SPEC-AUTH-001**: ...``)
- a Markdown heading (``### SPEC-AUTH-001: Login``) for an identifier not yet
  declared in the same document
- the first cell of a row in a requirement table, one whose header opens with
  an ``ID`` or ``Requirement`` column (``| SPEC-AUTH-001 | Login |``), for an
  identifier not yet declared in the same document
- an ``ID:`` metadata line (``ID: SPEC-AUTH-001``)

Every other mention of an identifier in a document is a reference and is
ignored here.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass, field
import logging
from pathlib import Path
import re
from typing import Iterator, Mapping, Sequence

from tracemark.analysis.identifiers import Identifier, IdentifierKind
from tracemark.analysis.model import Registry, Requirement
from tracemark.config import DEFAULT_CONCERN_IDS, DEFAULT_PLACEHOLDERS
from tracemark.exceptions import DuplicateRequirementError, RegistryLoadError
from tracemark.order_contract import sort_once

logger = logging.getLogger(__name__)

_ID = r"(?:SPEC|CONCERN|TASK|TEST|INTERFACE)-[A-Za-z0-9_-]*[A-Za-z0-9]"
_SEPARATOR = r"\s*(?:[:—–-]\s*)?"

_BOLD_DECL_RE = re.compile(
    rf"^\s*(?:[-*+]\s+|\d+[.)]\s+)?\*\*(?P<id>{_ID})\s*:?\*\*{_SEPARATOR}(?P<desc>.*)$"
)
_HEADING_DECL_RE = re.compile(
    rf"^(?P<hashes>#{{1,6}})\s+(?:\*\*|`)?(?P<id>{_ID})(?:\*\*|`)?{_SEPARATOR}(?P<desc>.*?)\s*#*\s*$"
)
_TABLE_DECL_RE = re.compile(
    rf"^\s*\|\s*(?:\*\*|`)?(?P<id>{_ID})(?:\*\*|`)?\s*\|\s*(?P<desc>[^|]*)\|"
)
_TABLE_ROW_RE = re.compile(r"^\s*\|")
_DECL_TABLE_HEADER_RE = re.compile(
    r"^\s*\|\s*(?:\*\*)?(?:ID|Id|Requirement(?:\s+I[Dd])?|Req(?:\.|uirement)?\s*I[Dd])(?:\*\*)?\s*\|",
    re.IGNORECASE,
)
_METADATA_DECL_RE = re.compile(
    rf"^\s*(?:[-*+]\s+)?(?:\*\*)?(?:ID|Id|id|Requirement ID|Requirement Id)(?:\*\*)?\s*:\s*(?:\*\*)?\s*`?(?P<id>{_ID})`?(?:\*\*)?\s*$"
)
_HEADING_RE = re.compile(r"^(?P<hashes>#{1,6})\s+(?P<title>.+?)\s*#*\s*$")
_CONCERNS_LINE_RE = re.compile(
    r"^\s*(?:[-*+]\s+)?(?:\*\*)?Concerns?(?:\*\*)?\s*:\s*(?:\*\*)?\s*(?P<tags>.+)$",
    re.IGNORECASE,
)
_BRACKET_TAGS_RE = re.compile(r"\[(?P<tags>[A-Z][A-Z0-9_, -]*)\]")
_CONCERN_REF_RE = re.compile(r"(?<![A-Za-z0-9_-])CONCERN-(?P<code>[A-Za-z0-9]+)")
_CONCERN_ENTRY_RE = re.compile(
    r"^\s*(?:[-*+]\s+)?(?:CONCERN-)?(?P<code>[A-Z][A-Z0-9_]*)\s*(?:[:=]\s*(?P<desc>.*))?$"
)
_TAG_SPLIT_RE = re.compile(r"[,\s]+")


@dataclass(frozen=True)
class ConcernEntry:
    code: str
    description: str
    line: int


def parse_concern_registry(text: str | None) -> tuple[ConcernEntry, ...]:
    """Parse ``CODE = description`` / ``CODE: description`` lines.

    Blank lines, ``#`` comments and ``[section]`` headers are skipped. An empty
    or absent registry yields the compiled-in concern list.
    """
    if text is None:
        return tuple(ConcernEntry(code, "", 0) for code in DEFAULT_CONCERN_IDS)
    entries: dict[str, ConcernEntry] = {}
    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith(("#", ";", "[")):
            continue
        match = _CONCERN_ENTRY_RE.match(line)
        if match is None:
            logger.warning("concern registry line %d not understood: %r", line_number, raw)
            continue
        code = match.group("code")
        description = (match.group("desc") or "").strip().strip("\"'")
        entries.setdefault(code, ConcernEntry(code, description, line_number))
    if not entries:
        return tuple(ConcernEntry(code, "", 0) for code in DEFAULT_CONCERN_IDS)
    return tuple(entries.values())


def _clean_description(text: str) -> str:
    return text.strip().strip("*").strip()


def _tags_from_tokens(
    raw: str, concern_ids: frozenset[str], *, path: str, line: int
) -> set[str]:
    tags: set[str] = set()
    for token in _TAG_SPLIT_RE.split(raw):
        cleaned = token.strip("`*[]().;")
        if not cleaned:
            continue
        code = cleaned
        if cleaned.startswith("CONCERN-"):
            segments = Identifier(cleaned).segments
            code = segments[0] if segments else ""
        if code in concern_ids:
            tags.add(code)
        else:
            logger.warning("%s:%d: unknown concern tag %r", path, line, cleaned)
    return tags


def _inline_tags(description: str, concern_ids: frozenset[str]) -> set[str]:
    tags = {
        match.group("code")
        for match in _CONCERN_REF_RE.finditer(description)
        if match.group("code") in concern_ids
    }
    for match in _BRACKET_TAGS_RE.finditer(description):
        for token in _TAG_SPLIT_RE.split(match.group("tags")):
            if token in concern_ids:
                tags.add(token)
    return tags


@dataclass
class _Declaration:
    identifier: Identifier
    description: str
    line: int
    tags: set[str] = field(default_factory=set)
    from_heading: bool = False


def iter_declarations(
    path: str,
    text: str,
    *,
    concern_ids: Sequence[str] = DEFAULT_CONCERN_IDS,
) -> Iterator[Requirement]:
    """Yield the requirements declared in one document, in line order."""
    known = frozenset(concern_ids)
    declarations: list[_Declaration] = []
    declared: set[Identifier] = set()
    current: _Declaration | None = None
    last_heading = ""
    # None outside a table; otherwise whether the table declares requirements.
    declaring_table: bool | None = None
    for line_number, line in enumerate(text.splitlines(), start=1):
        declaration: _Declaration | None = None
        if _TABLE_ROW_RE.match(line):
            if declaring_table is None:
                declaring_table = _DECL_TABLE_HEADER_RE.match(line) is not None
                continue
            row = _TABLE_DECL_RE.match(line) if declaring_table else None
            if row is None or Identifier(row.group("id")) in declared:
                continue
            declaration = _Declaration(
                Identifier(row.group("id")),
                _clean_description(row.group("desc")),
                line_number,
            )
        else:
            declaring_table = None
        heading = _HEADING_DECL_RE.match(line) if declaration is None else None
        if heading is not None and Identifier(heading.group("id")) not in declared:
            declaration = _Declaration(
                Identifier(heading.group("id")),
                _clean_description(heading.group("desc")),
                line_number,
                from_heading=True,
            )
        elif heading is None and declaration is None:
            matched = _BOLD_DECL_RE.match(line)
            if matched is not None:
                declaration = _Declaration(
                    Identifier(matched.group("id")),
                    _clean_description(matched.group("desc")),
                    line_number,
                )
            else:
                metadata = _METADATA_DECL_RE.match(line)
                if metadata is not None:
                    identifier = Identifier(metadata.group("id"))
                    if current is not None and current.from_heading and current.identifier == identifier:
                        continue
                    declaration = _Declaration(identifier, last_heading, line_number)
        if declaration is not None:
            declaration.tags |= _inline_tags(declaration.description, known)
            if declaration.identifier.kind is IdentifierKind.CONCERN:
                segments = declaration.identifier.segments
                if segments and segments[0] in known:
                    declaration.tags.add(segments[0])
                else:
                    logger.warning(
                        "%s:%d: %s names no registered concern",
                        path,
                        line_number,
                        declaration.identifier,
                    )
            declarations.append(declaration)
            declared.add(declaration.identifier)
            current = declaration
            continue
        plain_heading = _HEADING_RE.match(line)
        if plain_heading is not None:
            last_heading = _clean_description(plain_heading.group("title"))
            current = None
            continue
        concerns = _CONCERNS_LINE_RE.match(line)
        if concerns is not None and current is not None:
            current.tags |= _tags_from_tokens(
                concerns.group("tags"), known, path=path, line=line_number
            )
    for declaration in declarations:
        yield Requirement(
            id=declaration.identifier,
            description=declaration.description,
            source_document=path,
            source_line=declaration.line,
            concern_tags=frozenset(declaration.tags),
        )


def load(
    spec_documents: Mapping[str, str],
    concern_registry: str | None = None,
    *,
    placeholders: Sequence[str] = DEFAULT_PLACEHOLDERS,
    concern_registry_path: str = "concerns",
) -> Registry:
    """Build an immutable ``Registry``.

    Raises ``DuplicateRequirementError`` when an identifier is declared twice,
    anywhere across the document set.
    """
    concerns = parse_concern_registry(concern_registry)
    concern_ids = tuple(entry.code for entry in concerns)
    requirements: dict[Identifier, Requirement] = {}

    def _register(requirement: Requirement) -> None:
        existing = requirements.get(requirement.id)
        if existing is not None:
            raise DuplicateRequirementError(
                requirement.id.value,
                first=(existing.source_document, existing.source_line),
                second=(requirement.source_document, requirement.source_line),
            )
        requirements[requirement.id] = requirement

    # An explicit concern registry makes each concern a first-class requirement.
    if concern_registry is not None:
        for entry in concerns:
            _register(
                Requirement(
                    id=Identifier(f"CONCERN-{entry.code}"),
                    description=entry.description,
                    source_document=concern_registry_path,
                    source_line=entry.line,
                    concern_tags=frozenset({entry.code}),
                )
            )

    documents = sort_once(spec_documents, source="load.spec_documents")
    for path in documents:
        for requirement in iter_declarations(
            path, spec_documents[path], concern_ids=concern_ids
        ):
            _register(requirement)
    logger.info(
        "registry loaded: %d requirements from %d documents",
        len(requirements),
        len(documents),
    )
    return Registry(
        requirements=requirements,
        placeholders=frozenset(Identifier(item) for item in placeholders),
        concern_ids=concern_ids,
        documents=tuple(documents),
    )


def _read_spec_document(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RegistryLoadError(f"cannot read specification document {path}: {exc}") from exc


def read_spec_documents(
    root: Path,
    spec_dirs: Sequence[str],
    *,
    globs: Sequence[str] = ("*.md",),
    max_workers: int | None = None,
) -> dict[str, str]:
    """Read every specification document; any failure aborts the load."""
    paths: set[Path] = set()
    for spec_dir in spec_dirs:
        base = root / spec_dir
        if not base.is_dir():
            raise RegistryLoadError(f"specification directory not found: {base}")
        found = {candidate for pattern in globs for candidate in base.rglob(pattern) if candidate.is_file()}
        if not found:
            logger.warning("no specification documents under %s", base)
        paths |= found
    ordered = sort_once(paths, source="read_spec_documents.paths", key=str)
    if not ordered:
        return {}
    documents: dict[str, str] = {}
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers or min(16, len(ordered)),
        thread_name_prefix="tracemark-spec",
    ) as executor:
        texts = executor.map(_read_spec_document, ordered)
        for path, text in zip(ordered, texts):
            try:
                key = path.resolve().relative_to(root.resolve()).as_posix()
            except ValueError:
                key = path.as_posix()
            documents[key] = text
    return documents


def read_concern_registry(root: Path, concern_registry: str | None) -> str | None:
    if concern_registry is None:
        return None
    path = root / concern_registry
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RegistryLoadError(f"cannot read concern registry {path}: {exc}") from exc
