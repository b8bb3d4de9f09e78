"""Marker extraction over source text.

Scanning is plain text matching against the identifier grammar; it never
parses the host language. Whether an occurrence counts as test evidence is
decided by the nearest preceding test-shaped declaration or annotation in the
same file, or by the file path matching a test path pattern.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass
from fnmatch import fnmatch
import logging
import os
from pathlib import Path, PurePosixPath
import re
from typing import Iterable, Iterator, Mapping, Sequence

from tracemark.analysis.identifiers import iter_identifiers
from tracemark.analysis.model import DeclarationLine, MarkerOccurrence, OccurrenceKind
from tracemark.config import DEFAULT_EXCLUDE, DEFAULT_TEST_PATH_PATTERNS
from tracemark.deadline_clock import Deadline
from tracemark.exceptions import FileReadError
from tracemark.order_contract import sort_once

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED_REASON = "scan deadline exceeded"

_TEST_ANNOTATION_RE = re.compile(
    r"""^\s*(?:
        \#\[(?:[A-Za-z_]\w*::)*test\b[^\]]*\]          # #[test], #[tokio::test]
        | \#\[cfg\(test\)\]
        | @(?:Test|ParameterizedTest|RepeatedTest|TestFactory)\b
        | @pytest\.mark\.
        | \[(?:Test|TestMethod|TestCase|Fact|Theory)\b[^\]]*\]
    )""",
    re.VERBOSE,
)
_TEST_CALL_RE = re.compile(r"^\s*(?:it|test|describe|context)(?:\.\w+)?\s*\(")
_FUNCTION_DECL_RE = re.compile(
    r"""^\s*
    (?:(?:pub(?:\([^)]*\))?|export|default|public|private|protected|internal
        |static|final|override|open|suspend|inline|unsafe|const|extern)\s+)*
    (?:async\s+)?
    (?:def|fn|func|fun|function)\s*\*?\s+
    (?:\([^)]*\)\s*)?                                  # Go receiver
    (?P<name>[A-Za-z_]\w*)""",
    re.VERBOSE,
)
_METHOD_DECL_RE = re.compile(
    r"""^\s*
    (?:(?:public|private|protected|internal|static|final|synchronized|virtual|override|async)\s+)+
    (?:[\w<>\[\],.?]+\s+)?
    (?P<name>[A-Za-z_]\w*)\s*\(""",
    re.VERBOSE,
)
_CONTAINER_DECL_RE = re.compile(
    r"^\s*(?:(?:pub(?:\([^)]*\))?|export|public|abstract|final)\s+)*"
    r"(?P<keyword>class|mod|module|struct|impl|object)\s+(?P<name>[A-Za-z_]\w*)"
)


def _is_test_name(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith("test") or lowered.endswith("_test")


def _is_test_container(keyword: str, name: str) -> bool:
    if keyword in {"mod", "module"}:
        return name in {"test", "tests"}
    return name.startswith("Test") or name.endswith(("Test", "Tests"))


class TestContextTracker:
    """Textual nearest-preceding-match classifier for test context."""

    __test__ = False

    def __init__(self, *, whole_file_is_test: bool = False) -> None:
        self._whole_file = whole_file_is_test
        self._in_test = whole_file_is_test
        self._pending_annotation = False

    @property
    def in_test(self) -> bool:
        return self._in_test

    def observe(self, line: str) -> None:
        if self._whole_file:
            return
        if _TEST_ANNOTATION_RE.match(line):
            self._pending_annotation = True
            self._in_test = True
            return
        if _TEST_CALL_RE.match(line):
            self._pending_annotation = False
            self._in_test = True
            return
        container = _CONTAINER_DECL_RE.match(line)
        if container is not None:
            self._in_test = self._pending_annotation or _is_test_container(
                container.group("keyword"), container.group("name")
            )
            self._pending_annotation = False
            return
        function = _FUNCTION_DECL_RE.match(line) or _METHOD_DECL_RE.match(line)
        if function is not None:
            self._in_test = self._pending_annotation or _is_test_name(
                function.group("name")
            )
            self._pending_annotation = False


def is_declaration_line(line: str) -> bool:
    return bool(
        _FUNCTION_DECL_RE.match(line)
        or _METHOD_DECL_RE.match(line)
        or _CONTAINER_DECL_RE.match(line)
    )


def iter_declaration_lines(path: str, text: str) -> Iterator[DeclarationLine]:
    for line_number, line in enumerate(text.splitlines(), start=1):
        if is_declaration_line(line):
            yield DeclarationLine(file=path, line=line_number, text=line.strip())


def is_test_path(path: str, patterns: Sequence[str]) -> bool:
    posix = PurePosixPath(path.replace("\\", "/"))
    text = posix.as_posix()
    return any(
        fnmatch(text, pattern) or fnmatch(posix.name, pattern) for pattern in patterns
    )


def iter_markers(
    path: str,
    text: str,
    *,
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
) -> Iterator[MarkerOccurrence]:
    """Yield every marker occurrence in ``text`` in line/column order."""
    tracker = TestContextTracker(
        whole_file_is_test=is_test_path(path, test_path_patterns)
    )
    for line_number, line in enumerate(text.splitlines(), start=1):
        tracker.observe(line)
        kind = OccurrenceKind.TEST if tracker.in_test else OccurrenceKind.IMPLEMENTATION
        for column, identifier in iter_identifiers(line):
            yield MarkerOccurrence(
                file=path,
                line=line_number,
                id=identifier,
                kind=kind,
                column=column,
            )


@dataclass(frozen=True)
class FileScan:
    path: str
    occurrences: tuple[MarkerOccurrence, ...] = ()
    declarations: tuple[DeclarationLine, ...] = ()
    error: FileReadError | None = None


@dataclass(frozen=True)
class ExtractionResult:
    occurrences: tuple[MarkerOccurrence, ...]
    errors: tuple[FileReadError, ...]
    files: tuple[str, ...]
    files_without_markers: tuple[str, ...]
    declarations: tuple[DeclarationLine, ...] = ()


def scan_content(
    path: str,
    content: str | bytes,
    *,
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
) -> FileScan:
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as exc:
            return FileScan(path=path, error=FileReadError(path, f"not valid UTF-8: {exc.reason}"))
    occurrences = tuple(
        iter_markers(path, content, test_path_patterns=test_path_patterns)
    )
    return FileScan(
        path=path,
        occurrences=occurrences,
        declarations=tuple(iter_declaration_lines(path, content)),
    )


def iter_file_scans(
    file_contents: Mapping[str, str | bytes],
    *,
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
) -> Iterator[FileScan]:
    """Lazily scan each file; re-invoking restarts from the first file."""
    for path in file_contents:
        yield scan_content(
            path, file_contents[path], test_path_patterns=test_path_patterns
        )


def extract(
    file_contents: Mapping[str, str | bytes],
    *,
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
) -> Iterator[MarkerOccurrence]:
    """Lazy marker stream over ``file_contents``.

    Undecodable files contribute no occurrences; use ``extract_all`` to see
    their errors.
    """
    for scan in iter_file_scans(file_contents, test_path_patterns=test_path_patterns):
        yield from scan.occurrences


def merge_scans(scans: Iterable[FileScan]) -> ExtractionResult:
    """Fan-in: combine per-file results independent of completion order."""
    ordered = sort_once(scans, source="merge_scans.scans", key=lambda scan: scan.path)
    occurrences: list[MarkerOccurrence] = []
    errors: list[FileReadError] = []
    files: list[str] = []
    empty: list[str] = []
    declarations: list[DeclarationLine] = []
    for scan in ordered:
        if scan.error is not None:
            errors.append(scan.error)
            continue
        files.append(scan.path)
        if not scan.occurrences:
            empty.append(scan.path)
        occurrences.extend(scan.occurrences)
        declarations.extend(scan.declarations)
    return ExtractionResult(
        occurrences=tuple(occurrences),
        errors=tuple(errors),
        files=tuple(files),
        files_without_markers=tuple(empty),
        declarations=tuple(declarations),
    )


def extract_all(
    file_contents: Mapping[str, str | bytes],
    *,
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
) -> ExtractionResult:
    return merge_scans(
        iter_file_scans(file_contents, test_path_patterns=test_path_patterns)
    )


def _relative_posix(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def _is_excluded(rel_path: str, exclude: Sequence[str]) -> bool:
    parts = PurePosixPath(rel_path).parts
    for pattern in exclude:
        cleaned = pattern.strip("/")
        if not cleaned:
            continue
        if cleaned in parts or rel_path == cleaned or rel_path.startswith(f"{cleaned}/"):
            return True
    return False


def discover_source_files(
    root: Path,
    *,
    scope: str = ".",
    extensions: Sequence[str],
    exclude: Sequence[str] = DEFAULT_EXCLUDE,
) -> list[Path]:
    base = (root / scope) if scope not in {"", "."} else root
    if not base.exists():
        logger.warning("scan scope %s does not exist", base)
        return []
    candidates: list[Path] = []
    if base.is_file():
        candidates.append(base)
    else:
        for dirpath, dirnames, filenames in os.walk(base):
            current = Path(dirpath)
            # Pruned in place so excluded trees are never walked.
            dirnames[:] = [
                name
                for name in dirnames
                if not _is_excluded(_relative_posix(current / name, root), exclude)
            ]
            candidates.extend(current / filename for filename in filenames)
    suffixes = {ext.lower() for ext in extensions}
    selected = [
        path
        for path in candidates
        if path.suffix.lower() in suffixes
        and not _is_excluded(_relative_posix(path, root), exclude)
    ]
    return sort_once(selected, source="discover_source_files.selected", key=str)


def read_and_scan(
    path: Path,
    *,
    root: Path,
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
) -> FileScan:
    rel_path = _relative_posix(path, root)
    try:
        content = path.read_bytes()
    except OSError as exc:
        logger.warning("cannot read %s: %s", rel_path, exc)
        reason = exc.strerror or exc.__class__.__name__
        return FileScan(path=rel_path, error=FileReadError(rel_path, reason))
    scan = scan_content(rel_path, content, test_path_patterns=test_path_patterns)
    if scan.error is not None:
        logger.warning("cannot decode %s: %s", rel_path, scan.error.reason)
    return scan


def scan_paths(
    paths: Sequence[Path],
    *,
    root: Path,
    test_path_patterns: Sequence[str] = DEFAULT_TEST_PATH_PATTERNS,
    max_workers: int | None = None,
    deadline: Deadline | None = None,
) -> ExtractionResult:
    """Scan files concurrently, one unit of work per file.

    Workers share no state; results are merged after the join. Files still
    pending when the deadline expires are reported as per-file errors.
    """
    if not paths:
        return merge_scans(())
    deadline = deadline or Deadline.unbounded()
    workers = max_workers or min(32, (os.cpu_count() or 1) + 4, len(paths))
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="tracemark-scan"
    )
    scans: list[FileScan] = []
    try:
        futures = {
            executor.submit(
                read_and_scan,
                path,
                root=root,
                test_path_patterns=test_path_patterns,
            ): path
            for path in paths
        }
        done, pending = concurrent.futures.wait(futures, timeout=deadline.remaining())
        for future in done:
            rel_path = _relative_posix(futures[future], root)
            try:
                scans.append(future.result())
            except Exception as exc:
                logger.warning("scan of %s crashed: %s", rel_path, exc)
                scans.append(
                    FileScan(path=rel_path, error=FileReadError(rel_path, f"scan crashed: {exc}"))
                )
        stalled = 0
        for future in pending:
            if not future.cancel():
                stalled += 1
            rel_path = _relative_posix(futures[future], root)
            logger.warning("%s: %s", rel_path, DEADLINE_EXCEEDED_REASON)
            scans.append(
                FileScan(path=rel_path, error=FileReadError(rel_path, DEADLINE_EXCEEDED_REASON))
            )
        if stalled:
            logger.warning(
                "%d scan workers still running past the deadline are left unjoined",
                stalled,
            )
    finally:
        # Running workers are abandoned, not joined; the deadline bounds the run.
        executor.shutdown(wait=False, cancel_futures=True)
    return merge_scans(scans)
