from __future__ import annotations

import logging
from pathlib import Path
import threading

from tracemark.analysis import extractor
from tracemark.analysis.extractor import (
    DEADLINE_EXCEEDED_REASON,
    TestContextTracker,
    discover_source_files,
    extract,
    extract_all,
    is_test_path,
    iter_declaration_lines,
    scan_paths,
)
from tracemark.analysis.identifiers import Identifier
from tracemark.analysis.model import OccurrenceKind
from tracemark.config import DEFAULT_EXCLUDE, DEFAULT_SOURCE_EXTENSIONS
from tracemark.deadline_clock import Deadline

from tests.conftest import CACHE_SOURCE, CACHE_TESTS

PYTHON_SOURCE = """\
def get(key):
    # SPEC-CACHE-001
    return key


def test_get():
    # SPEC-CACHE-001
    assert get(1) == 1
"""


def _kinds(occurrences) -> list[tuple[int, str]]:
    return [(item.line, item.kind.value) for item in occurrences]


def test_extract_classifies_by_nearest_preceding_test_context() -> None:
    occurrences = list(extract({"src/cache.py": PYTHON_SOURCE}))
    assert _kinds(occurrences) == [(2, "implementation"), (7, "test")]


def test_extract_recognizes_rust_test_modules() -> None:
    occurrences = list(
        extract({"src/cache.rs": CACHE_SOURCE, "src/cache_tests.rs": CACHE_TESTS})
    )
    assert [(item.file, item.line, item.kind) for item in occurrences] == [
        ("src/cache.rs", 5, OccurrenceKind.IMPLEMENTATION),
        ("src/cache_tests.rs", 5, OccurrenceKind.TEST),
    ]
    assert all(item.id == Identifier("SPEC-CACHE-001") for item in occurrences)


def test_extract_recognizes_javascript_test_calls() -> None:
    text = "function load() {}\n// SPEC-A-1\ndescribe('load', () => {\n  it('works', () => {\n    // SPEC-A-1\n  });\n});\n"
    assert _kinds(extract({"lib/load.js": text})) == [(2, "implementation"), (5, "test")]


def test_test_path_pattern_marks_whole_file_as_test() -> None:
    text = "def helper():\n    # SPEC-A-1\n    pass\n"
    occurrences = list(extract({"tests/helpers.py": text}))
    assert _kinds(occurrences) == [(2, "test")]
    assert is_test_path("pkg/tests/helpers.py", ("*/tests/*",))
    assert not is_test_path("src/helpers.py", ("tests/*", "test_*.py"))


def test_extract_is_lazy_and_restartable() -> None:
    contents = {"a.py": "# SPEC-A-1 SPEC-A-2\n", "b.py": "# TASK-B-1\n"}
    stream = extract(contents)
    assert next(stream).id == Identifier("SPEC-A-1")
    first = list(extract(contents))
    second = list(extract(contents))
    assert first == second
    assert [item.column for item in first[:2]] == [2, 11]
    assert contents == {"a.py": "# SPEC-A-1 SPEC-A-2\n", "b.py": "# TASK-B-1\n"}


def test_extract_all_continues_past_undecodable_files() -> None:
    result = extract_all(
        {
            "ok.rs": "// SPEC-A-1\n",
            "broken.rs": b"// SPEC-A-2 \xff\xfe\n",
            "empty.rs": "fn main() {}\n",
        }
    )
    assert [item.id.value for item in result.occurrences] == ["SPEC-A-1"]
    assert [error.path for error in result.errors] == ["broken.rs"]
    assert "UTF-8" in result.errors[0].reason
    assert result.files == ("empty.rs", "ok.rs")
    assert result.files_without_markers == ("empty.rs",)


def test_tracker_resets_on_next_non_test_declaration() -> None:
    tracker = TestContextTracker()
    tracker.observe("@Test")
    assert tracker.in_test
    tracker.observe("public void checksLogin() {")
    assert tracker.in_test
    tracker.observe("private void helper() {")
    assert not tracker.in_test


def test_declaration_lines_cover_functions_and_types() -> None:
    lines = list(iter_declaration_lines("src/cache.rs", CACHE_SOURCE))
    assert [item.text for item in lines] == [
        "pub struct Cache {}",
        "impl Cache {",
        "pub fn evict(&mut self) {",
    ]


def test_discover_source_files_filters_and_prunes(write_tree) -> None:
    root = write_tree(
        {
            "src/a.rs": "// SPEC-A-1\n",
            "src/notes.txt": "SPEC-A-1\n",
            "node_modules/pkg/index.js": "// SPEC-A-1\n",
            "src/nested/b.py": "# SPEC-A-1\n",
        }
    )
    found = discover_source_files(
        root, extensions=DEFAULT_SOURCE_EXTENSIONS, exclude=DEFAULT_EXCLUDE
    )
    assert [path.relative_to(root).as_posix() for path in found] == [
        "src/a.rs",
        "src/nested/b.py",
    ]
    scoped = discover_source_files(
        root, scope="src/nested", extensions=(".py",), exclude=DEFAULT_EXCLUDE
    )
    assert [path.name for path in scoped] == ["b.py"]
    assert discover_source_files(root, scope="missing", extensions=(".py",)) == []


def test_scan_paths_reports_unreadable_file_and_keeps_others(write_tree) -> None:
    root = write_tree(
        {
            "src/a.rs": "// SPEC-A-1\n",
            "src/b.rs": b"// SPEC-A-2\n\xff\n",
            "src/c.rs": "// SPEC-A-3\n",
        }
    )
    paths = [root / "src/a.rs", root / "src/b.rs", root / "src/c.rs"]
    result = scan_paths(paths, root=root, max_workers=3)
    assert [item.id.value for item in result.occurrences] == ["SPEC-A-1", "SPEC-A-3"]
    assert [error.path for error in result.errors] == ["src/b.rs"]


def test_scan_paths_merge_is_independent_of_input_order(write_tree) -> None:
    root = write_tree({f"src/m{index}.rs": f"// SPEC-A-{index}\n" for index in range(6)})
    paths = sorted((root / "src").glob("*.rs"))
    forward = scan_paths(paths, root=root, max_workers=4)
    backward = scan_paths(list(reversed(paths)), root=root, max_workers=2)
    assert forward == backward


def test_scan_paths_turns_stalled_work_into_file_errors(write_tree) -> None:
    root = write_tree({f"src/m{index}.rs": "// SPEC-A-1\n" for index in range(4)})
    ticks = iter([0.0] + [100.0] * 100)
    deadline = Deadline(seconds=1.0, monotonic_fn=lambda: next(ticks))
    paths = sorted((root / "src").glob("*.rs"))
    result = scan_paths(paths, root=root, max_workers=1, deadline=deadline)
    assert len(result.files) + len(result.errors) == len(paths)
    assert all(error.reason == DEADLINE_EXCEEDED_REASON for error in result.errors)


def test_scan_paths_leaves_running_workers_unjoined(write_tree, monkeypatch, caplog) -> None:
    root = write_tree({"src/a.rs": "// SPEC-A-1\n", "src/b.rs": "// SPEC-A-2\n"})
    release = threading.Event()

    def _blocked(path, **kwargs):
        release.wait(10)

    monkeypatch.setattr(extractor, "read_and_scan", _blocked)
    paths = sorted((root / "src").glob("*.rs"))
    try:
        with caplog.at_level(logging.WARNING, logger=extractor.__name__):
            result = scan_paths(
                paths, root=root, max_workers=1, deadline=Deadline.from_seconds(0.5)
            )
    finally:
        release.set()
    assert [error.path for error in result.errors] == ["src/a.rs", "src/b.rs"]
    assert "1 scan workers still running past the deadline are left unjoined" in caplog.text


def test_scan_paths_with_no_paths_is_empty(tmp_path: Path) -> None:
    result = scan_paths([], root=tmp_path)
    assert result.occurrences == ()
    assert result.errors == ()
