from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from tracemark.analysis.report_markdown import render_report_markdown
from tracemark.invariants import never


def _cell(value: object) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ")


@dataclass
class ReportDoc:
    doc_id: str
    doc_scope: tuple[str, ...] = ("repo",)
    _lines: list[str] = field(default_factory=list)

    def line(self, value: str = "") -> None:
        self._lines.append(value)

    def header(self, level: int, title: str) -> None:
        if level < 1 or level > 6:
            never("report header level out of range", level=level)
        self._lines.append(f"{'#' * level} {title}")

    def bullets(self, items: Iterable[str]) -> None:
        for item in items:
            self._lines.append(f"- {item}")

    def table(self, headers: Sequence[str], rows: Iterable[Sequence[object]]) -> None:
        header_cells = [str(entry) for entry in headers]
        if not header_cells:
            never("report table requires at least one header")
        self._lines.append("| " + " | ".join(header_cells) + " |")
        self._lines.append("| " + " | ".join("---" for _ in header_cells) + " |")
        for row in rows:
            row_cells = [_cell(entry) for entry in row]
            if len(row_cells) != len(header_cells):
                never(
                    "report table row length mismatch",
                    expected=len(header_cells),
                    actual=len(row_cells),
                )
            self._lines.append("| " + " | ".join(row_cells) + " |")

    def emit(self) -> str:
        return render_report_markdown(
            self.doc_id,
            self._lines,
            doc_scope=self.doc_scope,
        )
