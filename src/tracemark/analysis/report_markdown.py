from __future__ import annotations

from typing import Iterable


def render_report_markdown(
    doc_id: str,
    lines: Iterable[str],
    *,
    doc_scope: Iterable[str] | None = None,
) -> str:
    scope = list(doc_scope or ("repo",))
    frontmatter = [
        "---",
        f"doc_id: {doc_id}",
        "doc_role: report",
        "doc_scope:",
        *[f"  - {entry}" for entry in scope],
        "doc_authority: informative",
        "doc_generator: tracemark",
        "---",
        "",
        f'<a id="{doc_id}"></a>',
        "",
    ]
    return "\n".join(frontmatter + list(lines)) + "\n"
