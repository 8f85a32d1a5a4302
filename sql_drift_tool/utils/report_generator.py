from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from sql_drift_tool.core.comparator import CompareSummary, DiffSet, count_rows, drift_rows
from sql_drift_tool.core.errors import classify_error

COUNT_HEADERS = ["Type", "Changed", "Only in source", "Only in target"]
DRIFT_HEADERS = ["Object", "Kind", "Status"]

_SECTIONS = (
    ("Modules", "modules"),
    ("Indexes", "indexes"),
    ("Constraints", "constraints"),
    ("Tables", "tables"),
)


def pretty_summary(left_name: str, right_name: str, summary: CompareSummary) -> str:
    """Compact plain-text summary, one block per category."""
    lines: List[str] = []
    for title, attr in _SECTIONS:
        diff: DiffSet = getattr(summary, attr)
        lines.append(f"=== {title} ===")
        for label, keys in (
            ("changed", diff.changed),
            (f"missing in {right_name}", diff.missing_in_right),
            (f"missing in {left_name}", diff.missing_in_left),
        ):
            lines.append(f"{label}: {len(keys)}")
            if keys:
                lines.append("  " + ", ".join(keys))
        lines.append("")
    return "\n".join(lines)


def markdown_summary(left_name: str, right_name: str, summary: CompareSummary) -> str:
    blocks = [f"## Drift Summary: {left_name} vs {right_name}"]
    for title, attr in _SECTIONS:
        diff: DiffSet = getattr(summary, attr)
        lines = [f"### {title}"]
        for label, keys in (
            ("changed", diff.changed),
            (f"missing in {right_name}", diff.missing_in_right),
            (f"missing in {left_name}", diff.missing_in_left),
        ):
            lines.append(f"- {label}: {len(keys)}")
            if keys:
                lines.append("  - `" + "`, `".join(keys) + "`")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _md_cell(value: Any) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ")


def markdown_table(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    out = [
        "| " + " | ".join(_md_cell(h) for h in headers) + " |",
        "| " + " | ".join("---" for _ in headers) + " |",
    ]
    for row in rows:
        out.append("| " + " | ".join(_md_cell(v) for v in row) + " |")
    return "\n".join(out)


def rich_table(headers: Sequence[str], rows: Sequence[Sequence[Any]], numeric: bool = False) -> Table:
    table = Table(box=box.SIMPLE_HEAVY)
    for i, header in enumerate(headers):
        # count columns line up on the right
        table.add_column(header, justify="right" if numeric and i else "left", no_wrap=(i == 0))
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table


def render_tables(summary: CompareSummary, fmt: str = "pretty", width: int = 120) -> str:
    """Counts table plus, when there is drift, the per-object drift table."""
    counts = count_rows(summary)
    rows = drift_rows(summary)

    if fmt == "markdown":
        parts = [markdown_table(COUNT_HEADERS, counts)]
        if rows:
            parts.append(markdown_table(DRIFT_HEADERS, rows))
        return "\n\n".join(parts)

    buffer = io.StringIO()
    console = Console(file=buffer, width=width, color_system=None, highlight=False)
    console.print(rich_table(COUNT_HEADERS, counts, numeric=True))
    if rows:
        console.print(rich_table(DRIFT_HEADERS, rows))
    return buffer.getvalue().rstrip("\n")


def render_summary(
    summary: CompareSummary,
    source_name: str,
    target_name: str,
    fmt: str = "pretty",
    compact: bool = False,
    json_pretty: bool = True,
) -> str:
    if fmt == "json":
        return emit_json(summary.to_dict(), json_pretty)
    if compact:
        if fmt == "markdown":
            return markdown_summary(source_name, target_name, summary)
        return pretty_summary(source_name, target_name, summary)
    return render_tables(summary, fmt)


def emit_json(value: Any, pretty: bool = True) -> str:
    if pretty:
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def error_document(exc: BaseException) -> Dict[str, Dict[str, str]]:
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    return {"error": {"message": message, "kind": classify_error(exc)}}
