from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Callable, Optional

from sql_drift_tool.core.normalizer import normalize_definition, normalize_line_endings
from sql_drift_tool.core.snapshot import ModuleRow, Snapshot


STATUS_NOT_FOUND = "not_found"
STATUS_SAME = "same"
STATUS_DIFFERS = "differs"

DEFAULT_CONTEXT = 5


class DiffGenerator:
    def __init__(self, source_sql: str, target_sql: str) -> None:
        self.source = (source_sql or "").splitlines()
        self.target = (target_sql or "").splitlines()

    def unified(self, fromfile: str, tofile: str, context: int = DEFAULT_CONTEXT) -> str:
        diff = difflib.unified_diff(self.source, self.target, fromfile=fromfile, tofile=tofile, n=context, lineterm="")
        return "\n".join(diff)


def _object_predicate(name: str) -> Callable[[ModuleRow], bool]:
    parts = name.split(".")
    if len(parts) == 2:
        schema, obj = parts[0].lower(), parts[1].lower()
        return lambda row: row.schema_name.lower() == schema and row.name.lower() == obj
    wanted = name.lower()
    return lambda row: row.name.lower() == wanted


def find_module(snapshot: Snapshot, name: str) -> Optional[ModuleRow]:
    """Resolve ``schema.name`` or bare ``name`` (case-insensitive).

    A bare name that exists in several schemas resolves to the first module
    in snapshot order.
    """
    predicate = _object_predicate(name)
    return next((m for m in snapshot.modules if predicate(m)), None)


@dataclass(frozen=True)
class ObjectDiffResult:
    status: str
    text: str
    left: Optional[ModuleRow] = None
    right: Optional[ModuleRow] = None

    @property
    def exit_code(self) -> int:
        if self.status == STATUS_NOT_FOUND:
            return 4
        if self.status == STATUS_DIFFERS:
            return 3
        return 0


def diff_object(
    left: Snapshot,
    right: Snapshot,
    name: str,
    ignore_whitespace: bool = False,
    strip_comments: bool = False,
    context: int = DEFAULT_CONTEXT,
) -> ObjectDiffResult:
    """Compare one module across two snapshots."""
    left_obj = find_module(left, name)
    right_obj = find_module(right, name)

    if left_obj is None and right_obj is None:
        return ObjectDiffResult(STATUS_NOT_FOUND, f"Object '{name}' not found in either side.")

    raw_left = normalize_line_endings(left_obj.definition) if left_obj else ""
    raw_right = normalize_line_endings(right_obj.definition) if right_obj else ""

    if left_obj is not None and right_obj is not None:
        norm_left = normalize_definition(left_obj.definition, ignore_whitespace, strip_comments)
        norm_right = normalize_definition(right_obj.definition, ignore_whitespace, strip_comments)
        if norm_left == norm_right:
            return ObjectDiffResult(
                STATUS_SAME,
                f"No substantive drift for {name} (whitespace/comments ignored).",
                left_obj,
                right_obj,
            )
        header_left = f"{left.name}:{left_obj.schema_name}.{left_obj.name}.{left_obj.type}"
        header_right = f"{right.name}:{right_obj.schema_name}.{right_obj.name}.{right_obj.type}"
        text = DiffGenerator(raw_left, raw_right).unified(header_left, header_right, context)
        return ObjectDiffResult(STATUS_DIFFERS, text, left_obj, right_obj)

    def label(row: Optional[ModuleRow]) -> str:
        return f"{row.schema_name}.{row.name}" if row else "missing"

    text = "\n".join(
        [
            f"Left: {label(left_obj)}",
            raw_left,
            "---",
            f"Right: {label(right_obj)}",
            raw_right,
        ]
    )
    return ObjectDiffResult(STATUS_DIFFERS, text, left_obj, right_obj)
