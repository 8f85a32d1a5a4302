from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from sql_drift_tool.core.indexer import (
    IndexedSnapshot,
    constraint_key_object,
    index_key_object,
    index_snapshot,
    split_module_key,
)
from sql_drift_tool.core.snapshot import Snapshot
from sql_drift_tool.utils.logger import get_logger

logger = get_logger(__name__)


STATUS = {
    "CHANGED": "Changed",
    "ONLY_IN_SOURCE": "Only in source",
    "ONLY_IN_TARGET": "Only in target",
}

CATEGORIES = ("modules", "indexes", "constraints", "tables")

_TYPE_KEYWORDS = {
    "P": "PROCEDURE",
    "PROCEDURE": "PROCEDURE",
    "V": "VIEW",
    "VIEW": "VIEW",
    "FN": "FUNCTION",
    "IF": "FUNCTION",
    "TF": "FUNCTION",
    "FUNCTION": "FUNCTION",
    "TR": "TRIGGER",
    "TRIGGER": "TRIGGER",
}


def type_keyword(code: str) -> str:
    """Map a catalog type code (P, V, FN, ...) or long name to its DDL keyword."""
    return _TYPE_KEYWORDS.get((code or "").strip().upper(), "OBJECT")


@dataclass(frozen=True)
class DiffSet:
    """Three-way partition of the keys of two signature maps.

    ``missing_in_right`` holds keys present only on the left side and
    ``missing_in_left`` keys present only on the right side.
    """

    changed: List[str] = field(default_factory=list)
    missing_in_right: List[str] = field(default_factory=list)
    missing_in_left: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.changed or self.missing_in_right or self.missing_in_left)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "changed": list(self.changed),
            "missingInRight": list(self.missing_in_right),
            "missingInLeft": list(self.missing_in_left),
        }


@dataclass(frozen=True)
class CompareSummary:
    modules: DiffSet = field(default_factory=DiffSet)
    indexes: DiffSet = field(default_factory=DiffSet)
    constraints: DiffSet = field(default_factory=DiffSet)
    tables: DiffSet = field(default_factory=DiffSet)

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {name: getattr(self, name).to_dict() for name in CATEGORIES}


def diff_maps(left: Mapping[str, str], right: Mapping[str, str]) -> DiffSet:
    changed: List[str] = []
    missing_in_right: List[str] = []
    missing_in_left: List[str] = []

    for key, value in left.items():
        if key in right:
            if right[key] != value:
                changed.append(key)
        else:
            missing_in_right.append(key)
    for key in right:
        if key not in left:
            missing_in_left.append(key)

    return DiffSet(
        changed=sorted(changed),
        missing_in_right=sorted(missing_in_right),
        missing_in_left=sorted(missing_in_left),
    )


def diff_indexed(left: IndexedSnapshot, right: IndexedSnapshot) -> CompareSummary:
    return CompareSummary(
        modules=diff_maps(left.modules, right.modules),
        indexes=diff_maps(left.indexes, right.indexes),
        constraints=diff_maps(left.constraints, right.constraints),
        tables=diff_maps(left.tables, right.tables),
    )


def summarize(left: Snapshot, right: Snapshot, ignore_whitespace: bool = False, strip_comments: bool = False) -> CompareSummary:
    """Index both snapshots and diff every category independently."""
    summary = diff_indexed(
        index_snapshot(left, ignore_whitespace, strip_comments),
        index_snapshot(right, ignore_whitespace, strip_comments),
    )
    counts = ", ".join(f"{name}={count}" for name, count in drift_counts(summary).items())
    logger.info(f"Compared {left.name} vs {right.name}: {counts}")
    return summary


def has_drift(summary: CompareSummary) -> bool:
    return any(not getattr(summary, name).is_empty() for name in CATEGORIES)


def drift_counts(summary: CompareSummary) -> Dict[str, int]:
    counts = {}
    for name in CATEGORIES:
        diff = getattr(summary, name)
        counts[name] = len(diff.changed) + len(diff.missing_in_right) + len(diff.missing_in_left)
    return counts


def drift_rows(summary: CompareSummary) -> List[Tuple[str, str, str]]:
    """Flatten a summary into (object, kind, status) rows for tabular output."""
    rows: List[Tuple[str, str, str]] = []

    def partitions(diff: DiffSet) -> List[Tuple[List[str], str]]:
        return [
            (diff.changed, STATUS["CHANGED"]),
            (diff.missing_in_right, STATUS["ONLY_IN_SOURCE"]),
            (diff.missing_in_left, STATUS["ONLY_IN_TARGET"]),
        ]

    for keys, status in partitions(summary.modules):
        for key in keys:
            parsed = split_module_key(key)
            if parsed:
                schema, code, name = parsed
                rows.append((f"{schema}.{name}", type_keyword(code), status))

    for keys, status in partitions(summary.tables):
        for key in keys:
            rows.append((key, "Table", status))

    for keys, status in partitions(summary.indexes):
        for key in keys:
            obj = index_key_object(key)
            if obj:
                rows.append((obj, "Index", status))

    for keys, status in partitions(summary.constraints):
        for key in keys:
            parsed_constraint = constraint_key_object(key)
            if parsed_constraint:
                obj, kind = parsed_constraint
                rows.append((obj, kind, status))

    return rows


def count_rows(summary: CompareSummary) -> List[List[Any]]:
    """Per-category counts in display order: Modules, Tables, Indexes, Constraints."""
    out = []
    for title, name in (("Modules", "modules"), ("Tables", "tables"), ("Indexes", "indexes"), ("Constraints", "constraints")):
        diff = getattr(summary, name)
        out.append([title, len(diff.changed), len(diff.missing_in_right), len(diff.missing_in_left)])
    return out
