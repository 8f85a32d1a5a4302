"""Snapshot data model and JSON persistence.

A snapshot is the catalog metadata captured from one database for a fixed set
of schemas. Rows are frozen dataclasses; a Snapshot is built once per run and
only read afterwards.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Tuple, Type, TypeVar

from sql_drift_tool.core.errors import ConfigError


SNAPSHOT_VERSION = 1


@dataclass(frozen=True)
class ModuleRow:
    schema_name: str
    name: str
    type: str
    definition: str


@dataclass(frozen=True)
class IndexRow:
    schema_name: str
    table_name: str
    type: str
    is_unique: bool
    is_primary_key: bool
    is_unique_constraint: bool
    key_columns: str
    include_columns: str


@dataclass(frozen=True)
class ConstraintRow:
    schema_name: str
    table_name: str
    name: str
    type: str
    definition: str


@dataclass(frozen=True)
class TableRow:
    """Pre-aggregated coarse summary of one table.

    ``columns``, ``indexes`` and ``checks`` are opaque signature strings built
    by the catalog query; they are only ever compared for equality.
    """

    schema_name: str
    table_name: str
    columns: str
    indexes: str
    checks: str


@dataclass(frozen=True)
class TableColumnRow:
    schema_name: str
    table_name: str
    column_id: int
    column_name: str
    data_type: str
    max_length: int
    precision: int
    scale: int
    is_nullable: bool
    is_identity: bool
    default_definition: str
    computed_definition: str


@dataclass(frozen=True)
class Snapshot:
    name: str
    modules: Tuple[ModuleRow, ...] = field(default_factory=tuple)
    indexes: Tuple[IndexRow, ...] = field(default_factory=tuple)
    constraints: Tuple[ConstraintRow, ...] = field(default_factory=tuple)
    tables: Tuple[TableRow, ...] = field(default_factory=tuple)
    table_columns: Tuple[TableColumnRow, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples so the value stays immutable.
        for name in ("modules", "indexes", "constraints", "tables", "table_columns"):
            object.__setattr__(self, name, tuple(getattr(self, name)))


_ROW_TYPES: Dict[str, type] = {
    "modules": ModuleRow,
    "indexes": IndexRow,
    "constraints": ConstraintRow,
    "tables": TableRow,
    "tableColumns": TableColumnRow,
}

R = TypeVar("R")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _row_to_dict(row: Any) -> Dict[str, Any]:
    return {_camel(f.name): getattr(row, f.name) for f in fields(row)}


def _row_from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
    kwargs = {}
    for f in fields(cls):  # type: ignore[arg-type]
        key = _camel(f.name)
        if key not in data:
            raise ConfigError(f"Snapshot row is missing field '{key}'")
        kwargs[f.name] = data[key]
    return cls(**kwargs)


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    """Return the camelCase JSON shape used for output and snapshot files."""
    return {
        "name": snapshot.name,
        "modules": [_row_to_dict(r) for r in snapshot.modules],
        "indexes": [_row_to_dict(r) for r in snapshot.indexes],
        "constraints": [_row_to_dict(r) for r in snapshot.constraints],
        "tables": [_row_to_dict(r) for r in snapshot.tables],
        "tableColumns": [_row_to_dict(r) for r in snapshot.table_columns],
    }


def snapshot_from_dict(data: Dict[str, Any]) -> Snapshot:
    if not isinstance(data, dict) or "name" not in data:
        raise ConfigError("Snapshot document does not contain a snapshot object")
    rows: Dict[str, List[Any]] = {}
    for key, cls in _ROW_TYPES.items():
        raw = data.get(key) or []
        if not isinstance(raw, list):
            raise ConfigError(f"Snapshot field '{key}' must be a list")
        rows[key] = [_row_from_dict(cls, item) for item in raw]
    return Snapshot(
        name=str(data["name"]),
        modules=rows["modules"],
        indexes=rows["indexes"],
        constraints=rows["constraints"],
        tables=rows["tables"],
        table_columns=rows["tableColumns"],
    )


def save_snapshot(path: str | Path, snapshot: Snapshot) -> Path:
    """Save a snapshot to a JSON file.

    The file carries a version header and a "snapshot" payload so the format
    can evolve without breaking older files.
    """

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = {"version": SNAPSHOT_VERSION, "snapshot": snapshot_to_dict(snapshot)}
    p.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return p


def load_snapshot(path: str | Path) -> Snapshot:
    """Load a snapshot file written by save_snapshot.

    Accepts both the wrapped format {"version": .., "snapshot": ..} and a plain
    snapshot object.
    """

    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read snapshot file {p}: {exc}") from exc
    if isinstance(data, dict) and "snapshot" in data:
        return snapshot_from_dict(data["snapshot"])
    return snapshot_from_dict(data)
