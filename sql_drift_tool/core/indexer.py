"""Build per-category key -> signature maps from a snapshot.

Index and constraint keys embed their full signature, so a modified index or
constraint never shows up as "changed": it is reported as one key missing on
each side. Module and table keys are identity keys and do report changes.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from sql_drift_tool.core.normalizer import normalize_definition
from sql_drift_tool.core.snapshot import ConstraintRow, IndexRow, ModuleRow, Snapshot, TableRow


SignatureMap = Dict[str, str]


def module_key(row: ModuleRow) -> str:
    return f"{row.schema_name}.{row.type}.{row.name}"


def table_key(schema_name: str, table_name: str) -> str:
    return f"{schema_name}.{table_name}"


def _compact_json(value: dict) -> str:
    # Field order is fixed by the dict literal; no key sorting.
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def index_signature(row: IndexRow) -> str:
    return _compact_json(
        {
            "type": row.type,
            "unique": row.is_unique,
            "primaryKey": row.is_primary_key,
            "uniqueConstraint": row.is_unique_constraint,
            "keyColumns": row.key_columns,
            "includeColumns": row.include_columns,
        }
    )


def table_signature(row: TableRow) -> str:
    return _compact_json({"columns": row.columns, "indexes": row.indexes, "checks": row.checks})


def parse_table_signature(signature: Optional[str]) -> Dict[str, str]:
    """Split a table signature back into its three parts.

    Missing or unreadable signatures yield empty parts.
    """
    empty = {"columns": "", "indexes": "", "checks": ""}
    if not signature:
        return empty
    try:
        data = json.loads(signature)
    except ValueError:
        return empty
    if not isinstance(data, dict):
        return empty
    return {k: str(data.get(k) or "") for k in empty}


def build_module_map(rows: Iterable[ModuleRow], ignore_whitespace: bool, strip_comments: bool) -> SignatureMap:
    return {
        module_key(row): normalize_definition(row.definition, ignore_whitespace, strip_comments)
        for row in rows
    }


def build_index_map(rows: Iterable[IndexRow]) -> SignatureMap:
    out: SignatureMap = {}
    for row in rows:
        signature = index_signature(row)
        out[f"{table_key(row.schema_name, row.table_name)}::{signature}"] = signature
    return out


def build_constraint_map(rows: Iterable[ConstraintRow], ignore_whitespace: bool, strip_comments: bool) -> SignatureMap:
    out: SignatureMap = {}
    for row in rows:
        definition = normalize_definition(row.definition, ignore_whitespace, strip_comments)
        key = f"{row.schema_name}.{row.table_name}.{row.type}::{definition}"
        out[key] = key
    return out


def build_table_map(rows: Iterable[TableRow]) -> SignatureMap:
    return {table_key(row.schema_name, row.table_name): table_signature(row) for row in rows}


@dataclass(frozen=True)
class IndexedSnapshot:
    modules: SignatureMap
    indexes: SignatureMap
    constraints: SignatureMap
    tables: SignatureMap


def index_snapshot(snapshot: Snapshot, ignore_whitespace: bool = False, strip_comments: bool = False) -> IndexedSnapshot:
    return IndexedSnapshot(
        modules=build_module_map(snapshot.modules, ignore_whitespace, strip_comments),
        indexes=build_index_map(snapshot.indexes),
        constraints=build_constraint_map(snapshot.constraints, ignore_whitespace, strip_comments),
        tables=build_table_map(snapshot.tables),
    )


# ---------------------------------------------------------------------------
# Key decoding, used by presenters and the script generator
# ---------------------------------------------------------------------------

def split_module_key(key: str) -> Optional[Tuple[str, str, str]]:
    """Return (schema, type, name); the name may itself contain dots."""
    parts = key.split(".")
    if len(parts) < 3:
        return None
    return parts[0], parts[1], ".".join(parts[2:])


def split_table_key(key: str) -> Tuple[str, str]:
    schema, sep, table = key.partition(".")
    if not sep:
        return "", key
    return schema, table


def index_key_object(key: str) -> Optional[str]:
    obj, sep, _sig = key.partition("::")
    return obj if sep else None


def constraint_key_object(key: str) -> Optional[Tuple[str, str]]:
    """Return ("schema.table", KIND) for a constraint key."""
    head, sep, _definition = key.partition("::")
    if not sep:
        return None
    parts = head.split(".")
    if len(parts) < 3:
        return None
    return f"{parts[0]}.{parts[1]}", parts[2]
