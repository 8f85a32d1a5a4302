from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

from deepdiff import DeepDiff

from sql_drift_tool.core.comparator import CompareSummary, type_keyword
from sql_drift_tool.core.indexer import (
    module_key,
    parse_table_signature,
    split_module_key,
    split_table_key,
    table_key,
    table_signature,
)
from sql_drift_tool.core.normalizer import mask_sql_comments
from sql_drift_tool.core.snapshot import ModuleRow, Snapshot, TableColumnRow
from sql_drift_tool.utils.logger import get_logger

logger = get_logger(__name__)


NOTHING_TO_APPLY = "-- No applicable drift detected; nothing to apply"

_LENGTH_TYPES = ("varchar", "char", "nvarchar", "nchar", "varbinary", "binary")
_UNICODE_TYPES = ("nvarchar", "nchar")
_PRECISION_TYPES = ("decimal", "numeric")
_SCALE_TYPES = ("datetime2", "time", "datetimeoffset")
_DROPPABLE = ("PROCEDURE", "FUNCTION", "VIEW")
_SCRIPTABLE = ("PROCEDURE", "VIEW", "FUNCTION", "TRIGGER")

_SIGNATURE_PART_RE = re.compile(r"root\['(\w+)'\]")
_BARE_CREATE_RE = re.compile(r"\bCREATE\b", re.IGNORECASE)


def _banner(title: str) -> List[str]:
    return [
        "-- ==============================================================================",
        f"-- {title}",
        "-- ==============================================================================",
        "",
    ]


def format_column_type(col: TableColumnRow) -> str:
    data_type = (col.data_type or "").strip().lower()
    if data_type in _LENGTH_TYPES:
        length = col.max_length
        # sys.columns stores nchar/nvarchar lengths in bytes (UTF-16 code units)
        if data_type in _UNICODE_TYPES and length > 0:
            length = length // 2
        size = "max" if length == -1 else str(length)
        return f"{data_type}({size})"
    if data_type in _PRECISION_TYPES:
        return f"{data_type}({col.precision},{col.scale})"
    if data_type in _SCALE_TYPES:
        return f"{data_type}({col.scale})"
    return data_type


def column_definition(col: TableColumnRow) -> str:
    """Render one column as it would appear in CREATE TABLE / ADD."""
    if col.computed_definition:
        return f"[{col.column_name}] AS {col.computed_definition}"
    parts = [f"[{col.column_name}]", format_column_type(col)]
    if col.is_identity:
        parts.append("IDENTITY")
    parts.append("NULL" if col.is_nullable else "NOT NULL")
    if col.default_definition:
        parts.append(f"DEFAULT {col.default_definition}")
    return " ".join(parts)


def _can_reconstruct(col: TableColumnRow) -> bool:
    return bool(col.computed_definition or (col.data_type or "").strip())


def create_or_alter(definition: str, keyword: str) -> str:
    """Rewrite the leading CREATE clause of a module to CREATE OR ALTER <keyword>.

    Applying it twice gives the same text.
    """
    cleaned = (definition or "").strip()
    # match against comment-free text so a header comment mentioning CREATE is left alone
    masked = mask_sql_comments(cleaned)
    type_pattern = r"PROC(?:EDURE)?" if keyword == "PROCEDURE" else re.escape(keyword)
    clause_re = re.compile(rf"\bCREATE\s+(?:OR\s+ALTER\s+)?{type_pattern}\b", re.IGNORECASE)
    match = clause_re.search(masked) or _BARE_CREATE_RE.search(masked)
    if match is None:
        return cleaned
    return f"{cleaned[:match.start()]}CREATE OR ALTER {keyword}{cleaned[match.end():]}"


def columns_by_table(rows: Iterable[TableColumnRow]) -> Dict[str, List[TableColumnRow]]:
    """Group column rows per table, ordered by column_id."""
    grouped: Dict[str, List[TableColumnRow]] = {}
    for row in rows:
        grouped.setdefault(table_key(row.schema_name, row.table_name), []).append(row)
    return {key: sorted(cols, key=lambda c: c.column_id) for key, cols in grouped.items()}


class ScriptGenerator:
    """Best-effort reconciliation script that moves the target toward the source.

    Sections are emitted in a fixed order: tables, optional drops, modules.
    Only non-destructive table changes are scripted (CREATE TABLE for tables
    that exist only in the source, ADD for missing columns); everything else
    becomes a review comment. The generated script is advisory and is never
    executed by the tool.

    Which side a one-sided key belongs to is read from the two snapshots, so
    the script is correct whichever way round the summary was computed. Keys
    that appear in neither snapshot fall back to their partition:
    ``missing_in_left`` counts as source-only and ``missing_in_right`` as
    target-only.
    """

    def __init__(
        self,
        summary: CompareSummary,
        source: Snapshot,
        target: Snapshot,
        include_drops: bool = False,
    ) -> None:
        self.summary = summary
        self.source = source
        self.target = target
        self.include_drops = include_drops

        self.source_modules: Dict[str, ModuleRow] = {module_key(m): m for m in source.modules}
        self.target_modules: Dict[str, ModuleRow] = {module_key(m): m for m in target.modules}
        self.source_columns = columns_by_table(source.table_columns)
        self.target_columns = columns_by_table(target.table_columns)
        self.source_table_sigs = {table_key(t.schema_name, t.table_name): table_signature(t) for t in source.tables}
        self.target_table_sigs = {table_key(t.schema_name, t.table_name): table_signature(t) for t in target.tables}

    def generate(self) -> str:
        logger.info(
            f"Generating apply script: {self.source.name} -> {self.target.name} "
            f"(include_drops={self.include_drops})"
        )
        sections: List[List[str]] = [self._generate_table_phase()]
        if self.include_drops:
            sections.append(self._generate_drop_phase())
        sections.append(self._generate_module_phase())

        body = [line for section in sections for line in section]
        if not body:
            return NOTHING_TO_APPLY

        header = [
            f"-- Apply script: reconcile {self.target.name} toward {self.source.name}",
            "-- Review every statement before running it; nothing here has been executed.",
            "",
        ]
        return "\n".join(header + body)

    # ------------------------------------------------------------------
    # Side resolution
    # ------------------------------------------------------------------

    def _split_one_sided(
        self,
        missing_in_left: Iterable[str],
        missing_in_right: Iterable[str],
        in_source: Set[str],
        in_target: Set[str],
    ) -> Tuple[List[str], List[str]]:
        """Return (source_only, target_only) keys."""
        source_only: List[str] = []
        target_only: List[str] = []
        for key, default_side in [(k, "source") for k in missing_in_left] + [(k, "target") for k in missing_in_right]:
            if key in in_source and key not in in_target:
                side = "source"
            elif key in in_target and key not in in_source:
                side = "target"
            else:
                side = default_side
            (source_only if side == "source" else target_only).append(key)
        return sorted(source_only), sorted(target_only)

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def _generate_table_phase(self) -> List[str]:
        tables = self.summary.tables
        if tables.is_empty():
            return []

        in_source = set(self.source_table_sigs) | set(self.source_columns)
        in_target = set(self.target_table_sigs) | set(self.target_columns)
        create_keys, advisory_keys = self._split_one_sided(
            tables.missing_in_left, tables.missing_in_right, in_source, in_target
        )

        lines = _banner("TABLES")
        lines.append(
            "-- Table drift detected; non-destructive additions are applied automatically; "
            "other changes remain commented."
        )
        lines.append("")

        for key in tables.changed:
            lines.extend(self._changed_table(key))
        for key in create_keys:
            lines.extend(self._create_table_statement(key))
        for key in advisory_keys:
            lines.append(f"-- Table {key} exists only in target. Decide whether to drop or keep.")
            lines.append("")
        return lines

    def _changed_table(self, key: str) -> List[str]:
        schema, table = split_table_key(key)
        lines = [f"-- TODO: Table drift detected for {schema}.{table}"]

        differing = self._differing_signature_parts(key)
        if "columns" in differing:
            lines.append(
                "--   Columns differ (type/nullability/default/identity/computed). "
                f"Review and craft ALTER TABLE for {schema}.{table}."
            )
            lines.extend(self._column_review_notes(key))
        if "indexes" in differing:
            lines.append("--   Non-PK/unique indexes differ. Consider recreating indexes to match source.")
        if "checks" in differing:
            lines.append("--   CHECK constraints differ. Align definitions as needed.")
        lines.append("")

        lines.extend(self._add_columns_statement(key))
        return lines

    def _differing_signature_parts(self, key: str) -> Set[str]:
        source_parts = parse_table_signature(self.source_table_sigs.get(key))
        target_parts = parse_table_signature(self.target_table_sigs.get(key))
        diff = DeepDiff(target_parts, source_parts)
        differing: Set[str] = set()
        for path in diff.get("values_changed", {}):
            match = _SIGNATURE_PART_RE.match(path)
            if match:
                differing.add(match.group(1))
        return differing

    def _column_review_notes(self, key: str) -> List[str]:
        """Comment lines for columns that need manual attention (never scripted)."""
        source_cols = {c.column_name.lower(): c for c in self.source_columns.get(key, [])}
        notes: List[str] = []
        for tgt in self.target_columns.get(key, []):
            src = source_cols.get(tgt.column_name.lower())
            if src is None:
                notes.append(f"--     [{tgt.column_name}] exists only in target; not dropped.")
                continue
            src_def = column_definition(src)
            tgt_def = column_definition(tgt)
            if src_def.lower() != tgt_def.lower():
                notes.append(f"--     [{src.column_name}] source: {src_def} | target: {tgt_def}")
        return notes

    def _add_columns_statement(self, key: str) -> List[str]:
        target_names = {c.column_name.lower() for c in self.target_columns.get(key, [])}
        to_add = [c for c in self.source_columns.get(key, []) if c.column_name.lower() not in target_names]
        if not to_add:
            return []

        schema, table = split_table_key(key)
        lines = [f"-- Adding {len(to_add)} column(s) to {schema}.{table}"]
        scriptable = [c for c in to_add if _can_reconstruct(c)]
        for col in to_add:
            if not _can_reconstruct(col):
                lines.append(f"-- TODO: add column [{col.column_name}] to {schema}.{table} manually (unknown type)")
        if scriptable:
            defs = ",\n    ".join(column_definition(c) for c in scriptable)
            lines.append(f"ALTER TABLE [{schema}].[{table}] ADD {defs};")
            lines.append("GO")
        lines.append("")
        return lines

    def _create_table_statement(self, key: str) -> List[str]:
        lines = [f"-- Table {key} exists only in source. Consider creating it locally."]
        columns = self.source_columns.get(key, [])
        if not columns:
            lines.append(f"-- TODO: CREATE TABLE {key} (no column metadata available)")
            lines.append("")
            return lines

        schema, table = split_table_key(key)
        col_defs: List[str] = []
        for col in columns:
            if _can_reconstruct(col):
                col_defs.append(f"  {column_definition(col)}")
            else:
                lines.append(f"-- TODO: column [{col.column_name}] has no recognisable type; add it manually")
        if not col_defs:
            lines.append(f"-- TODO: CREATE TABLE {key} (no reconstructable columns)")
            lines.append("")
            return lines

        lines.append(f"CREATE TABLE [{schema}].[{table}] (")
        lines.append(",\n".join(col_defs))
        lines.append(");")
        lines.append("GO")
        lines.append("")
        return lines

    # ------------------------------------------------------------------
    # Drops
    # ------------------------------------------------------------------

    def _generate_drop_phase(self) -> List[str]:
        modules = self.summary.modules
        _create, drop_keys = self._split_one_sided(
            modules.missing_in_left,
            modules.missing_in_right,
            set(self.source_modules),
            set(self.target_modules),
        )
        if not drop_keys:
            return []

        lines = _banner("DROPS")
        lines.append("-- Dropping objects that exist only in target")
        for key in drop_keys:
            parsed = split_module_key(key)
            if not parsed:
                lines.append(f"-- TODO: drop {key} manually")
                continue
            schema, code, name = parsed
            keyword = type_keyword(code)
            if keyword in _DROPPABLE:
                lines.append(f"DROP {keyword} IF EXISTS [{schema}].[{name}];")
            else:
                lines.append(f"-- TODO: drop {keyword} {schema}.{name} manually")
        lines.append("GO")
        lines.append("")
        return lines

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def _generate_module_phase(self) -> List[str]:
        modules = self.summary.modules
        create_keys, _drop = self._split_one_sided(
            modules.missing_in_left,
            modules.missing_in_right,
            set(self.source_modules),
            set(self.target_modules),
        )

        body: List[str] = []
        for key in modules.changed:
            body.extend(self._module_statement(key, "ALTER"))
        for key in create_keys:
            body.extend(self._module_statement(key, "CREATE"))
        if not body:
            return []
        return _banner("PROGRAMMABILITY OBJECTS") + body

    def _module_statement(self, key: str, reason: str) -> List[str]:
        row: Optional[ModuleRow] = self.source_modules.get(key)
        if row is None:
            logger.debug(f"Module {key} not present in source snapshot; skipped")
            return []
        keyword = type_keyword(row.type)
        lines = [f"-- {reason}: {row.schema_name}.{row.name} ({keyword})"]
        if keyword not in _SCRIPTABLE:
            lines.append(f"-- TODO: script {row.schema_name}.{row.name} ({row.type}) manually")
            lines.append("")
            return lines
        if not row.definition.strip():
            lines.append(f"-- TODO: definition of {row.schema_name}.{row.name} is unavailable (encrypted?); script it manually")
            lines.append("")
            return lines
        lines.append(create_or_alter(row.definition, keyword))
        lines.append("GO")
        lines.append("")
        return lines


def render_apply_script(
    summary: CompareSummary,
    source: Snapshot,
    target: Snapshot,
    include_drops: bool = False,
) -> str:
    return ScriptGenerator(summary, source, target, include_drops=include_drops).generate()
