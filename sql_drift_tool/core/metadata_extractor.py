from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from sql_drift_tool.core.database import DatabaseConnection, QueryResult
from sql_drift_tool.core.snapshot import (
    ConstraintRow,
    IndexRow,
    ModuleRow,
    Snapshot,
    TableColumnRow,
    TableRow,
)
from sql_drift_tool.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SnapshotSql:
    modules: str
    indexes: str
    constraints: str
    tables: str
    table_columns: str


def schema_list(schemas: Sequence[str]) -> str:
    """Render schema names as a quoted IN-list, doubling embedded quotes."""
    return ",".join("'{}'".format(s.replace("'", "''")) for s in schemas)


_COLUMN_SELECT = """
          s.name AS schema_name,
          t.name AS table_name,
          c.column_id,
          c.name AS column_name,
          TYPE_NAME(c.user_type_id) AS data_type,
          c.max_length,
          c.precision,
          c.scale,
          c.is_nullable,
          c.is_identity,
          OBJECT_DEFINITION(dc.object_id) AS default_definition,
          cc.definition AS computed_definition
        FROM sys.tables t
        JOIN sys.schemas s ON s.schema_id = t.schema_id
        JOIN sys.columns c ON c.object_id = t.object_id
        LEFT JOIN sys.default_constraints dc ON dc.object_id = c.default_object_id
        LEFT JOIN sys.computed_columns cc ON cc.object_id = c.object_id AND cc.column_id = c.column_id"""


def build_sql(schemas: Sequence[str]) -> SnapshotSql:
    """Build the five catalog queries, all filtered to the given schemas."""
    names = schema_list(schemas)

    modules = f"""
        SELECT s.name AS schema_name, o.name, o.type, ISNULL(sm.definition, N'') AS definition
        FROM sys.objects o
        JOIN sys.schemas s ON s.schema_id = o.schema_id
        LEFT JOIN sys.sql_modules sm ON sm.object_id = o.object_id
        WHERE s.name IN ({names})
          AND o.type IN ('P','V','FN','IF','TF','TR')
        ORDER BY s.name, o.name, o.type;
    """

    tables = f"""
        WITH cols AS (
          SELECT{_COLUMN_SELECT}
          WHERE s.name IN ({names})
        ),
        colagg AS (
          SELECT schema_name, table_name,
                 STRING_AGG(
                   CONCAT(
                     column_id, ':', column_name, ':', data_type, ':', max_length, ':', precision, ':', scale, ':',
                     is_nullable, ':', is_identity, ':', ISNULL(default_definition,''), ':', ISNULL(computed_definition,'')
                   ), '||'
                 ) WITHIN GROUP (ORDER BY column_id) AS columns
          FROM cols
          GROUP BY schema_name, table_name
        ),
        idx AS (
          SELECT s.name AS schema_name, t.name AS table_name,
                 STRING_AGG(i.name, ',') WITHIN GROUP (ORDER BY i.name) AS idxs
          FROM sys.indexes i
          JOIN sys.tables t ON t.object_id = i.object_id
          JOIN sys.schemas s ON s.schema_id = t.schema_id
          WHERE s.name IN ({names}) AND i.is_primary_key = 0 AND i.is_unique_constraint = 0 AND i.name IS NOT NULL
          GROUP BY s.name, t.name
        ),
        chk AS (
          SELECT s.name AS schema_name, t.name AS table_name,
                 STRING_AGG(c.definition, '||') WITHIN GROUP (ORDER BY c.name) AS checks
          FROM sys.check_constraints c
          JOIN sys.tables t ON t.object_id = c.parent_object_id
          JOIN sys.schemas s ON s.schema_id = t.schema_id
          WHERE s.name IN ({names})
          GROUP BY s.name, t.name
        )
        SELECT
          c.schema_name,
          c.table_name,
          c.columns,
          ISNULL(i.idxs,'') AS indexes,
          ISNULL(ch.checks,'') AS checks
        FROM colagg c
        LEFT JOIN idx i ON i.schema_name = c.schema_name AND i.table_name = c.table_name
        LEFT JOIN chk ch ON ch.schema_name = c.schema_name AND ch.table_name = c.table_name;
    """

    table_columns = f"""
        SELECT{_COLUMN_SELECT}
        WHERE s.name IN ({names});
    """

    indexes = f"""
        SELECT s.name AS schema_name,
               t.name AS table_name,
               i.name AS [index],
               i.type_desc,
               i.is_unique,
               i.is_primary_key,
               i.is_unique_constraint,
               key_cols.keys AS key_columns,
               include_cols.includes AS include_columns
        FROM sys.indexes i
          JOIN sys.tables t ON t.object_id = i.object_id
          JOIN sys.schemas s ON s.schema_id = t.schema_id
          CROSS APPLY (
            SELECT STRING_AGG(CONCAT(c.name, ' ', CASE WHEN ic.is_descending_key = 1 THEN 'DESC' ELSE 'ASC' END), ',')
                   WITHIN GROUP (ORDER BY ic.key_ordinal) AS keys
            FROM sys.index_columns ic
              JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
            WHERE ic.object_id = i.object_id
              AND ic.index_id = i.index_id
              AND ic.is_included_column = 0
          ) key_cols
          CROSS APPLY (
            SELECT STRING_AGG(c.name, ',') AS includes
            FROM sys.index_columns ic
              JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
            WHERE ic.object_id = i.object_id
              AND ic.index_id = i.index_id
              AND ic.is_included_column = 1
          ) include_cols
        WHERE s.name IN ({names})
          AND i.is_hypothetical = 0
          AND i.name IS NOT NULL
        ORDER BY s.name, t.name, i.name;
    """

    constraints = f"""
        SELECT s.name AS schema_name,
               o.name AS table_name,
               fk.name AS name,
               'FK' AS type,
               OBJECT_DEFINITION(fk.object_id) AS definition
        FROM sys.foreign_keys fk
          JOIN sys.objects o ON o.object_id = fk.parent_object_id
          JOIN sys.schemas s ON s.schema_id = o.schema_id
        WHERE s.name IN ({names})
        UNION ALL
        SELECT s.name, t.name, kc.name, kc.type_desc, OBJECT_DEFINITION(kc.object_id)
        FROM sys.key_constraints kc
          JOIN sys.tables t ON t.object_id = kc.parent_object_id
          JOIN sys.schemas s ON s.schema_id = t.schema_id
        WHERE s.name IN ({names})
        UNION ALL
        SELECT s.name, t.name, c.name, 'CHECK', OBJECT_DEFINITION(c.object_id)
        FROM sys.check_constraints c
          JOIN sys.tables t ON t.object_id = c.parent_object_id
          JOIN sys.schemas s ON s.schema_id = t.schema_id
        WHERE s.name IN ({names})
        UNION ALL
        SELECT s.name, t.name, d.name, 'DEFAULT', OBJECT_DEFINITION(d.object_id)
        FROM sys.default_constraints d
          JOIN sys.tables t ON t.object_id = d.parent_object_id
          JOIN sys.schemas s ON s.schema_id = t.schema_id
        WHERE s.name IN ({names})
        ORDER BY schema_name, table_name, name;
    """

    return SnapshotSql(
        modules=modules,
        indexes=indexes,
        constraints=constraints,
        tables=tables,
        table_columns=table_columns,
    )


# Cell coercion. A missing column or NULL reads as the empty value.

def get_text(row: Dict[str, Any], column: str) -> str:
    value = row.get(column)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def get_int(row: Dict[str, Any], column: str) -> int:
    value = row.get(column)
    if value is None:
        return 0
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def get_bool(row: Dict[str, Any], column: str) -> bool:
    value = row.get(column)
    if value is None:
        return False
    if isinstance(value, str):
        return value in ("1", "true", "True", "TRUE")
    return bool(value)


def map_modules(result: QueryResult) -> List[ModuleRow]:
    return [
        ModuleRow(
            schema_name=get_text(r, "schema_name"),
            name=get_text(r, "name"),
            type=get_text(r, "type").strip(),
            definition=get_text(r, "definition"),
        )
        for r in result.as_dicts()
    ]


def map_indexes(result: QueryResult) -> List[IndexRow]:
    return [
        IndexRow(
            schema_name=get_text(r, "schema_name"),
            table_name=get_text(r, "table_name"),
            type=get_text(r, "type_desc"),
            is_unique=get_bool(r, "is_unique"),
            is_primary_key=get_bool(r, "is_primary_key"),
            is_unique_constraint=get_bool(r, "is_unique_constraint"),
            key_columns=get_text(r, "key_columns"),
            include_columns=get_text(r, "include_columns"),
        )
        for r in result.as_dicts()
    ]


def map_constraints(result: QueryResult) -> List[ConstraintRow]:
    return [
        ConstraintRow(
            schema_name=get_text(r, "schema_name"),
            table_name=get_text(r, "table_name"),
            name=get_text(r, "name"),
            type=get_text(r, "type"),
            definition=get_text(r, "definition"),
        )
        for r in result.as_dicts()
    ]


def map_tables(result: QueryResult) -> List[TableRow]:
    return [
        TableRow(
            schema_name=get_text(r, "schema_name"),
            table_name=get_text(r, "table_name"),
            columns=get_text(r, "columns"),
            indexes=get_text(r, "indexes"),
            checks=get_text(r, "checks"),
        )
        for r in result.as_dicts()
    ]


def map_table_columns(result: QueryResult) -> List[TableColumnRow]:
    return [
        TableColumnRow(
            schema_name=get_text(r, "schema_name"),
            table_name=get_text(r, "table_name"),
            column_id=get_int(r, "column_id"),
            column_name=get_text(r, "column_name"),
            data_type=get_text(r, "data_type"),
            max_length=get_int(r, "max_length"),
            precision=get_int(r, "precision"),
            scale=get_int(r, "scale"),
            is_nullable=get_bool(r, "is_nullable"),
            is_identity=get_bool(r, "is_identity"),
            default_definition=get_text(r, "default_definition"),
            computed_definition=get_text(r, "computed_definition"),
        )
        for r in result.as_dicts()
    ]


class MetadataExtractor:
    """Pulls the catalog metadata needed for drift comparison."""

    def __init__(self, connection: DatabaseConnection) -> None:
        self.connection = connection

    def extract(
        self,
        name: str,
        schemas: Sequence[str],
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> Snapshot:
        """Run all catalog queries over one connection and build a Snapshot."""
        logger.info(f"Capturing snapshot '{name}' for schemas {list(schemas)}")
        sql = build_sql(schemas)

        def step(message: str, query: str) -> QueryResult:
            if progress_callback:
                progress_callback(f"[{name}] {message}")
            return self.connection.execute_query(query)

        with self.connection.session():
            modules = map_modules(step("Extracting programmable objects...", sql.modules))
            indexes = map_indexes(step("Extracting indexes...", sql.indexes))
            constraints = map_constraints(step("Extracting constraints...", sql.constraints))
            tables = map_tables(step("Extracting table structures...", sql.tables))
            table_columns = map_table_columns(step("Extracting columns...", sql.table_columns))

        logger.info(
            f"Snapshot '{name}' complete: {len(modules)} modules, {len(tables)} tables, "
            f"{len(indexes)} indexes, {len(constraints)} constraints, {len(table_columns)} columns"
        )
        return Snapshot(
            name=name,
            modules=modules,
            indexes=indexes,
            constraints=constraints,
            tables=tables,
            table_columns=table_columns,
        )


async def fetch_snapshot(name: str, settings: Any, schemas: Sequence[str]) -> Snapshot:
    """Capture a snapshot without blocking the event loop.

    pyodbc calls are blocking, so extraction runs on a worker thread.
    """
    extractor = MetadataExtractor(DatabaseConnection.from_settings(settings))
    return await asyncio.to_thread(extractor.extract, name, list(schemas), logger.debug)
