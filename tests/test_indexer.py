import json
import os
import sys

# Ensure project root is on sys.path so "sql_drift_tool" package is importable
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from sql_drift_tool.core.indexer import (
    constraint_key_object,
    index_key_object,
    index_signature,
    index_snapshot,
    parse_table_signature,
    split_module_key,
    split_table_key,
    table_signature,
)
from sql_drift_tool.core.snapshot import ConstraintRow, IndexRow, ModuleRow, Snapshot, TableRow


def _snapshot():
    return Snapshot(
        name="src",
        modules=[ModuleRow("dbo", "Foo", "P", "  CREATE PROC Foo AS SELECT 1  ")],
        indexes=[IndexRow("dbo", "Orders", "NONCLUSTERED", True, False, False, "CustomerId ASC", "Total")],
        constraints=[ConstraintRow("dbo", "Orders", "CK_Orders_Total", "CHECK", "([Total]  >= (0))")],
        tables=[TableRow("dbo", "Orders", "1:Id:int", "IX_Orders_Customer", "([Total]>=(0))")],
    )


def test_module_map_keys_and_normalized_values():
    indexed = index_snapshot(_snapshot())
    assert indexed.modules == {"dbo.P.Foo": "CREATE PROC Foo AS SELECT 1"}


def test_index_key_embeds_signature():
    row = _snapshot().indexes[0]
    indexed = index_snapshot(_snapshot())
    sig = index_signature(row)

    assert list(indexed.indexes) == [f"dbo.Orders::{sig}"]
    assert json.loads(sig) == {
        "type": "NONCLUSTERED",
        "unique": True,
        "primaryKey": False,
        "uniqueConstraint": False,
        "keyColumns": "CustomerId ASC",
        "includeColumns": "Total",
    }


def test_constraint_key_uses_normalized_definition():
    indexed = index_snapshot(_snapshot(), ignore_whitespace=True)
    assert list(indexed.constraints) == ["dbo.Orders.CHECK::([Total] >= (0))"]


def test_table_signature_round_trips_parts():
    row = _snapshot().tables[0]
    parts = parse_table_signature(table_signature(row))
    assert parts == {"columns": "1:Id:int", "indexes": "IX_Orders_Customer", "checks": "([Total]>=(0))"}


def test_parse_table_signature_tolerates_garbage():
    empty = {"columns": "", "indexes": "", "checks": ""}
    assert parse_table_signature(None) == empty
    assert parse_table_signature("not json") == empty
    assert parse_table_signature("[1, 2]") == empty


def test_key_decoders():
    assert split_module_key("dbo.P.Foo") == ("dbo", "P", "Foo")
    assert split_module_key("dbo.P.Foo.Bar") == ("dbo", "P", "Foo.Bar")
    assert split_module_key("dbo.Foo") is None
    assert split_table_key("sales.Orders") == ("sales", "Orders")
    assert index_key_object('dbo.T::{"type":"X"}') == "dbo.T"
    assert index_key_object("dbo.T") is None
    assert constraint_key_object("dbo.T.FK::FOREIGN KEY ([A]) REFERENCES x.y") == ("dbo.T", "FK")
    assert constraint_key_object("dbo.T::x") is None
