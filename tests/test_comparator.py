"""Unit tests for the keyed three-way diff and summaries."""
from __future__ import annotations

import sys
import unittest
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sql_drift_tool.core.comparator import (
    STATUS,
    CompareSummary,
    DiffSet,
    count_rows,
    diff_maps,
    drift_counts,
    drift_rows,
    has_drift,
    summarize,
    type_keyword,
)
from sql_drift_tool.core.snapshot import ConstraintRow, IndexRow, ModuleRow, Snapshot, TableRow


def make_snapshot(name="src", modules=(), indexes=(), constraints=(), tables=()):
    return Snapshot(name=name, modules=modules, indexes=indexes, constraints=constraints, tables=tables)


class TestDiffMaps(unittest.TestCase):
    """Test the classification rule of diff_maps."""

    def test_partitions(self):
        left = {"a": "1", "b": "2", "c": "3"}
        right = {"b": "2", "c": "changed", "d": "4"}
        diff = diff_maps(left, right)

        self.assertEqual(diff.changed, ["c"])
        self.assertEqual(diff.missing_in_right, ["a"])
        self.assertEqual(diff.missing_in_left, ["d"])

    def test_partitions_are_disjoint_and_exhaustive(self):
        left = {f"k{i}": str(i) for i in range(0, 20)}
        right = {f"k{i}": str(i % 3) for i in range(10, 30)}
        diff = diff_maps(left, right)

        changed, mir, mil = set(diff.changed), set(diff.missing_in_right), set(diff.missing_in_left)
        self.assertFalse(changed & mir)
        self.assertFalse(changed & mil)
        self.assertFalse(mir & mil)

        equal = {k for k in set(left) & set(right) if left[k] == right[k]}
        self.assertEqual(changed | mir | mil | equal, set(left) | set(right))

    def test_lists_are_sorted(self):
        diff = diff_maps({"z": "1", "a": "1", "m": "1"}, {})
        self.assertEqual(diff.missing_in_right, ["a", "m", "z"])

    def test_reflexive(self):
        m = {"x": "1", "y": "2"}
        self.assertTrue(diff_maps(m, dict(m)).is_empty())
        self.assertTrue(diff_maps({}, {}).is_empty())

    def test_to_dict_uses_camel_case(self):
        diff = DiffSet(changed=["a"], missing_in_right=["b"], missing_in_left=["c"])
        self.assertEqual(diff.to_dict(), {"changed": ["a"], "missingInRight": ["b"], "missingInLeft": ["c"]})


class TestSummarize(unittest.TestCase):
    """Test summarize / has_drift over whole snapshots."""

    def setUp(self):
        self.snapshot = make_snapshot(
            modules=[ModuleRow("dbo", "Foo", "P", "CREATE PROC Foo AS SELECT 1")],
            indexes=[IndexRow("dbo", "T", "NONCLUSTERED", False, False, False, "Name ASC", "")],
            constraints=[ConstraintRow("dbo", "T", "CK_T", "CHECK", "([Id]>(0))")],
            tables=[TableRow("dbo", "T", "1:Id:int", "IX_T_Name", "([Id]>(0))")],
        )

    def test_snapshot_against_itself_has_no_drift(self):
        for iw in (False, True):
            for sc in (False, True):
                summary = summarize(self.snapshot, self.snapshot, iw, sc)
                self.assertFalse(has_drift(summary))

    def test_source_only_module_is_missing_in_right(self):
        source = make_snapshot("staging", modules=[ModuleRow("dbo", "Foo", "Procedure", "CREATE PROC Foo AS SELECT 1")])
        target = make_snapshot("prod")
        summary = summarize(source, target)

        self.assertEqual(summary.modules.missing_in_right, ["dbo.Procedure.Foo"])
        self.assertEqual(summary.modules.missing_in_left, [])
        self.assertTrue(has_drift(summary))

    def test_trailing_comment_ignored_with_both_flags(self):
        source = make_snapshot(modules=[ModuleRow("dbo", "Bar", "V", "CREATE VIEW Bar AS\nSELECT 1 AS x\n")])
        target = make_snapshot(
            "tgt", modules=[ModuleRow("dbo", "Bar", "V", "CREATE VIEW Bar AS\r\nSELECT 1 AS x -- legacy\r\n\r\n\r\n")]
        )

        strict = summarize(source, target)
        self.assertEqual(strict.modules.changed, ["dbo.V.Bar"])

        relaxed = summarize(source, target, ignore_whitespace=True, strip_comments=True)
        self.assertFalse(has_drift(relaxed))

    def test_changed_index_appears_as_pair(self):
        source = make_snapshot(indexes=[IndexRow("dbo", "T", "NONCLUSTERED", False, False, False, "Name ASC", "")])
        target = make_snapshot(indexes=[IndexRow("dbo", "T", "NONCLUSTERED", True, False, False, "Name ASC", "")])
        summary = summarize(source, target)

        self.assertEqual(summary.indexes.changed, [])
        self.assertEqual(len(summary.indexes.missing_in_right), 1)
        self.assertEqual(len(summary.indexes.missing_in_left), 1)

    def test_changed_table_signature(self):
        source = make_snapshot(tables=[TableRow("dbo", "T", "1:Id:int||2:Note:nvarchar", "", "")])
        target = make_snapshot(tables=[TableRow("dbo", "T", "1:Id:int", "", "")])
        summary = summarize(source, target)
        self.assertEqual(summary.tables.changed, ["dbo.T"])


class TestPresentationHelpers(unittest.TestCase):
    """Test helpers that flatten a summary for display."""

    def setUp(self):
        self.summary = CompareSummary(
            modules=DiffSet(changed=["dbo.P.Foo"], missing_in_right=["web.V.Names"], missing_in_left=["dbo.TR.trg"]),
            indexes=DiffSet(missing_in_left=['dbo.T::{"type":"NONCLUSTERED"}']),
            constraints=DiffSet(missing_in_right=["dbo.T.CHECK::([Id]>(0))"]),
            tables=DiffSet(changed=["dbo.T"]),
        )

    def test_type_keyword(self):
        self.assertEqual(type_keyword("P"), "PROCEDURE")
        self.assertEqual(type_keyword("Procedure"), "PROCEDURE")
        self.assertEqual(type_keyword("V"), "VIEW")
        for code in ("FN", "IF", "TF", "Function"):
            self.assertEqual(type_keyword(code), "FUNCTION")
        self.assertEqual(type_keyword("TR"), "TRIGGER")
        self.assertEqual(type_keyword("SO"), "OBJECT")
        self.assertEqual(type_keyword(""), "OBJECT")

    def test_drift_rows(self):
        rows = drift_rows(self.summary)
        self.assertIn(("dbo.Foo", "PROCEDURE", STATUS["CHANGED"]), rows)
        self.assertIn(("web.Names", "VIEW", "Only in source"), rows)
        self.assertIn(("dbo.trg", "TRIGGER", "Only in target"), rows)
        self.assertIn(("dbo.T", "Table", "Changed"), rows)
        self.assertIn(("dbo.T", "Index", "Only in target"), rows)
        self.assertIn(("dbo.T", "CHECK", "Only in source"), rows)
        self.assertEqual(len(rows), 6)

    def test_count_rows_order(self):
        rows = count_rows(self.summary)
        self.assertEqual([r[0] for r in rows], ["Modules", "Tables", "Indexes", "Constraints"])
        self.assertEqual(rows[0], ["Modules", 1, 1, 1])
        self.assertEqual(rows[1], ["Tables", 1, 0, 0])

    def test_drift_counts(self):
        self.assertEqual(drift_counts(self.summary), {"modules": 3, "indexes": 1, "constraints": 1, "tables": 1})

    def test_summary_to_dict_shape(self):
        data = self.summary.to_dict()
        self.assertEqual(set(data), {"modules", "indexes", "constraints", "tables"})
        self.assertEqual(data["modules"]["missingInRight"], ["web.V.Names"])


if __name__ == "__main__":
    unittest.main()
