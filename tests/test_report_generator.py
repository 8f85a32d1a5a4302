"""Unit tests for summary rendering."""
from __future__ import annotations

import json
import sys
import unittest
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sql_drift_tool.core.comparator import CompareSummary, DiffSet
from sql_drift_tool.core.errors import QueryError
from sql_drift_tool.utils.report_generator import (
    emit_json,
    error_document,
    markdown_summary,
    markdown_table,
    pretty_summary,
    render_summary,
    render_tables,
)


class TestRenderSummary(unittest.TestCase):
    def setUp(self):
        self.summary = CompareSummary(
            modules=DiffSet(changed=["dbo.P.Foo"], missing_in_right=["dbo.V.Bar", "dbo.V.Baz"]),
            tables=DiffSet(missing_in_left=["dbo.Legacy"]),
        )

    def test_pretty_summary(self):
        text = pretty_summary("staging", "prod", self.summary)
        lines = text.splitlines()

        self.assertEqual(lines[0], "=== Modules ===")
        self.assertEqual(lines[1], "changed: 1")
        self.assertEqual(lines[2], "  dbo.P.Foo")
        self.assertEqual(lines[3], "missing in prod: 2")
        self.assertEqual(lines[4], "  dbo.V.Bar, dbo.V.Baz")
        self.assertEqual(lines[5], "missing in staging: 0")
        self.assertIn("=== Tables ===", lines)
        self.assertIn("  dbo.Legacy", lines)

    def test_markdown_summary(self):
        text = markdown_summary("staging", "prod", self.summary)
        self.assertTrue(text.startswith("## Drift Summary: staging vs prod"))
        self.assertIn("### Modules\n- changed: 1\n  - `dbo.P.Foo`", text)
        self.assertIn("  - `dbo.V.Bar`, `dbo.V.Baz`", text)
        self.assertIn("### Constraints", text)

    def test_markdown_tables(self):
        text = render_tables(self.summary, "markdown")
        self.assertIn("| Type | Changed | Only in source | Only in target |", text)
        self.assertIn("| Modules | 1 | 2 | 0 |", text)
        self.assertIn("| Object | Kind | Status |", text)
        self.assertIn("| dbo.Legacy | Table | Only in target |", text)

    def test_markdown_cells_are_escaped(self):
        self.assertIn("a\\|b", markdown_table(["h"], [["a|b"]]))

    def test_rich_tables_render_plain_text(self):
        text = render_tables(self.summary, "pretty")
        self.assertIn("Only in source", text)
        self.assertIn("dbo.Foo", text)
        self.assertIn("PROCEDURE", text)
        self.assertNotIn("\x1b[", text)

    def test_no_drift_table_only_has_counts(self):
        text = render_tables(CompareSummary(), "markdown")
        self.assertNotIn("| Object |", text)

    def test_json_mode(self):
        data = json.loads(render_summary(self.summary, "staging", "prod", fmt="json"))
        self.assertEqual(data["modules"]["missingInRight"], ["dbo.V.Bar", "dbo.V.Baz"])
        self.assertEqual(data["indexes"], {"changed": [], "missingInRight": [], "missingInLeft": []})

    def test_compact_dispatch(self):
        self.assertTrue(render_summary(self.summary, "a", "b", compact=True).startswith("=== Modules ==="))
        self.assertTrue(render_summary(self.summary, "a", "b", "markdown", compact=True).startswith("## Drift Summary"))

    def test_emit_json_compact(self):
        self.assertEqual(emit_json({"a": [1]}, pretty=False), '{"a":[1]}')
        self.assertEqual(emit_json({"a": 1}), '{\n  "a": 1\n}')

    def test_error_document(self):
        self.assertEqual(
            error_document(QueryError("permission denied")),
            {"error": {"message": "permission denied", "kind": "Query"}},
        )
        self.assertEqual(error_document(RuntimeError("boom"))["error"]["kind"], "Internal")


if __name__ == "__main__":
    unittest.main()
