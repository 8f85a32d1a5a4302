"""Unit tests for single-object diffs."""
from __future__ import annotations

import sys
import unittest
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sql_drift_tool.core.diff_generator import (
    STATUS_DIFFERS,
    STATUS_NOT_FOUND,
    STATUS_SAME,
    DiffGenerator,
    diff_object,
    find_module,
)
from sql_drift_tool.core.snapshot import ModuleRow, Snapshot


class TestFindModule(unittest.TestCase):
    def setUp(self):
        self.snapshot = Snapshot(
            name="src",
            modules=[
                ModuleRow("web", "GetTotal", "P", "CREATE PROC web.GetTotal AS SELECT 2"),
                ModuleRow("dbo", "GetTotal", "P", "CREATE PROC dbo.GetTotal AS SELECT 1"),
            ],
        )

    def test_qualified_name_is_exact(self):
        self.assertEqual(find_module(self.snapshot, "DBO.gettotal").schema_name, "dbo")

    def test_bare_name_takes_first_match(self):
        self.assertEqual(find_module(self.snapshot, "gettotal").schema_name, "web")

    def test_unknown(self):
        self.assertIsNone(find_module(self.snapshot, "dbo.Nope"))


class TestDiffObject(unittest.TestCase):
    """Test the outcomes of diff_object and their exit codes."""

    def test_not_found(self):
        result = diff_object(Snapshot(name="a"), Snapshot(name="b"), "dbo.Missing")
        self.assertEqual(result.status, STATUS_NOT_FOUND)
        self.assertEqual(result.exit_code, 4)
        self.assertEqual(result.text, "Object 'dbo.Missing' not found in either side.")

    def test_same_after_normalization(self):
        left = Snapshot(name="a", modules=[ModuleRow("dbo", "V", "V", "CREATE VIEW V AS\nSELECT 1")])
        right = Snapshot(name="b", modules=[ModuleRow("dbo", "V", "V", "CREATE VIEW V AS  SELECT 1 -- note\r\n")])

        result = diff_object(left, right, "dbo.V", ignore_whitespace=True, strip_comments=True)
        self.assertEqual(result.status, STATUS_SAME)
        self.assertEqual(result.exit_code, 0)
        self.assertIn("No substantive drift for dbo.V", result.text)

        strict = diff_object(left, right, "dbo.V")
        self.assertEqual(strict.status, STATUS_DIFFERS)

    def test_unified_diff_headers(self):
        left = Snapshot(name="staging", modules=[ModuleRow("dbo", "P1", "P", "CREATE PROC P1\r\nAS\r\nSELECT 1\r\n")])
        right = Snapshot(name="prod", modules=[ModuleRow("dbo", "P1", "P", "CREATE PROC P1\nAS\nSELECT 2\n")])

        result = diff_object(left, right, "P1")
        self.assertEqual(result.exit_code, 3)
        lines = result.text.splitlines()
        self.assertEqual(lines[0], "--- staging:dbo.P1.P")
        self.assertEqual(lines[1], "+++ prod:dbo.P1.P")
        self.assertIn("-SELECT 1", lines)
        self.assertIn("+SELECT 2", lines)
        # CRLF differences alone are not reported
        self.assertNotIn("-AS", lines)

    def test_only_in_source(self):
        body = "CREATE PROC dbo.GetTotal AS SELECT SUM(x) FROM t"
        left = Snapshot(name="staging", modules=[ModuleRow("dbo", "GetTotal", "P", body)])
        right = Snapshot(name="prod")

        result = diff_object(left, right, "dbo.GetTotal")
        self.assertEqual(result.status, STATUS_DIFFERS)
        self.assertEqual(result.exit_code, 3)
        self.assertEqual(result.text, f"Left: dbo.GetTotal\n{body}\n---\nRight: missing\n")

    def test_context_radius(self):
        left_body = "\n".join(f"line {i}" for i in range(30))
        right_body = left_body.replace("line 15", "line fifteen")
        left = Snapshot(name="a", modules=[ModuleRow("dbo", "P", "P", left_body)])
        right = Snapshot(name="b", modules=[ModuleRow("dbo", "P", "P", right_body)])

        narrow = diff_object(left, right, "P", context=1).text.splitlines()
        wide = diff_object(left, right, "P", context=5).text.splitlines()
        self.assertEqual(narrow[2], "@@ -15,3 +15,3 @@")
        self.assertEqual(wide[2], "@@ -11,11 +11,11 @@")


class TestDiffGenerator(unittest.TestCase):
    def test_identical_text_gives_empty_diff(self):
        self.assertEqual(DiffGenerator("a\nb", "a\nb").unified("l", "r"), "")


if __name__ == "__main__":
    unittest.main()
