import json
import os
import sys

import pytest

# Ensure project root is on sys.path so "sql_drift_tool" package is importable
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from sql_drift_tool.cli.compare_cli import build_parser, main, options_from_args
from sql_drift_tool.core.errors import ConfigError


def _options(*argv):
    return options_from_args(build_parser().parse_args(list(argv)))


class FakeOrchestrator:
    def __init__(self, result=0, error=None):
        self.result = result
        self.error = error
        self.options = None

    def __call__(self, options):
        self.options = options
        return self

    def run(self):
        if self.error is not None:
            raise self.error
        return self.result


def test_apply_script_forms():
    assert _options("--target", "prod").apply_script is False

    bare = _options("--target", "prod", "--apply-script")
    assert bare.apply_script is True
    assert bare.apply_path is None

    dash = _options("--target", "prod", "--apply-script", "-")
    assert dash.apply_path == "-"


def test_profile_alias_and_overrides():
    opts = _options("--profile", "staging", "--target", "prod", "--server", "db01", "--port", "1500", "--timeout", "5000")
    assert opts.source_profile == "staging"
    assert opts.target_profile == "prod"
    assert opts.overrides.server == "db01"
    assert opts.overrides.port == 1500
    assert opts.overrides.timeout_ms == 5000
    assert opts.overrides.profile is None


def test_schemas_are_split():
    assert _options("--target", "p", "--schemas", "dbo, web").schemas == ["dbo", " web"]
    assert _options("--target", "p").schemas is None


@pytest.mark.parametrize(
    "argv, expected",
    [
        (["--json"], "json"),
        (["--markdown"], "markdown"),
        (["--format", "markdown"], "markdown"),
        (["--pretty"], "pretty"),
        ([], None),
    ],
)
def test_output_format(argv, expected):
    assert _options("--target", "p", *argv).output_format == expected


def test_negative_context_is_clamped():
    assert _options("--target", "p", "--context", "-2").context == 0


def test_exit_code_comes_from_orchestrator():
    fake = FakeOrchestrator(result=3)
    assert main(["--source", "a", "--target", "b", "--summary"], orchestrator_factory=fake) == 3
    assert fake.options.summary is True


def test_tool_error_reports_and_exits_1(capsys):
    fake = FakeOrchestrator(error=ConfigError("Profile 'qa' not found"))
    assert main(["--target", "qa"], orchestrator_factory=fake) == 1

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Error: Profile 'qa' not found" in captured.err


def test_json_error_document(capsys):
    fake = FakeOrchestrator(error=ConfigError("bad config"))
    assert main(["--target", "qa", "--json"], orchestrator_factory=fake) == 1

    document = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert document == {"error": {"message": "bad config", "kind": "Config"}}


def test_unexpected_error_exits_1(capsys):
    fake = FakeOrchestrator(error=RuntimeError("boom"))
    assert main(["--target", "b"], orchestrator_factory=fake) == 1
    assert "Error: boom" in capsys.readouterr().err


def test_format_json_errors_are_json(capsys):
    fake = FakeOrchestrator(error=ConfigError("bad config"))
    assert main(["--target", "qa", "--format", "json"], orchestrator_factory=fake) == 1

    document = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert document["error"]["kind"] == "Config"
