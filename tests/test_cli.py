"""
Tests for the command line entry point and logging setup.
"""

import json
import logging
import sys

import pytest
from unittest.mock import patch

from gitlab_insights.__main__ import main, parse_args
from gitlab_insights.logging_config import StructuredFormatter
from gitlab_insights.orchestrator import FatalStartupError

SUMMARY = {
    "stages": {"projects": "completed", "team": "restored"},
    "records": {"projects": 3},
    "api": {"failed_calls": 0},
}


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Environment and logging are isolated from the developer machine."""
    monkeypatch.setenv("GITLAB_URL", "https://gitlab.example.com")
    monkeypatch.setenv("GITLAB_TOKEN", "glpat-test")
    with patch("gitlab_insights.config.load_dotenv"), \
            patch("gitlab_insights.__main__.setup_structured_logging"):
        yield


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Flags default to off and values to None."""
        args = parse_args([])
        assert args.group is None
        assert args.days is None
        assert args.no_security is False
        assert args.core_only is False

    def test_values(self):
        """Values are parsed with their types."""
        args = parse_args(["--group", "platform", "--days", "90", "--workers", "4", "--core-only"])
        assert args.group == "platform"
        assert args.days == 90
        assert args.workers == 4
        assert args.core_only is True


class TestMain:
    """Tests for exit codes and configuration wiring."""

    def test_success(self, tmp_path):
        """A completed run exits with 0."""
        with patch("gitlab_insights.__main__.run_insights", return_value=SUMMARY) as run:
            code = main(["--out", str(tmp_path), "--days", "30", "--no-security"])

        assert code == 0
        config = run.call_args[0][0]
        assert config.lookback_days == 30
        assert config.include_security is False
        assert config.all_reports is True
        assert config.output_dir == str(tmp_path)

    def test_configuration_error(self, monkeypatch):
        """Missing settings exit with 1 before any request is made."""
        monkeypatch.delenv("GITLAB_TOKEN")
        with patch("gitlab_insights.__main__.run_insights") as run:
            assert main([]) == 1
        run.assert_not_called()

    def test_fatal_startup(self):
        """A startup failure exits with 1."""
        with patch("gitlab_insights.__main__.run_insights", side_effect=FatalStartupError("no projects")):
            assert main([]) == 1

    def test_interrupted(self):
        """Ctrl-C exits with 130."""
        with patch("gitlab_insights.__main__.run_insights", side_effect=KeyboardInterrupt):
            assert main([]) == 130

    def test_unexpected_error(self):
        """Any other failure exits with 1."""
        with patch("gitlab_insights.__main__.run_insights", side_effect=OSError("disk full")):
            assert main([]) == 1


class TestStructuredFormatter:
    """Tests for JSON log output."""

    def test_extra_fields(self):
        """Structured extras and static fields appear in the JSON line."""
        formatter = StructuredFormatter(extra_fields={"service": "gitlab-insights"})
        record = logging.LogRecord("gitlab_insights", logging.INFO, __file__, 10, "saved %s", ("team",), None)
        record.stage = "team"

        data = json.loads(formatter.format(record))

        assert data["message"] == "saved team"
        assert data["level"] == "INFO"
        assert data["stage"] == "team"
        assert data["service"] == "gitlab-insights"
        assert "status_code" not in data

    def test_exception(self):
        """Exception details are included."""
        formatter = StructuredFormatter()
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(formatter.format(record))

        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "boom"
