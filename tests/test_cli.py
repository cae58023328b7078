"""
Tests for the CLI interface.
"""
import os

import pytest
import yaml
from typer.testing import CliRunner

from usage_lens.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL

runner = CliRunner()


@pytest.fixture
def db_path(temp_dir):
    """Path for a database the CLI creates."""
    return os.path.join(temp_dir, "usage.db")


@pytest.fixture
def seeded_db(db_path):
    """A database filled with demo data."""
    result = runner.invoke(app, ["--db", db_path, "seed-demo", "--days", "7"])
    assert result.exit_code == EXIT_CODE_PASS
    return db_path


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        """Test the bare invocation."""
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init_creates_database(self, db_path):
        """Test init creates the database file."""
        result = runner.invoke(app, ["--db", db_path, "init"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(db_path)

    def test_seed_demo(self, db_path):
        """Test seed-demo reports the inserted messages."""
        result = runner.invoke(app, ["--db", db_path, "seed-demo", "--days", "3", "--no-rollups"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Inserted" in result.output

    def test_seed_demo_rejects_non_positive_days(self, db_path):
        """Test seed-demo validates --days."""
        result = runner.invoke(app, ["--db", db_path, "seed-demo", "--days", "0"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "--days must be positive" in result.output

    def test_missing_database_is_not_an_error(self, db_path):
        """Test that querying before init explains how to start."""
        result = runner.invoke(app, ["--db", db_path, "overview"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage data found" in result.output
        assert not os.path.exists(db_path)

    def test_overview_on_seeded_database(self, seeded_db):
        """Test overview renders a totals table."""
        result = runner.invoke(app, ["--db", seeded_db, "overview", "--range", "last30d"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Overview" in result.output
        assert "Messages" in result.output
        assert "Cost" in result.output

    def test_invalid_range(self, seeded_db):
        """Test that an unknown range exits with failure."""
        result = runner.invoke(app, ["--db", seeded_db, "overview", "--range", "fortnight"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid range" in result.output

    def test_invalid_metric(self, seeded_db):
        """Test that an unknown trend metric exits with failure."""
        result = runner.invoke(app, ["--db", seeded_db, "trend", "--metric", "bogus"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid metric" in result.output

    def test_trend(self, seeded_db):
        """Test trend renders one row per bucket."""
        result = runner.invoke(app, ["--db", seeded_db, "trend", "--range", "today", "--granularity", "hourly"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "0:00" in result.output
        assert "23:00" in result.output

    @pytest.mark.parametrize("command", [
        ["top-projects", "--range", "last30d"],
        ["top-models", "--limit", "2"],
        ["anomalies"],
        ["rhythm"],
        ["model-lens", "--group-by", "provider"],
    ])
    def test_report_commands(self, seeded_db, command):
        """Test that every report command succeeds on demo data."""
        result = runner.invoke(app, ["--db", seeded_db, *command])
        assert result.exit_code == EXIT_CODE_PASS

    def test_top_projects_rejects_non_positive_limit(self, seeded_db):
        """Test that --limit must be positive."""
        result = runner.invoke(app, ["--db", seeded_db, "top-projects", "--limit", "0"])
        assert result.exit_code == EXIT_CODE_FAIL

    def test_invalid_config_key(self, temp_dir):
        """Test that configuration errors exit with failure."""
        config_path = os.path.join(temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({"budget": {"daily": 10}}, f)

        result = runner.invoke(app, ["--config", config_path, "overview"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown configuration keys" in result.output

    def test_missing_config_file(self, temp_dir):
        """Test that a missing config file exits with failure."""
        result = runner.invoke(app, ["--config", os.path.join(temp_dir, "nope.yaml"), "overview"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output

    def test_invalid_log_level(self, db_path):
        """Test that an unknown log level exits with failure."""
        result = runner.invoke(app, ["--db", db_path, "--log-level", "chatty", "overview"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid log level" in result.output
