"""
Tests for the CLI interface.
"""

import os
import tempfile

import pytest
import structlog
from typer.testing import CliRunner

from tier_router.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app
from tier_router.config.loader import CONFIG_PATH_ENV, DATA_PATH_ENV
from tier_router.core.ledger import UsageLedger
from tier_router.storage.db import DEFAULT_DB_PATH

runner = CliRunner()


@pytest.fixture
def data_env():
    """Point the CLI at a temporary data directory and the built-in config."""
    with tempfile.TemporaryDirectory() as temp_dir:
        env = {
            DATA_PATH_ENV: os.path.join(temp_dir, "data"),
            CONFIG_PATH_ENV: os.path.join(temp_dir, "no-config"),
        }
        yield env
    structlog.reset_defaults()


class TestCLI:
    """Test CLI commands."""

    def test_no_command(self, data_env):
        result = runner.invoke(app, [], env=data_env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init_creates_database(self, data_env):
        result = runner.invoke(app, ["init"], env=data_env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(os.path.join(data_env[DATA_PATH_ENV], DEFAULT_DB_PATH))

    def test_status(self, data_env):
        result = runner.invoke(app, ["status"], env=data_env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Strategy:     2-tier" in result.output
        assert "Current tier: primary" in result.output
        assert "$0.00 / $100.00" in result.output

    def test_status_detailed_shows_recorded_usage(self, data_env):
        record = runner.invoke(
            app,
            ["record", "--tier", "critical", "--input-tokens", "1000", "--output-tokens", "1000"],
            env=data_env,
        )
        assert record.exit_code == EXIT_CODE_PASS

        result = runner.invoke(app, ["status", "--detailed"], env=data_env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage by tier" in result.output
        assert "critical" in result.output
        assert "anthropic:opus" in result.output

    def test_classify(self, data_env):
        result = runner.invoke(
            app, ["classify", "Review this architecture and propose improvements"], env=data_env
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "critical" in result.output
        assert "anthropic:opus" in result.output

    def test_classify_three_tier(self, data_env):
        result = runner.invoke(
            app, ["classify", "implement pagination", "--strategy", "3-tier"], env=data_env
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "tier2" in result.output

    def test_classify_invalid_force_tier(self, data_env):
        result = runner.invoke(app, ["classify", "anything", "--force-tier", "tier3"], env=data_env)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid tier" in result.output

    def test_classify_invalid_strategy(self, data_env):
        result = runner.invoke(app, ["classify", "anything", "--strategy", "7-tier"], env=data_env)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid strategy" in result.output

    def test_record_writes_ledger(self, data_env):
        result = runner.invoke(
            app,
            [
                "record",
                "--tier", "primary",
                "--input-tokens", "1000",
                "--output-tokens", "500",
                "--summary", "nightly report",
            ],
            env=data_env,
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "$0.010500" in result.output

        ledger = UsageLedger(os.path.join(data_env[DATA_PATH_ENV], DEFAULT_DB_PATH))
        records = ledger.recent_records()
        assert len(records) == 1
        assert records[0].model == "sonnet"
        assert records[0].task_summary == "nightly report"

    def test_record_with_model_ref(self, data_env):
        result = runner.invoke(
            app,
            [
                "record",
                "--tier", "primary",
                "--input-tokens", "1000000",
                "--output-tokens", "0",
                "--model-ref", "anthropic:haiku",
            ],
            env=data_env,
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "$0.250000" in result.output

    def test_record_unknown_model(self, data_env):
        result = runner.invoke(
            app,
            [
                "record",
                "--tier", "primary",
                "--input-tokens", "10",
                "--output-tokens", "10",
                "--model-ref", "openai:gpt-4",
            ],
            env=data_env,
        )

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Provider not found" in result.output

    def test_record_negative_tokens(self, data_env):
        result = runner.invoke(
            app,
            ["record", "--tier", "primary", "--input-tokens", "-5", "--output-tokens", "10"],
            env=data_env,
        )

        assert result.exit_code == EXIT_CODE_FAIL

    def test_record_invalid_tier(self, data_env):
        result = runner.invoke(
            app,
            ["record", "--tier", "tier2", "--input-tokens", "5", "--output-tokens", "10"],
            env=data_env,
        )

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid tier" in result.output

    def test_memory(self, data_env):
        result = runner.invoke(app, ["memory"], env=data_env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Entries:      0" in result.output
