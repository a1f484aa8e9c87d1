"""Tests for the command line entry point."""

from pathlib import Path

import pytest
from click.testing import CliRunner
from openpyxl import load_workbook

from bankrecon.main import main


EXAMPLES_DIR = Path(__file__).parent.parent / "examples"


@pytest.fixture
def runner():
    return CliRunner()


def run(runner, *args):
    return runner.invoke(main, [
        "--statement", str(EXAMPLES_DIR / "statement.sta"),
        "--targets", str(EXAMPLES_DIR / "open_invoices.csv"),
        *args,
    ])


class TestMain:

    def test_reconciles_example(self, runner, tmp_path):
        output = tmp_path / "report.xlsx"

        result = run(runner, "--output", str(output), "--config", str(EXAMPLES_DIR / "config.json"))

        assert result.exit_code == 0, result.output
        assert "RECONCILIATION SUMMARY" in result.output
        assert "MT940 statement" in result.output
        ws = load_workbook(output)["Transactions"]
        assert ws["H2"].value == "matched"
        assert ws["I2"].value == "INV-2024-0123"

    def test_explicit_format(self, runner, tmp_path):
        result = run(runner, "--output", str(tmp_path / "r.xlsx"), "--format", "MT940")
        assert result.exit_code == 0, result.output

    def test_threshold_out_of_range(self, runner, tmp_path):
        result = run(runner, "--output", str(tmp_path / "r.xlsx"), "--threshold", "150")
        assert result.exit_code == 2
        assert "between 0 and 100" in result.output

    def test_missing_config_file(self, runner, tmp_path):
        result = run(runner, "--output", str(tmp_path / "r.xlsx"), "--config", str(tmp_path / "nope.json"))
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_wrong_format_is_a_parse_error(self, runner, tmp_path):
        result = run(runner, "--output", str(tmp_path / "r.xlsx"), "--format", "ISO20022-XML")
        assert result.exit_code == 1
        assert "ERROR" in result.output
        assert not (tmp_path / "r.xlsx").exists()

    def test_bad_targets_file(self, runner, tmp_path):
        targets = tmp_path / "targets.csv"
        targets.write_text("foo,bar\n1,2\n", encoding="utf-8")
        result = runner.invoke(main, [
            "--statement", str(EXAMPLES_DIR / "statement.sta"),
            "--targets", str(targets),
            "--output", str(tmp_path / "r.xlsx"),
        ])
        assert result.exit_code == 1
        assert "Missing required columns" in result.output
