"""Tests for the Excel report generator."""

import pytest
from openpyxl import load_workbook

from bankrecon.reports.excel_report import ExcelReportGenerator
from tests.factories import csv_statement, make_reconciler, make_target


def column(ws, letter):
    return [ws[f"{letter}{row}"].value for row in range(2, ws.max_row + 1)]


@pytest.fixture
def reconciled():
    """One auto-matched, one suggested, one duplicate and one ignored transaction."""
    rec = make_reconciler([
        make_target("INV-2024-0123", "125000", ref="2024-0123", partner="ABC d.o.o."),
        make_target("INV-2024-0131", "125000", ref="2024-0131", partner="Delta Trade"),
    ])
    statement, _ = rec.import_statement(csv_statement([
        ("2024-03-15", "125000.00", "2024-0123", "ABC d.o.o."),
        ("2024-03-15", "124500.00", "", "Delta Trade"),
        ("2024-03-15", "124500.00", "", "Delta Trade"),
        ("2024-03-16", "-15000.00", "", "EPS"),
    ]))
    summary = rec.auto_match(statement.id)
    fee = rec.store.transactions_for(statement.id)[3]
    rec.ignore(fee.id, user_id="alice", reason="bank fee")
    return rec, statement, summary


class TestExcelReportGenerator:
    """Test Excel report generation functionality."""

    def test_generate_creates_file(self, tmp_path, reconciled):
        rec, statement, summary = reconciled
        output = tmp_path / "nested" / "report.xlsx"

        result_path = ExcelReportGenerator().generate(rec, statement.id, output, summary=summary)

        assert result_path.exists()
        assert result_path.suffix == ".xlsx"

    def test_report_has_four_tabs(self, tmp_path, reconciled):
        rec, statement, summary = reconciled
        output = tmp_path / "report.xlsx"
        ExcelReportGenerator().generate(rec, statement.id, output, summary=summary)

        wb = load_workbook(output)
        assert wb.sheetnames == ["Summary", "Transactions", "Suggestions", "Audit Log"]

    def test_summary_tab_has_kpis(self, tmp_path, reconciled):
        rec, statement, summary = reconciled
        output = tmp_path / "report.xlsx"
        ExcelReportGenerator().generate(rec, statement.id, output, summary=summary)

        ws = load_workbook(output)["Summary"]
        values = {ws[f"A{row}"].value: ws[f"B{row}"].value for row in range(4, ws.max_row + 1)}

        assert statement.statement_number in ws["A1"].value
        assert values["Match Rate"] == "25.0%"
        assert values["Total Transactions"] == 4
        assert values["Unmatched"] == 2
        assert values["Ignored"] == 1
        assert values["Auto-matched (last run)"] == 1
        assert values["Total Debits"] == 15000

    def test_summary_without_run(self, tmp_path, reconciled):
        rec, statement, _ = reconciled
        output = tmp_path / "report.xlsx"
        ExcelReportGenerator().generate(rec, statement.id, output)

        ws = load_workbook(output)["Summary"]
        labels = [ws[f"A{row}"].value for row in range(1, ws.max_row + 1)]
        assert "Auto-matched (last run)" not in labels

    def test_transactions_tab(self, tmp_path, reconciled):
        rec, statement, summary = reconciled
        output = tmp_path / "report.xlsx"
        ExcelReportGenerator().generate(rec, statement.id, output, summary=summary)

        ws = load_workbook(output)["Transactions"]

        assert ws["A1"].value == "#"
        assert column(ws, "H") == ["matched", "unmatched", "unmatched", "ignored"]
        assert column(ws, "I")[0] == "INV-2024-0123"
        assert column(ws, "J")[0] == 100
        assert column(ws, "L")[2].startswith("Possible duplicate")

    def test_suggestions_only_for_unmatched(self, tmp_path, reconciled):
        rec, statement, summary = reconciled
        output = tmp_path / "report.xlsx"
        ExcelReportGenerator(suggestions_per_transaction=1).generate(rec, statement.id, output, summary=summary)

        ws = load_workbook(output)["Suggestions"]

        assert column(ws, "A") == [2, 3]
        assert column(ws, "F") == ["INV-2024-0131", "INV-2024-0131"]
        assert column(ws, "G") == [60, 60]
        assert column(ws, "H") == ["medium", "medium"]

    def test_audit_tab(self, tmp_path, reconciled):
        rec, statement, summary = reconciled
        output = tmp_path / "report.xlsx"
        ExcelReportGenerator().generate(rec, statement.id, output, summary=summary)

        ws = load_workbook(output)["Audit Log"]

        assert column(ws, "A") == [1, 2]
        assert column(ws, "D") == ["match", "ignore"]
        assert column(ws, "J") == ["system", "alice"]
        assert column(ws, "L")[1] == "bank fee"

    def test_overpayment_note(self, tmp_path):
        rec = make_reconciler([make_target("INV-1", "100", ref="R-1", partner="ABC")])
        statement, _ = rec.import_statement(csv_statement([("2024-03-15", "104.00", "R-1", "ABC")]))
        rec.auto_match(statement.id)
        output = tmp_path / "report.xlsx"

        ExcelReportGenerator().generate(rec, statement.id, output)

        ws = load_workbook(output)["Transactions"]
        assert ws["K2"].value == 4
        assert ws["L2"].value.startswith("Overpayment")
