"""Excel report generator for statement reconciliation state."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from bankrecon.engine.matcher import Reconciler
from bankrecon.engine.models import AutoMatchSummary, BankTransaction, MatchStatus


class ExcelReportGenerator:
    """Write one statement's reconciliation state to a workbook."""

    HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
    HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
    MATCHED_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
    PARTIAL_FILL = PatternFill(start_color="DDEBF7", end_color="DDEBF7", fill_type="solid")
    UNMATCHED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    IGNORED_FILL = PatternFill(start_color="EDEDED", end_color="EDEDED", fill_type="solid")
    DUPLICATE_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
    TITLE_FONT = Font(name="Calibri", size=16, bold=True, color="1F4E79")
    SUBTITLE_FONT = Font(name="Calibri", size=12, bold=True, color="1F4E79")
    KPI_FONT = Font(name="Calibri", size=14, bold=True)
    THIN_BORDER = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin"),
    )

    STATUS_FILLS = {
        MatchStatus.MATCHED: MATCHED_FILL,
        MatchStatus.PARTIAL: PARTIAL_FILL,
        MatchStatus.UNMATCHED: UNMATCHED_FILL,
        MatchStatus.IGNORED: IGNORED_FILL,
    }

    def __init__(self, suggestions_per_transaction: int = 3):
        self.suggestions_per_transaction = suggestions_per_transaction

    def generate(
        self,
        reconciler: Reconciler,
        statement_id: str,
        output_path: str | Path,
        summary: Optional[AutoMatchSummary] = None,
    ) -> Path:
        """
        Generate the report with 4 tabs.

        Args:
            reconciler: Engine holding the statement.
            statement_id: Statement to report on.
            output_path: Path for the output Excel file.
            summary: Result of the last auto-match run, if any.

        Returns:
            Path to the generated report.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        transactions = reconciler.store.transactions_for(statement_id)

        wb = Workbook()
        self._create_summary_tab(wb, reconciler, statement_id, summary)
        self._create_transactions_tab(wb, transactions)
        self._create_suggestions_tab(wb, reconciler, transactions)
        self._create_audit_tab(wb, reconciler, transactions)

        wb.save(str(output_path))
        return output_path

    def _create_summary_tab(
        self,
        wb: Workbook,
        reconciler: Reconciler,
        statement_id: str,
        summary: Optional[AutoMatchSummary],
    ) -> None:
        ws = wb.active
        ws.title = "Summary"
        ws.sheet_properties.tabColor = "1F4E79"

        statement = reconciler.store.get_statement(statement_id)
        report = reconciler.statement_report(statement_id)

        ws.merge_cells("A1:F1")
        ws["A1"] = f"Bank Reconciliation - {statement.bank_name} {statement.statement_number}"
        ws["A1"].font = self.TITLE_FONT
        ws["A1"].alignment = Alignment(horizontal="center")

        ws.merge_cells("A2:F2")
        ws["A2"] = f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        ws["A2"].alignment = Alignment(horizontal="center")

        header = [
            ("Account", statement.account_number),
            ("Period", f"{statement.period.from_date} - {statement.period.to_date}"),
            ("Format", statement.source_format),
            ("Currency", statement.currency),
            ("Status", statement.status.value),
        ]
        row = 4
        for label, value in header:
            ws[f"A{row}"] = label
            ws[f"A{row}"].font = Font(bold=True)
            ws[f"B{row}"] = value
            row += 1

        row += 1
        ws[f"A{row}"] = "Key Performance Indicators"
        ws[f"A{row}"].font = self.SUBTITLE_FONT
        row += 1

        kpis = [
            ("Match Rate", f"{report.match_rate:.1f}%"),
            ("Total Transactions", report.total_transactions),
            ("Matched", report.matched_transactions),
            ("Unmatched", report.unmatched_transactions),
            ("Ignored", report.ignored_transactions),
        ]
        if summary is not None:
            kpis += [
                ("Auto-matched (last run)", summary.matched_count),
                ("Ambiguous (last run)", summary.ambiguous_count),
                ("Errors (last run)", summary.error_count),
            ]
        for label, value in kpis:
            ws[f"A{row}"] = label
            ws[f"A{row}"].font = Font(bold=True)
            ws[f"B{row}"] = value
            ws[f"B{row}"].font = self.KPI_FONT
            if label == "Unmatched" and value:
                ws[f"B{row}"].fill = self.UNMATCHED_FILL
            elif label == "Match Rate":
                ws[f"B{row}"].fill = self.MATCHED_FILL if report.match_rate >= 95 else self.UNMATCHED_FILL
            row += 1

        row += 1
        ws[f"A{row}"] = "Amount Summary"
        ws[f"A{row}"].font = self.SUBTITLE_FONT
        row += 1
        amounts = [
            ("Opening Balance", statement.opening_balance),
            ("Total Credits", report.total_credits),
            ("Total Debits", report.total_debits),
            ("Closing Balance", statement.closing_balance),
        ]
        for label, amount in amounts:
            ws[f"A{row}"] = label
            ws[f"A{row}"].font = Font(bold=True)
            ws[f"B{row}"] = float(amount)
            ws[f"B{row}"].number_format = '#,##0.00'
            row += 1

        ws.column_dimensions["A"].width = 25
        ws.column_dimensions["B"].width = 25

    def _create_transactions_tab(self, wb: Workbook, transactions: List[BankTransaction]) -> None:
        ws = wb.create_sheet("Transactions")
        ws.sheet_properties.tabColor = "00B050"

        headers = [
            "#", "Date", "Amount", "Currency", "Counterpart", "Reference",
            "Description", "Status", "Target", "Confidence", "Surplus", "Note",
        ]
        self._write_headers(ws, headers)

        for i, txn in enumerate(transactions, start=2):
            ws[f"A{i}"] = txn.position + 1
            ws[f"B{i}"] = txn.transaction_date.strftime("%Y-%m-%d")
            ws[f"C{i}"] = float(txn.amount)
            ws[f"C{i}"].number_format = '#,##0.00'
            ws[f"D{i}"] = txn.currency
            ws[f"E{i}"] = txn.counterpart_name
            ws[f"F{i}"] = txn.reference
            ws[f"G{i}"] = txn.description[:80]
            ws[f"H{i}"] = txn.match_status.value
            ws[f"I{i}"] = txn.matched_target_id or ""
            ws[f"J{i}"] = txn.match_confidence if txn.match_confidence is not None else ""
            ws[f"K{i}"] = float(txn.surplus_amount)
            ws[f"K{i}"].number_format = '#,##0.00'
            if txn.is_duplicate:
                ws[f"L{i}"] = f"Possible duplicate of {txn.duplicate_of}"
            elif txn.requires_manual_allocation:
                ws[f"L{i}"] = "Overpayment: allocate surplus manually"

            fill = self.DUPLICATE_FILL if txn.is_duplicate else self.STATUS_FILLS[txn.match_status]
            for col in range(1, len(headers) + 1):
                ws.cell(row=i, column=col).fill = fill

        self._auto_width(ws, headers)

    def _create_suggestions_tab(
        self, wb: Workbook, reconciler: Reconciler, transactions: List[BankTransaction]
    ) -> None:
        ws = wb.create_sheet("Suggestions")
        ws.sheet_properties.tabColor = "FFC000"

        headers = ["#", "Date", "Amount", "Counterpart", "Rank", "Target", "Confidence", "Band", "Reasons"]
        self._write_headers(ws, headers)

        row = 2
        for txn in transactions:
            if txn.match_status != MatchStatus.UNMATCHED:
                continue
            ranked = reconciler.suggestions(txn.id)[: self.suggestions_per_transaction]
            for rank, scored in enumerate(ranked, start=1):
                ws[f"A{row}"] = txn.position + 1
                ws[f"B{row}"] = txn.transaction_date.strftime("%Y-%m-%d")
                ws[f"C{row}"] = float(txn.amount)
                ws[f"C{row}"].number_format = '#,##0.00'
                ws[f"D{row}"] = txn.counterpart_name
                ws[f"E{row}"] = rank
                ws[f"F{row}"] = scored.target_id
                ws[f"G{row}"] = scored.confidence
                ws[f"H{row}"] = scored.band.value
                ws[f"I{row}"] = ", ".join(scored.reasons)
                row += 1

        self._auto_width(ws, headers)

    def _create_audit_tab(
        self, wb: Workbook, reconciler: Reconciler, transactions: List[BankTransaction]
    ) -> None:
        ws = wb.create_sheet("Audit Log")
        ws.sheet_properties.tabColor = "7F7F7F"

        headers = [
            "Seq", "Timestamp", "Transaction #", "Action", "From", "To",
            "Target", "Allocated", "Confidence", "Actor", "Payment", "Reason",
        ]
        self._write_headers(ws, headers)

        positions = {t.id: t.position + 1 for t in transactions}
        entries = [e for e in reconciler.store.audit_log.entries() if e.transaction_id in positions]
        for i, entry in enumerate(entries, start=2):
            ws[f"A{i}"] = entry.sequence
            ws[f"B{i}"] = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
            ws[f"C{i}"] = positions[entry.transaction_id]
            ws[f"D{i}"] = entry.action.value
            ws[f"E{i}"] = entry.from_status.value
            ws[f"F{i}"] = entry.to_status.value
            ws[f"G{i}"] = entry.target_id or ""
            ws[f"H{i}"] = float(entry.allocated_amount)
            ws[f"H{i}"].number_format = '#,##0.00'
            ws[f"I{i}"] = entry.confidence if entry.confidence is not None else ""
            ws[f"J{i}"] = entry.actor
            ws[f"K{i}"] = entry.payment_id or ""
            ws[f"L{i}"] = entry.reason

        self._auto_width(ws, headers)

    def _write_headers(self, ws, headers: List[str]) -> None:
        for col_idx, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.alignment = Alignment(horizontal="center")
            cell.border = self.THIN_BORDER

        ws.freeze_panes = "A2"
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}1"

    def _auto_width(self, ws, headers: List[str]) -> None:
        for col_idx, header in enumerate(headers, start=1):
            col_letter = get_column_letter(col_idx)
            ws.column_dimensions[col_letter].width = min(len(header) + 6, 35)
