"""
Demo script for the bank statement reconciliation engine.

Imports the sample MT940 statement in examples/, auto-matches it against
the sample open invoices, accepts the best suggestion for whatever is
left (or ignores it), and writes an Excel report.

Usage:
    python demo.py
"""

import logging
import sys
from pathlib import Path

from bankrecon.engine.collaborators import InMemoryPaymentLedger, StaticReceivablesProvider
from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.errors import ReconciliationError
from bankrecon.engine.matcher import Reconciler
from bankrecon.engine.models import MatchStatus
from bankrecon.parsers.targets import TargetCSVLoader
from bankrecon.reports.excel_report import ExcelReportGenerator

project_root = Path(__file__).parent


def main():
    """Run the reconciliation demo."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    examples_dir = project_root / "examples"
    statement_file = examples_dir / "statement.sta"
    targets_file = examples_dir / "open_invoices.csv"
    config_file = examples_dir / "config.json"
    output_file = examples_dir / "reconciliation_report.xlsx"

    print("=" * 60)
    print("  BANK STATEMENT RECONCILIATION - DEMO")
    print("=" * 60)

    for path in (statement_file, targets_file):
        if not path.exists():
            print(f"\n  ERROR: File not found: {path}")
            sys.exit(1)

    print(f"\n  [1/5] Loading open invoices: {targets_file.name}")
    targets = TargetCSVLoader().load(targets_file)
    for t in targets:
        print(f"        - {t.id:<14} | {t.partner_name:<22} | {t.remaining_amount:>12,.2f} {t.currency}")

    config = ReconciliationConfig.load(config_file) if config_file.exists() else ReconciliationConfig()
    ledger = InMemoryPaymentLedger()
    reconciler = Reconciler(
        receivables=StaticReceivablesProvider(targets),
        ledger=ledger,
        config=config,
    )

    print(f"\n  [2/5] Importing statement: {statement_file.name}")
    try:
        statement, warnings = reconciler.import_statement(statement_file.read_bytes())
    except ReconciliationError as e:
        print(f"  ERROR importing statement: {e}")
        sys.exit(1)
    print(f"        {statement.source_format} {statement.statement_number} for {statement.account_number}")
    for w in warnings:
        print(f"        WARNING [{w.code}] {w.message}")

    print("\n  [3/5] Auto-matching...")
    summary = reconciler.auto_match(statement.id)
    for txn in reconciler.store.transactions_for(statement.id):
        outcome = summary.outcomes[txn.id]
        print(
            f"        - {txn.transaction_date} | {txn.amount:>12,.2f} | {txn.counterpart_name[:22]:<22}"
            f" | {outcome.outcome.value:<9} | {outcome.target_id or '':<14} | {outcome.message}"
        )

    print("\n  [4/5] Reviewing what is left...")
    for txn in reconciler.store.transactions_for(statement.id):
        if txn.match_status != MatchStatus.UNMATCHED:
            continue
        suggestions = reconciler.suggestions(txn.id)
        if suggestions:
            best = suggestions[0]
            print(f"        {txn.counterpart_name}: best suggestion {best.target_id} ({best.confidence}, {', '.join(best.reasons)})")
            entry = reconciler.manual_match(txn.id, best.target_id, user_id="demo-user")
            print(f"        Accepted -> {entry.to_status.value}, payment {entry.payment_id}")
        else:
            reconciler.ignore(txn.id, user_id="demo-user", reason="Not a customer payment")
            print(f"        {txn.counterpart_name or txn.description}: no candidates, ignored")

    print(f"\n  [5/5] Generating Excel report: {output_file.name}")
    output_path = ExcelReportGenerator().generate(reconciler, statement.id, output_file, summary=summary)

    report = reconciler.statement_report(statement.id)
    print("\n" + "=" * 60)
    print("  RECONCILIATION SUMMARY")
    print("=" * 60)
    print(f"  Transactions:         {report.total_transactions}")
    print(f"  Match Rate:           {report.match_rate:.1f}%")
    print(f"  Matched:              {report.matched_transactions}")
    print(f"  Ignored:              {report.ignored_transactions}")
    print(f"  Unmatched:            {report.unmatched_transactions}")
    print(f"  Audit entries:        {len(reconciler.store.audit_log)}")
    print(f"  Payments created:     {len(ledger.payments)}")
    print("=" * 60)

    print(f"\n  Report saved to: {output_path.absolute()}")
    print("  Open the Excel file to see the formatted reconciliation report.\n")


if __name__ == "__main__":
    main()
