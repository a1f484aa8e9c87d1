"""CLI entry point for bank statement reconciliation."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from bankrecon.engine.collaborators import InMemoryPaymentLedger, StaticReceivablesProvider
from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.errors import ReconciliationError
from bankrecon.engine.matcher import Reconciler
from bankrecon.parsers.detect import AUTO
from bankrecon.parsers.records import FORMATS
from bankrecon.parsers.targets import TargetCSVLoader
from bankrecon.reports.excel_report import ExcelReportGenerator

logger = logging.getLogger(__name__)


def validate_score(ctx, param, value):
    """Validate a confidence value is within 0-100."""
    if value is not None and not 0 <= value <= 100:
        raise click.BadParameter("Must be between 0 and 100.")
    return value


@click.command()
@click.option(
    "--statement", "-s",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Bank statement file (MT940, CSV, camt.05x XML, NBS XML or OFX).",
)
@click.option(
    "--format", "-f", "fmt",
    default=AUTO,
    type=click.Choice([AUTO, *FORMATS], case_sensitive=False),
    help="Statement format (default: detect from content).",
)
@click.option(
    "--targets", "-t",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Open invoices/payments file (CSV or Excel).",
)
@click.option(
    "--output", "-o",
    required=True,
    type=click.Path(),
    help="Path for the output Excel report.",
)
@click.option(
    "--config", "-c", "config_path",
    default=None,
    type=click.Path(),
    help="JSON file with matching weights and thresholds.",
)
@click.option(
    "--threshold",
    default=None,
    type=int,
    callback=validate_score,
    help="Auto-match confidence threshold (overrides config).",
)
@click.option(
    "--ambiguity-margin",
    default=None,
    type=int,
    callback=validate_score,
    help="Score gap below which the top candidates count as tied (overrides config).",
)
@click.option(
    "--company-id",
    default="default",
    help="Company the statement and targets belong to.",
)
@click.option(
    "--currency",
    default="RSD",
    help="Currency for CSV rows and targets that do not state one.",
)
def main(
    statement: str,
    fmt: str,
    targets: str,
    output: str,
    config_path: Optional[str],
    threshold: Optional[int],
    ambiguity_margin: Optional[int],
    company_id: str,
    currency: str,
) -> None:
    """
    Bank Statement Reconciliation

    Imports a bank statement, auto-matches its transactions against open
    invoices and payments, and writes an Excel report with the results,
    suggestions for what is left and the audit log.

    Example:
        bankrecon --statement stmt.sta --targets open_invoices.csv --output report.xlsx
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    click.echo("=" * 60)
    click.echo("  BANK STATEMENT RECONCILIATION")
    click.echo("=" * 60)

    try:
        config = ReconciliationConfig.load(config_path) if config_path else ReconciliationConfig()
        if threshold is None:
            threshold = config.auto_match_threshold
        if ambiguity_margin is None:
            ambiguity_margin = config.ambiguity_margin

        click.echo(f"\n  Loading targets: {targets}...")
        open_targets = TargetCSVLoader(default_currency=currency).load(targets)
        click.echo(f"   Found {len(open_targets)} open targets")

        reconciler = Reconciler(
            receivables=StaticReceivablesProvider(open_targets),
            ledger=InMemoryPaymentLedger(),
            config=config,
        )

        click.echo(f"\n  Importing statement: {statement}...")
        stmt, warnings = reconciler.import_statement(
            Path(statement).read_bytes(), fmt=fmt, company_id=company_id, default_currency=currency,
        )
        click.echo(
            f"   {stmt.source_format} statement {stmt.statement_number}, "
            f"{stmt.period.from_date} - {stmt.period.to_date}"
        )
        for warning in warnings:
            click.echo(f"   WARNING [{warning.code}] {warning.message}")

        click.echo(f"\n  Auto-matching (threshold: {threshold}, margin: {ambiguity_margin})...")
        summary = reconciler.auto_match(stmt.id, threshold=threshold, ambiguity_margin=ambiguity_margin)

        click.echo(f"\n  Generating report: {output}...")
        output_path = ExcelReportGenerator().generate(reconciler, stmt.id, output, summary=summary)

        report = reconciler.statement_report(stmt.id)
        click.echo("\n" + "=" * 60)
        click.echo("  RECONCILIATION SUMMARY")
        click.echo("=" * 60)
        click.echo(f"  Match Rate:           {report.match_rate:.1f}%")
        click.echo(f"  Transactions:         {report.total_transactions}")
        click.echo(f"  Auto-matched:         {summary.matched_count}")
        click.echo(f"  Ambiguous:            {summary.ambiguous_count}")
        click.echo(f"  Skipped:              {summary.skipped_count}")
        click.echo(f"  Errors:               {summary.error_count}")
        click.echo(f"  Total Credits:        {report.total_credits:,.2f}")
        click.echo(f"  Total Debits:         {report.total_debits:,.2f}")
        click.echo("=" * 60)
        click.echo(f"\n  Report saved to: {output_path.absolute()}")

    except (ValueError, ReconciliationError) as e:
        click.echo(f"\n  ERROR: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error during reconciliation")
        click.echo(f"\n  UNEXPECTED ERROR: {e}", err=True)
        sys.exit(2)


if __name__ == "__main__":
    main()
