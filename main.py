"""
main.py
--------
Entry point for the Budget Forecasting Engine.

Reads a bill snapshot from CSV, runs the forecasting pipeline, and writes
the forecast to the outputs/ folder.

Usage (from the project root):
    python main.py --input bills.csv

    # With optional arguments:
    python main.py --input bills.csv --start 2024-06-01 --end 2024-12-31
    python main.py --input bills.csv --period quarterly --include-historic
    python main.py --input bills.csv --log-level DEBUG
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import date, datetime

# Allow `python main.py` from outside the project root
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from core.bill_repository import BillRepository
from core.models import BudgetForecastReport, PeriodGranularity
from pipeline import BudgetForecastPipeline, predictions_to_dataframe

logger = logging.getLogger("main")


# =============================================================================
# LOGGING SETUP
# =============================================================================

def _configure_logging(level: str) -> None:
    """One console handler for every engine logger, at the requested level."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not a YYYY-MM-DD date: {value}") from None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Budget Forecasting Engine — project recurring bill spending."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to the bills CSV (id, title, amount, due_date, category_id, ...)."
    )
    parser.add_argument(
        "--start", type=_parse_date, default=None,
        help="Start of the forecast window (YYYY-MM-DD). Defaults to today."
    )
    parser.add_argument(
        "--end", type=_parse_date, default=None,
        help="End of the forecast window (YYYY-MM-DD). Defaults to the configured horizon."
    )
    parser.add_argument(
        "--period", type=str, default=PeriodGranularity.MONTHLY.value,
        choices=[p.value for p in PeriodGranularity],
        help="Reporting period granularity. Default: monthly."
    )
    parser.add_argument(
        "--include-historic", action="store_true", default=False,
        help="Also report paid bills from the year before the window."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level. Default: INFO."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.log_level)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load bills ---
    logger.info(f"Loading bills from: {args.input}")
    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        return 1

    repository = BillRepository.from_csv(args.input)
    logger.info(f"Loaded {len(repository):,} bills, {len(repository.recurring_templates()):,} recurring templates.")

    # --- Run pipeline ---
    start_date = args.start or date.today()
    pipeline = BudgetForecastPipeline()
    report = pipeline.run_from_repository(
        repository,
        start_date,
        args.end,
        args.period,
        include_historic=args.include_historic,
    )

    for bill_id, error in report.rule_errors.items():
        logger.warning(f"Bill {bill_id} has an invalid recurrence rule: {error}")

    # --- Output: forecast table ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    forecast_df = predictions_to_dataframe(report)
    forecast_path = os.path.join(output_dir, f"forecast_{timestamp}.csv")
    forecast_df.to_csv(forecast_path, index=False)
    logger.info(f"Forecast saved to: {forecast_path}")

    if report.historic_data is not None:
        historic_path = os.path.join(output_dir, f"historic_{timestamp}.csv")
        pd.DataFrame(
            [
                {"period_label": p.period_label, "total_amount": p.total_amount, "bill_count": p.bill_count}
                for p in report.historic_data
            ],
            columns=["period_label", "total_amount", "bill_count"],
        ).to_csv(historic_path, index=False)
        logger.info(f"Historic report saved to: {historic_path}")

    _print_summary(report)
    return 0


def _print_summary(report: BudgetForecastReport):
    """Prints a clean summary table to the console."""
    if not report.predictions:
        print("\n  No recurring bills or detected patterns in this window.\n")
        return

    print("\n" + "=" * 80)
    print("  BUDGET FORECAST SUMMARY")
    print("=" * 80)

    print(f"\n  Predicted spend by {report.period.value} period:")
    print("  " + "-" * 60)
    for bucket in report.predictions:
        actual = sum(1 for o in bucket.occurrences if o.is_actual)
        print(
            f"    {bucket.period_label:12s}  ${bucket.predicted_amount:>12,.2f}  "
            f"{bucket.occurrence_count:>4} bills  (actual: {actual})"
        )

    total = sum(b.predicted_amount for b in report.predictions)
    print("  " + "-" * 60)
    print(f"    {'TOTAL':12s}  ${total:>12,.2f}")

    if report.historic_data:
        print(f"\n  Historic paid spend:")
        print("  " + "-" * 60)
        for bucket in report.historic_data:
            print(f"    {bucket.period_label:12s}  ${bucket.total_amount:>12,.2f}  {bucket.bill_count:>4} bills")

    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
