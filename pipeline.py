"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. Recurrence date generator   →  occurrences from explicit rules
    2. HistoricalPatternDetector   →  occurrences from inferred patterns
    3. PredictionEnhancer          →  actual-bill replacement + amount forecasts
    4. Period bucketing            →  report grouped by month/quarter/year

This is the single entry point for running the engine. Everything else
is internal machinery.

Usage:
    from pipeline import BudgetForecastPipeline

    pipeline = BudgetForecastPipeline()
    report = pipeline.run(templates, start, end, "monthly", actual_bills, historical_bills)
"""

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from dateutil.relativedelta import relativedelta

from core.bill_repository import BillRepository
from core.matching import PredictionEnhancer, synthesize_virtual_bills
from core.models import (
    Bill,
    BudgetForecastReport,
    ForecastMethod,
    PeriodGranularity,
    PredictedOccurrence,
    PredictionPeriod,
    Provenance,
    SyntheticBill,
)
from core.pattern_detector import HistoricalPatternDetector
from core.periods import group_bills_by_period, group_predictions_by_period
from core.recurrence import calculate_max_periods, next_due_date, upcoming_due_dates, validate_rule
from config.config_loader import load_config

logger = logging.getLogger(__name__)


class BudgetForecastPipeline:
    """
    End-to-end budget forecasting pipeline.

    Pure and synchronous: each run works only on the snapshot it is given,
    so one instance can serve concurrent callers.
    """

    def __init__(self, config: dict | None = None):
        """
        Args:
            config: Full config dict overriding config.yaml for this pipeline.
        """
        self.config = config or load_config()
        self.detector = HistoricalPatternDetector(self.config["pattern_detection"])
        self.enhancer = PredictionEnhancer(
            self.config["matching"],
            self.config["forecasting"],
            self.config["synthetic_fill"],
        )
        self.synthetic_config = self.config["synthetic_fill"]

        logger.info(
            f"Pipeline initialized. "
            f"Pattern acceptance: >{self.detector.min_pattern_confidence}. "
            f"Match tolerance: ±{self.enhancer.tolerance_days} days."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(
        self,
        templates: Sequence[Bill],
        start_date: date,
        end_date: date,
        period: "PeriodGranularity | str" = PeriodGranularity.MONTHLY,
        actual_bills: Optional[Sequence[Bill]] = None,
        historical_bills: Optional[Sequence[Bill]] = None,
        paid_bills: Optional[Sequence[Bill]] = None,
    ) -> BudgetForecastReport:
        """
        Run the full forecasting pipeline.

        Args:
            templates: Recurring template bills (those with a rule are expanded).
            start_date, end_date: Inclusive analysis window.
            period: monthly | quarterly | yearly | custom (custom buckets monthly).
            actual_bills: Real bills in the window; enables replacement and forecasting.
            historical_bills: Real bills before the window; enables pattern
                detection and seasonal forecasts.
            paid_bills: Paid bills for the historic comparison report.

        Returns:
            BudgetForecastReport with periods sorted by label.
        """
        granularity = PeriodGranularity.parse(period)
        actual_bills = list(actual_bills or [])
        historical_bills = list(historical_bills or [])

        logger.info(
            f"Pipeline starting. Window: {start_date} to {end_date} ({granularity.value}). "
            f"Templates: {len(templates):,}, actual: {len(actual_bills):,}, "
            f"historical: {len(historical_bills):,}."
        )

        # --- Stage 1: Explicit recurrence rules ---
        occurrences, synthetic, rule_errors = self._expand_rules(templates, start_date, end_date, actual_bills)
        logger.info(f"Stage 1 complete. Rule occurrences: {len(occurrences):,}. Invalid rules: {len(rule_errors):,}.")

        # --- Stage 2: Detected patterns (gaps only) ---
        detected = self._expand_patterns(templates, historical_bills, start_date, end_date)
        occurrences.extend(detected)
        logger.info(f"Stage 2 complete. Pattern occurrences: {len(detected):,}.")

        # --- Stage 3: Reconcile with actual bills + forecast amounts ---
        if actual_bills:
            occurrences = self.enhancer.enhance(occurrences, actual_bills, historical_bills, synthetic)
            replaced = sum(1 for o in occurrences if o.is_actual)
            logger.info(f"Stage 3 complete. Replaced by actual bills: {replaced:,}.")

        # --- Stage 4: Period bucketing ---
        predictions = group_predictions_by_period(occurrences, granularity)
        historic_data = group_bills_by_period(paid_bills, granularity) if paid_bills is not None else None
        logger.info(f"Pipeline complete. Periods: {len(predictions):,}.")

        return BudgetForecastReport(
            period=granularity,
            predictions=predictions,
            historic_data=historic_data,
            rule_errors=rule_errors,
        )

    def run_from_repository(
        self,
        repository: BillRepository,
        start_date: date,
        end_date: date | None = None,
        period: "PeriodGranularity | str" = PeriodGranularity.MONTHLY,
        include_historic: bool = False,
    ) -> BudgetForecastReport:
        """
        Fetch the standard views from a repository and run the pipeline.

        Historical bills cover the configured years before start_date; the
        historic report covers paid bills in the configured years before it.
        """
        reporting = self.config["reporting"]
        if end_date is None:
            end_date = start_date + timedelta(days=reporting["default_horizon_days"])

        paid_bills = None
        if include_historic:
            historic_start = start_date - relativedelta(years=reporting["historic_report_years_back"])
            paid_bills = repository.paid_bills(historic_start, start_date)

        return self.run(
            repository.recurring_templates(),
            start_date,
            end_date,
            period,
            actual_bills=repository.actual_bills(start_date, end_date),
            historical_bills=repository.historical_bills(start_date, reporting["historical_years_back"]),
            paid_bills=paid_bills,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: EXPLICIT RULES
    # -------------------------------------------------------------------------

    def _expand_rules(
        self,
        templates: Sequence[Bill],
        start_date: date,
        end_date: date,
        actual_bills: Sequence[Bill],
    ) -> Tuple[List[PredictedOccurrence], Dict[str, List[SyntheticBill]], Dict[str, str]]:
        """
        Expands every template's rule inside the window.

        Series keep the phase of their own start date; dates are generated
        from the rule start and then clipped to the window. Templates with
        too few actual bills are marked synthetic-fill and get virtual bills.
        """
        occurrences: List[PredictedOccurrence] = []
        synthetic: Dict[str, List[SyntheticBill]] = {}
        rule_errors: Dict[str, str] = {}

        for template in templates:
            rule = template.recurrence_rule
            if rule is None:
                continue

            validation = validate_rule(rule.frequency, rule.day_of_month, rule.start_date, rule.end_date)
            if not validation.valid:
                rule_errors[template.id] = validation.error
                logger.warning(f"Skipping rule of bill {template.id}: {validation.error}")
                continue

            effective_start = max(rule.start_date, start_date)
            effective_end = min(rule.end_date or end_date, end_date)
            if effective_start > effective_end:
                continue

            max_count = calculate_max_periods(rule.start_date, effective_end, rule.frequency)
            dates = [
                d for d in upcoming_due_dates(
                    rule.start_date, rule.frequency, rule.day_of_month, effective_end, max_count
                )
                if d >= effective_start
            ]
            if not dates:
                continue

            existing = sum(1 for b in actual_bills if b.matching_key == template.matching_key)
            virtual = synthesize_virtual_bills(template, existing, self.synthetic_config)
            if virtual:
                synthetic[template.id] = virtual

            for due_date in dates:
                occurrences.append(
                    PredictedOccurrence(
                        title=template.title,
                        amount=float(template.amount),
                        due_date=due_date,
                        template_id=template.id,
                        matching_key=template.matching_key,
                        provenance=Provenance.FROM_RULE,
                        method=ForecastMethod.SYNTHETIC_FILL if virtual else None,
                        confidence=self.synthetic_config["confidence"] if virtual else None,
                    )
                )

        return occurrences, synthetic, rule_errors

    # -------------------------------------------------------------------------
    # INTERNAL: DETECTED PATTERNS
    # -------------------------------------------------------------------------

    def _expand_patterns(
        self,
        templates: Sequence[Bill],
        historical_bills: Sequence[Bill],
        start_date: date,
        end_date: date,
    ) -> List[PredictedOccurrence]:
        """
        Expands detected patterns forward from their last bill, one detected
        period at a time, starting one period after it. Patterns on a
        matching key already covered by an explicit rule are skipped.
        """
        if not historical_bills:
            return []

        covered = {t.matching_key for t in templates if t.recurrence_rule is not None}
        occurrences: List[PredictedOccurrence] = []

        for pattern in self.detector.detect(historical_bills):
            if pattern.matching_key in covered:
                logger.debug(f"Pattern on {pattern.matching_key} covered by an explicit rule.")
                continue

            last = pattern.last_bill
            day_of_month = pattern.day_of_month or last.due_date.day
            # The series resumes one full period after the last bill
            first = next_due_date(last.due_date, pattern.frequency, day_of_month, end_date)
            if first is None:
                continue
            max_count = calculate_max_periods(first, end_date, pattern.frequency)
            amount = round(pattern.mean_amount, 2)

            for due_date in upcoming_due_dates(first, pattern.frequency, day_of_month, end_date, max_count):
                if due_date < start_date:
                    continue
                occurrences.append(
                    PredictedOccurrence(
                        title=last.title,
                        amount=amount,
                        due_date=due_date,
                        template_id=last.id,
                        matching_key=pattern.matching_key,
                        provenance=Provenance.DETECTED_PATTERN,
                        method=ForecastMethod.AVERAGE,
                        confidence=pattern.confidence,
                    )
                )

        return occurrences


# =============================================================================
# MODULE-LEVEL HELPERS
# =============================================================================

def generate_budget_predictions(
    templates: Sequence[Bill],
    start_date: date,
    end_date: date,
    period: "PeriodGranularity | str" = PeriodGranularity.MONTHLY,
    actual_bills: Optional[Sequence[Bill]] = None,
    historical_bills: Optional[Sequence[Bill]] = None,
) -> List[PredictionPeriod]:
    """Shortcut: run the pipeline and return only the prediction periods."""
    report = BudgetForecastPipeline().run(
        templates, start_date, end_date, period, actual_bills, historical_bills
    )
    return report.predictions


def predictions_to_dataframe(report: BudgetForecastReport) -> pd.DataFrame:
    """
    Flattens a report to one row per occurrence, ordered by period then
    due date.
    """
    columns = [
        "period_label", "due_date", "title", "amount", "provenance",
        "method", "confidence", "template_id", "actual_bill_id",
    ]
    rows = []
    for bucket in report.predictions:
        for o in bucket.occurrences:
            rows.append({
                "period_label": bucket.period_label,
                "due_date": o.due_date.strftime("%Y-%m-%d"),
                "title": o.title,
                "amount": o.amount,
                "provenance": o.provenance.value,
                "method": o.method.value if o.method else None,
                "confidence": o.confidence,
                "template_id": o.template_id,
                "actual_bill_id": o.actual_bill_id,
            })

    if not rows:
        return pd.DataFrame(columns=columns)

    return pd.DataFrame(rows, columns=columns)
