"""
matching.py
------------
Matching & enhancement engine.

Reconciles predicted occurrences with the actual bills that arrive and
forecasts the amounts of the occurrences that are still open:

    1. Matching pass: an actual bill replaces a predicted occurrence of the
       same series when their due dates are within the tolerance window.
       Each actual bill fulfils at most one occurrence and vice versa.
    2. Forecast pass: every unmatched rule occurrence gets an amount from
       the forecaster chain (trend → seasonal → weighted).

Sparse series (too few actual bills) are padded with SyntheticBills before
forecasting and keep the synthetic-fill tag.

The set of claimed actual bills is local to one enhance() call.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Iterable, Mapping, Optional, Sequence

from core.models import (
    Bill,
    ForecastMethod,
    ForecastResult,
    PredictedOccurrence,
    Provenance,
    SyntheticBill,
)
from core.recurrence import frequency_months, shift_due_date
from forecasters.amount_forecasters import get_all_forecasters
from forecasters.base_forecaster import DatedAmount
from config.config_loader import (
    get_forecasting_config,
    get_matching_config,
    get_synthetic_fill_config,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MATCHING PRIMITIVES
# =============================================================================

def should_match_bill(bill: Bill, template: Bill) -> bool:
    """Same series iff category, vendor and vendor account are all equal (None == None)."""
    return bill.matching_key == template.matching_key


def match_bill_to_template(bill: Bill, templates: Iterable[Bill]) -> Optional[Bill]:
    """Returns the first template carrying a recurrence rule that bill belongs to."""
    for template in templates:
        if template.recurrence_rule is not None and should_match_bill(bill, template):
            return template
    return None


def is_date_match(actual_date: date, predicted_date: date, tolerance_days: int | None = None) -> bool:
    """True when the two dates are at most tolerance_days apart (either direction)."""
    if tolerance_days is None:
        tolerance_days = get_matching_config()["date_tolerance_days"]
    return abs((actual_date - predicted_date).days) <= tolerance_days


def occurrence_sort_key(occurrence: PredictedOccurrence) -> tuple:
    return (
        occurrence.due_date,
        occurrence.template_id,
        occurrence.title,
        occurrence.provenance.value,
    )


# =============================================================================
# FORECASTING
# =============================================================================

def calculate_enhanced_amount(
    actual_bills: Sequence[DatedAmount],
    base_amount: float,
    target_date: date,
    historical_bills: Sequence[DatedAmount] | None = None,
    config: dict | None = None,
) -> ForecastResult:
    """
    Forecast the amount of one occurrence due on target_date.

    Args:
        actual_bills: Bills of the same series in the recent window.
        base_amount: The template's amount, used when there is no data.
        target_date: Due date being forecast.
        historical_bills: Broader history of the same series (seasonality).

    Returns:
        ForecastResult. Never raises for sparse data.
    """
    cfg = config or get_forecasting_config()

    if len(actual_bills) == 0:
        return ForecastResult(round(float(base_amount), 2), cfg["no_data_confidence"], ForecastMethod.AVERAGE)

    if len(actual_bills) == 1:
        return ForecastResult(
            round(float(actual_bills[0].amount), 2),
            cfg["single_point_confidence"],
            ForecastMethod.AVERAGE,
        )

    for forecaster in get_all_forecasters(cfg):
        result = forecaster.forecast(actual_bills, target_date, historical_bills)
        if result is not None:
            return result

    # Weighted always applies to a non-empty series
    raise RuntimeError("No forecaster produced a result")


def synthesize_virtual_bills(
    template: Bill,
    existing_count: int,
    config: dict | None = None,
) -> list[SyntheticBill]:
    """
    Manufacture virtual bills around a sparse template.

    Bills are placed at the rule interval, floor(n/2) before the template's
    due date and the rest after, all at the template amount.

    Returns:
        Chronological list; empty when the template has no rule or already
        has enough actual bills.
    """
    cfg = config or get_synthetic_fill_config()
    rule = template.recurrence_rule

    if rule is None or existing_count >= cfg["min_actual_bills"]:
        return []

    count = min(
        cfg["max_virtual_bills"],
        max(cfg["min_virtual_bills"], cfg["min_actual_bills"] - existing_count),
    )
    step = frequency_months(rule.frequency)
    before = count // 2
    offsets = list(range(-before, 0)) + list(range(1, count - before + 1))

    return [
        SyntheticBill(
            template_id=template.id,
            matching_key=template.matching_key,
            due_date=shift_due_date(template.due_date, step * k, rule.day_of_month),
            amount=float(template.amount),
        )
        for k in offsets
    ]


# =============================================================================
# ENHANCER
# =============================================================================

class PredictionEnhancer:
    """
    Replaces predictions with actual bills and forecasts the rest.

    Usage:
        enhancer = PredictionEnhancer()
        occurrences = enhancer.enhance(predictions, actual_bills, historical_bills)
    """

    def __init__(
        self,
        matching_config: dict | None = None,
        forecasting_config: dict | None = None,
        synthetic_config: dict | None = None,
    ):
        self.tolerance_days = (matching_config or get_matching_config())["date_tolerance_days"]
        self.forecasting_config = forecasting_config or get_forecasting_config()
        self.synthetic_confidence = (synthetic_config or get_synthetic_fill_config())["confidence"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def enhance(
        self,
        predictions: Sequence[PredictedOccurrence],
        actual_bills: Sequence[Bill],
        historical_bills: Sequence[Bill] | None = None,
        synthetic_bills: Mapping[str, Sequence[SyntheticBill]] | None = None,
    ) -> list[PredictedOccurrence]:
        """
        Args:
            predictions: Occurrences from rules and detected patterns.
            actual_bills: Real bills inside the analysis window.
            historical_bills: Real bills before the window, for seasonality.
            synthetic_bills: Virtual bills per template id for sparse series.

        Returns:
            Occurrences in chronological order. Matched ones carry the
            actual bill; open ones carry a forecast amount.
        """
        ordered_predictions = sorted(predictions, key=occurrence_sort_key)
        ordered_actuals = sorted(actual_bills, key=lambda b: (b.due_date, b.id))
        historical_bills = historical_bills or []
        synthetic_bills = synthetic_bills or {}

        # --- First pass: replace predictions with actual bills ---
        matched_ids: set[str] = set()
        resolved: list[PredictedOccurrence] = []
        pending: list[PredictedOccurrence] = []

        for prediction in ordered_predictions:
            actual = self._claim_actual(prediction, ordered_actuals, matched_ids)
            if actual is None:
                pending.append(prediction)
            else:
                resolved.append(self._from_actual(prediction, actual))

        logger.debug(f"Matched {len(matched_ids)} actual bills; {len(pending)} occurrences open.")

        # --- Second pass: forecast what is still open ---
        for prediction in pending:
            resolved.append(
                self._forecast(prediction, ordered_actuals, historical_bills, synthetic_bills)
            )

        return sorted(resolved, key=occurrence_sort_key)

    # -------------------------------------------------------------------------
    # INTERNAL: MATCHING
    # -------------------------------------------------------------------------

    def _claim_actual(
        self,
        prediction: PredictedOccurrence,
        ordered_actuals: Sequence[Bill],
        matched_ids: set[str],
    ) -> Optional[Bill]:
        """Earliest unclaimed actual bill of the same series within tolerance."""
        for actual in ordered_actuals:
            if actual.id in matched_ids:
                continue
            if actual.matching_key != prediction.matching_key:
                continue
            if is_date_match(actual.due_date, prediction.due_date, self.tolerance_days):
                matched_ids.add(actual.id)
                return actual
        return None

    @staticmethod
    def _from_actual(prediction: PredictedOccurrence, actual: Bill) -> PredictedOccurrence:
        return replace(
            prediction,
            title=actual.title,
            amount=float(actual.amount),
            due_date=actual.due_date,
            method=None,
            confidence=None,
            actual_bill_id=actual.id,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: FORECASTING
    # -------------------------------------------------------------------------

    def _forecast(
        self,
        prediction: PredictedOccurrence,
        ordered_actuals: Sequence[Bill],
        historical_bills: Sequence[Bill],
        synthetic_bills: Mapping[str, Sequence[SyntheticBill]],
    ) -> PredictedOccurrence:
        # Detected patterns already carry their group-mean forecast
        if prediction.provenance == Provenance.DETECTED_PATTERN:
            return prediction

        series = [a for a in ordered_actuals if a.matching_key == prediction.matching_key]

        if prediction.method == ForecastMethod.SYNTHETIC_FILL:
            padded = series + list(synthetic_bills.get(prediction.template_id, []))
            result = calculate_enhanced_amount(
                padded, prediction.amount, prediction.due_date, None, self.forecasting_config
            )
            return replace(prediction, amount=result.amount, confidence=self.synthetic_confidence)

        history = [b for b in historical_bills if b.matching_key == prediction.matching_key]
        result = calculate_enhanced_amount(
            series, prediction.amount, prediction.due_date, history, self.forecasting_config
        )
        return replace(
            prediction,
            amount=result.amount,
            confidence=result.confidence,
            method=result.method,
        )


def enhance_predictions_with_actual_data(
    predictions: Sequence[PredictedOccurrence],
    actual_bills: Sequence[Bill],
    historical_bills: Sequence[Bill] | None = None,
    synthetic_bills: Mapping[str, Sequence[SyntheticBill]] | None = None,
) -> list[PredictedOccurrence]:
    """Shortcut: one enhance() pass with configured thresholds."""
    return PredictionEnhancer().enhance(predictions, actual_bills, historical_bills, synthetic_bills)
