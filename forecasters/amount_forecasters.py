"""
amount_forecasters.py
-----------------------
Concrete amount forecasters. One class per forecasting strategy.

The strategies are tried in a fixed order and the first that applies wins:

    1. Trend: least-squares line of amount vs. days since the first bill.
       Applies only with enough points and a good fit (R²).
    2. Seasonal: mean of historical bills due in the target month, when
       that month has been seen in several years.
    3. Weighted: weighted moving average, newest bill weighs most. Always
       applies to a non-empty series.

Thresholds and confidences come from config.yaml — only the scoring
structure lives in code.
"""

from datetime import date

import numpy as np
from scipy import stats

from core.models import ForecastMethod
from forecasters.base_forecaster import BaseAmountForecaster, DatedAmount


def linear_trend(ordered: list[DatedAmount]) -> tuple[float, float, float] | None:
    """
    Ordinary least squares of amount against days since the first bill.

    Returns:
        (slope, intercept, r_squared), or None when all bills share one
        date. A constant amount is a perfect flat fit (R² = 1).
    """
    first = ordered[0].due_date
    x = np.array([(b.due_date - first).days for b in ordered], dtype=float)
    y = np.array([float(b.amount) for b in ordered], dtype=float)

    if np.ptp(x) == 0:
        return None
    if np.ptp(y) == 0:
        return 0.0, float(y[0]), 1.0

    fit = stats.linregress(x, y)
    return float(fit.slope), float(fit.intercept), float(fit.rvalue) ** 2


# =============================================================================
# TREND
# =============================================================================
class TrendForecaster(BaseAmountForecaster):
    """
    Projects the fitted regression line to the target date.

    Confidence is the fit's R². Below the configured R² the series is
    considered too noisy and the next strategy is tried.
    """

    def __init__(self, config: dict | None = None):
        super().__init__(ForecastMethod.TREND, config)
        self.min_points = self.config["trend"]["min_points"]
        self.min_r_squared = self.config["trend"]["min_r_squared"]

    def _estimate(self, ordered, target_date, historical):
        if len(ordered) < self.min_points:
            return None

        fit = linear_trend(ordered)
        if fit is None:
            return None

        slope, intercept, r_squared = fit
        if r_squared < self.min_r_squared:
            return None

        days_out = (target_date - ordered[0].due_date).days
        return max(0.0, intercept + slope * days_out), r_squared


# =============================================================================
# SEASONAL
# =============================================================================
class SeasonalForecaster(BaseAmountForecaster):
    """
    Averages historical bills due in the same calendar month as the target.

    Requires evidence from several distinct years so a single unusual
    month is not mistaken for seasonality.
    """

    def __init__(self, config: dict | None = None):
        super().__init__(ForecastMethod.SEASONAL, config)
        seasonal = self.config["seasonal"]
        self.min_distinct_years = seasonal["min_distinct_years"]
        self.min_matches = seasonal["min_matches"]
        self.confidence = seasonal["confidence"]

    def _estimate(self, ordered, target_date, historical):
        same_month = [b for b in historical if b.due_date.month == target_date.month]
        years = {b.due_date.year for b in same_month}

        if len(years) < self.min_distinct_years or len(same_month) < self.min_matches:
            return None

        return float(np.mean(self._amounts(same_month))), self.confidence


# =============================================================================
# WEIGHTED MOVING AVERAGE
# =============================================================================
class WeightedForecaster(BaseAmountForecaster):
    """
    Weighted moving average over the series.

    Of n bills, the newest weighs n / (1 + ... + n) and the oldest
    1 / (1 + ... + n).
    """

    def __init__(self, config: dict | None = None):
        super().__init__(ForecastMethod.WEIGHTED, config)
        weighted = self.config["weighted"]
        self.full_confidence = weighted["confidence"]
        self.sparse_confidence = weighted["sparse_confidence"]
        self.min_points_for_confidence = weighted["min_points_for_confidence"]

    def _estimate(self, ordered, target_date, historical):
        n = len(ordered)
        if n == 0:
            return None

        weights = np.arange(1, n + 1, dtype=float) / (n * (n + 1) / 2)
        amount = float(np.dot(weights, self._amounts(ordered)))

        confidence = self.full_confidence if n >= self.min_points_for_confidence else self.sparse_confidence
        return amount, confidence


def get_all_forecasters(config: dict | None = None) -> list[BaseAmountForecaster]:
    """Returns one instance of each forecaster, in the order they are tried."""
    return [
        TrendForecaster(config),
        SeasonalForecaster(config),
        WeightedForecaster(config),
    ]
