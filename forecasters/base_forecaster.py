"""
base_forecaster.py
--------------------
Abstract base class for all amount forecasters.

Each concrete forecaster (trend, seasonal, weighted) inherits from this.
Shared logic — series ordering, amount extraction, result rounding —
lives here so it's never duplicated.

Concrete forecasters only need to implement:
    - _estimate(): strategy-specific amount and confidence, or None when
      the strategy does not apply to the series.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Protocol, Sequence

import numpy as np

from core.models import ForecastMethod, ForecastResult
from config.config_loader import get_forecasting_config


class DatedAmount(Protocol):
    """Anything with a due date and an amount — a Bill or a SyntheticBill."""
    due_date: date
    amount: object


class BaseAmountForecaster(ABC):
    """
    Abstract base for amount forecasters.

    Subclasses implement _estimate(). This class handles ordering of the
    input series and ForecastResult construction.
    """

    def __init__(self, method: ForecastMethod, config: dict | None = None):
        self.method = method
        self.config = config or get_forecasting_config()

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def forecast(
        self,
        series: Sequence[DatedAmount],
        target_date: date,
        historical: Sequence[DatedAmount] | None = None,
    ) -> ForecastResult | None:
        """
        Attempt to forecast the amount due on target_date.

        Args:
            series: Recent bills of the same series (any order).
            target_date: Due date of the occurrence being forecast.
            historical: Broader history of the same series, for seasonality.

        Returns:
            ForecastResult if this strategy applies, None otherwise.
        """
        ordered = sorted(series, key=lambda b: b.due_date)
        estimate = self._estimate(ordered, target_date, list(historical or []))
        if estimate is None:
            return None

        amount, confidence = estimate
        return ForecastResult(
            amount=round(max(amount, 0.0), 2),
            confidence=round(confidence, 4),
            method=self.method,
        )

    # -------------------------------------------------------------------------
    # ABSTRACT METHODS — Implement in each forecaster
    # -------------------------------------------------------------------------

    @abstractmethod
    def _estimate(
        self,
        ordered: list[DatedAmount],
        target_date: date,
        historical: list[DatedAmount],
    ) -> tuple[float, float] | None:
        """
        Compute (amount, confidence) for target_date.

        Returns:
            Tuple if the strategy applies, None if it fails a gate
            (too few points, poor fit, no seasonal evidence).
        """
        ...

    # -------------------------------------------------------------------------
    # SHARED HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _amounts(series: Sequence[DatedAmount]) -> np.ndarray:
        return np.array([float(b.amount) for b in series], dtype=float)
