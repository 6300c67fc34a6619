"""
pattern_detector.py
--------------------
Historical recurrence detection for bills without an explicit rule.

This layer answers one question:

    "Do these unlabeled bills follow a regular billing cycle?"

Output: a DetectedPattern per qualifying group. The orchestrator expands
patterns that are not already covered by an explicit recurrence rule.

Design decisions:
    - Grouping key is the bill's MatchingKey (category, vendor, vendor
      account). Bills with no vendor group together only with other bills
      with no vendor.
    - Frequency is classified from the mean inter-bill gap against fixed
      day bands, not calendar binning.
    - All thresholds and weights are read from config.yaml.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from core.models import Bill, DetectedPattern, Frequency, RecurrenceDetection
from config.config_loader import get_pattern_detection_config

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["category_id", "vendor_id", "vendor_account_id"]


def coefficient_of_variation(values: np.ndarray) -> float:
    """
    Population std / mean. 1.0 when the mean is 0, so downstream
    confidence stays defined.
    """
    mean = float(np.mean(values))
    if mean == 0:
        return 1.0
    return float(np.std(values)) / mean


class HistoricalPatternDetector:
    """
    Detects recurring series among bills lacking a recurrence rule.

    Usage:
        detector = HistoricalPatternDetector()
        patterns = detector.detect(historical_bills)
    """

    def __init__(self, config: dict | None = None):
        self.config = config or get_pattern_detection_config()
        self.min_group_size = self.config["min_group_size"]
        self.min_pattern_confidence = self.config["min_pattern_confidence"]
        self.frequency_bands = self.config["frequency_bands"]
        self.confidence_weights = self.config["confidence_weights"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect(self, bills: Sequence[Bill]) -> List[DetectedPattern]:
        """
        Run pattern detection over a snapshot of bills.

        Bills that carry a recurrence rule are ignored — they already
        belong to an explicit series.

        Returns:
            List of DetectedPattern with a frequency and confidence above
            the acceptance threshold, in order of first appearance.
        """
        candidates = [b for b in bills if b.recurrence_rule is None]
        df = self._prepare(candidates)

        if df.empty:
            return []

        grouped = df.groupby(KEY_COLUMNS, dropna=False, sort=False)
        results: List[DetectedPattern] = []

        for key, group in grouped:
            # Filter: minimum group size gate
            if len(group) < self.min_group_size:
                continue

            pattern = self._build_detected_pattern([candidates[i] for i in group["position"]])
            if pattern is None:
                continue

            logger.debug(
                f"Pattern detected for {key}: {pattern.frequency.value} "
                f"(confidence={pattern.confidence:.3f}, bills={len(pattern.bills)})"
            )
            results.append(pattern)

        return results

    def detect_recurrence(self, bills: Sequence[Bill]) -> RecurrenceDetection:
        """
        Infer a recurrence from one group of bills.

        Logic:
            1. Sort by due date and compute consecutive gaps in days.
            2. Classify the mean gap against the configured frequency bands.
            3. Score confidence from gap consistency, sample size and
               amount consistency.
            4. For monthly series, infer the day of month as the mode.

        Returns:
            RecurrenceDetection. Frequency None and confidence 0 when there
            is too little data or the mean gap fits no band.
        """
        if len(bills) < self.min_group_size:
            return RecurrenceDetection(frequency=None, confidence=0.0)

        ordered = sorted(bills, key=lambda b: b.due_date)
        ordinals = np.array([b.due_date.toordinal() for b in ordered])
        gaps = np.diff(ordinals).astype(float)

        avg_interval = float(np.mean(gaps))
        frequency = self._classify_interval(avg_interval)
        if frequency is None:
            return RecurrenceDetection(frequency=None, confidence=0.0)

        interval_cv = coefficient_of_variation(gaps)
        amounts = np.array([float(b.amount) for b in ordered])
        amount_cv = coefficient_of_variation(amounts)

        confidence = self._compute_confidence(interval_cv, amount_cv, len(ordered))

        day_of_month = None
        if frequency == Frequency.MONTHLY:
            day_of_month = self._mode_day_of_month(ordered)

        return RecurrenceDetection(
            frequency=frequency,
            confidence=confidence,
            day_of_month=day_of_month,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: DATA PREPARATION
    # -------------------------------------------------------------------------

    def _prepare(self, bills: Sequence[Bill]) -> pd.DataFrame:
        """
        Flattens bills into a frame keyed by their position in the input,
        sorted by due date for gap calculations.
        """
        df = pd.DataFrame(
            [
                {
                    "position": i,
                    "due_date": pd.Timestamp(b.due_date),
                    "amount": float(b.amount),
                    "category_id": b.category_id,
                    "vendor_id": b.vendor_id,
                    "vendor_account_id": b.vendor_account_id,
                }
                for i, b in enumerate(bills)
            ],
            columns=["position", "due_date", "amount"] + KEY_COLUMNS,
        )

        return df.sort_values(["due_date", "position"], kind="mergesort").reset_index(drop=True)

    # -------------------------------------------------------------------------
    # INTERNAL: PATTERN CONSTRUCTION
    # -------------------------------------------------------------------------

    def _build_detected_pattern(self, group_bills: List[Bill]) -> Optional[DetectedPattern]:
        """
        Builds a DetectedPattern from one grouped set of bills.

        Returns None if the group is not regular enough to be recurring.
        """
        # Re-check every member against the first bill as template
        template_key = group_bills[0].matching_key
        members = [b for b in group_bills if b.matching_key == template_key]

        detection = self.detect_recurrence(members)
        if detection.frequency is None or detection.confidence <= self.min_pattern_confidence:
            return None

        return DetectedPattern(
            bills=sorted(members, key=lambda b: b.due_date),
            frequency=detection.frequency,
            confidence=detection.confidence,
            day_of_month=detection.day_of_month,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: SCORING
    # -------------------------------------------------------------------------

    def _classify_interval(self, avg_interval: float) -> Optional[Frequency]:
        for frequency_name, band in self.frequency_bands.items():
            if band["min_days"] <= avg_interval <= band["max_days"]:
                return Frequency(frequency_name)
        return None

    def _compute_confidence(self, interval_cv: float, amount_cv: float, count: int) -> float:
        """
        Weighted composite, clamped to [0, 1]:
            - consistency: 1 - interval CV
            - sample_size: count / divisor, capped
            - amount_consistency: 1 - amount CV (CV capped at 1)
        """
        w = self.confidence_weights

        consistency = max(0.0, 1.0 - interval_cv)
        sample_size = min(self.config["sample_size_cap"], count / self.config["sample_size_divisor"])
        amount_consistency = max(0.0, 1.0 - min(1.0, amount_cv))

        confidence = (
            w["consistency"] * consistency
            + w["sample_size"] * sample_size
            + w["amount_consistency"] * amount_consistency
        )

        return round(min(max(confidence, 0.0), 1.0), 4)

    @staticmethod
    def _mode_day_of_month(ordered_bills: Sequence[Bill]) -> int:
        """Most frequent day of month; on ties the day that reached the top count first wins."""
        counts: dict[int, int] = {}
        best_day = ordered_bills[0].due_date.day
        best_count = 0

        for bill in ordered_bills:
            day = bill.due_date.day
            counts[day] = counts.get(day, 0) + 1
            if counts[day] > best_count:
                best_count = counts[day]
                best_day = day

        return best_day


def detect_recurrence_from_history(bills: Sequence[Bill], config: dict | None = None) -> RecurrenceDetection:
    """Shortcut: interval analysis for a single group of bills."""
    return HistoricalPatternDetector(config).detect_recurrence(bills)


def analyze_historical_patterns(bills: Sequence[Bill], config: dict | None = None) -> List[DetectedPattern]:
    """Shortcut: full grouping + detection over a bill snapshot."""
    return HistoricalPatternDetector(config).detect(bills)
