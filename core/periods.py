"""
periods.py
-----------
Reporting-period bucketing shared by the forecast and the historic report.

Labels sort lexically in chronological order:
    monthly   → "2024-03"
    quarterly → "2024-Q1"
    yearly    → "2024"
    custom    → "2024-03-15" (grouping degrades custom to monthly)
"""

from collections import defaultdict
from datetime import date
from typing import Iterable, Sequence

from core.models import (
    Bill,
    HistoricPeriod,
    PeriodGranularity,
    PredictedOccurrence,
    PredictionPeriod,
    VendorTrend,
)


def format_period_label(value: date, period: "PeriodGranularity | str") -> str:
    period = PeriodGranularity.parse(period)

    if period == PeriodGranularity.MONTHLY:
        return value.strftime("%Y-%m")
    if period == PeriodGranularity.QUARTERLY:
        return f"{value.year}-Q{(value.month - 1) // 3 + 1}"
    if period == PeriodGranularity.YEARLY:
        return value.strftime("%Y")
    return value.strftime("%Y-%m-%d")


def grouping_granularity(period: "PeriodGranularity | str") -> PeriodGranularity:
    """Custom ranges are bucketed monthly."""
    period = PeriodGranularity.parse(period)
    return PeriodGranularity.MONTHLY if period == PeriodGranularity.CUSTOM else period


def group_predictions_by_period(
    occurrences: Iterable[PredictedOccurrence],
    period: "PeriodGranularity | str",
) -> list[PredictionPeriod]:
    """
    Bucket occurrences by due date.

    Returns:
        PredictionPeriods sorted by label, each with its occurrences sorted
        by due date.
    """
    granularity = grouping_granularity(period)
    buckets: dict[str, list[PredictedOccurrence]] = defaultdict(list)

    for occurrence in occurrences:
        buckets[format_period_label(occurrence.due_date, granularity)].append(occurrence)

    results = []
    for label in sorted(buckets):
        members = sorted(
            buckets[label],
            key=lambda o: (o.due_date, o.template_id, o.title, o.provenance.value),
        )
        results.append(
            PredictionPeriod(
                period_label=label,
                predicted_amount=round(sum(o.amount for o in members), 2),
                occurrence_count=len(members),
                occurrences=members,
            )
        )
    return results


def group_bills_by_period(
    bills: Iterable[Bill],
    period: "PeriodGranularity | str",
) -> list[HistoricPeriod]:
    """Historic report: actual bills bucketed by due date, same labels as the forecast."""
    granularity = grouping_granularity(period)
    buckets: dict[str, list[Bill]] = defaultdict(list)

    for bill in bills:
        buckets[format_period_label(bill.due_date, granularity)].append(bill)

    results = []
    for label in sorted(buckets):
        members = sorted(buckets[label], key=lambda b: (b.due_date, b.id))
        results.append(
            HistoricPeriod(
                period_label=label,
                total_amount=round(sum(float(b.amount) for b in members), 2),
                bill_count=len(members),
                bills=members,
            )
        )
    return results


def vendor_trends(
    bills: Iterable[Bill],
    vendor_ids: Sequence[str],
    period: "PeriodGranularity | str",
) -> list[VendorTrend]:
    """
    Per-vendor spending bucketed by period, one VendorTrend per requested
    vendor id (in request order, empty periods for vendors without bills).
    """
    bills = list(bills)
    return [
        VendorTrend(
            vendor_id=vendor_id,
            periods=group_bills_by_period([b for b in bills if b.vendor_id == vendor_id], period),
        )
        for vendor_id in vendor_ids
    ]
