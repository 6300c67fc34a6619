"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Bill / RecurrenceRule: Input records supplied by the bill repository.
  The engine only reads them, never mutates them.

- SyntheticBill: Virtual, non-persisted data point manufactured to give a
  sparse series enough history for forecasting. Never a Bill.

- DetectedPattern: Output of the historical pattern detector.

- PredictedOccurrence: Output of the orchestrator. One forecasted instance
  of a recurring series, grouped into PredictionPeriods for reporting.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import NamedTuple, Optional


# =============================================================================
# TAGS
# =============================================================================

class Frequency(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    BIANNUALLY = "BIANNUALLY"
    YEARLY = "YEARLY"


class Provenance(str, Enum):
    FROM_RULE = "from-rule"
    DETECTED_PATTERN = "detected-pattern"


class ForecastMethod(str, Enum):
    TREND = "trend"
    WEIGHTED = "weighted"
    SEASONAL = "seasonal"
    AVERAGE = "average"
    SYNTHETIC_FILL = "synthetic-fill"


class PeriodGranularity(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: "str | PeriodGranularity") -> "PeriodGranularity":
        """Accepts an enum member or its string value; raises ValueError otherwise."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown period granularity '{value}'. "
                f"Expected one of: {[p.value for p in cls]}"
            ) from None


class MatchingKey(NamedTuple):
    """(category, vendor, vendor account). Two bills belong to the same series iff keys are equal."""
    category_id: str
    vendor_id: Optional[str]
    vendor_account_id: Optional[str]


# =============================================================================
# INPUT RECORDS
# =============================================================================

@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    day_of_month: int                # 1–31, clamped to the month length on generation
    start_date: date
    end_date: Optional[date] = None


@dataclass(frozen=True)
class Bill:
    """
    A financial obligation as stored by the data-access layer.

    Bills carrying a recurrence_rule are the templates of explicit series.
    """

    id: str
    title: str
    amount: Decimal
    due_date: date
    category_id: str
    paid_date: Optional[date] = None
    vendor_id: Optional[str] = None
    vendor_account_id: Optional[str] = None
    recurrence_rule: Optional[RecurrenceRule] = None
    is_recurring: bool = False

    @property
    def matching_key(self) -> MatchingKey:
        return MatchingKey(self.category_id, self.vendor_id, self.vendor_account_id)


@dataclass(frozen=True)
class SyntheticBill:
    """Virtual bill placed at the rule interval around a sparse template."""
    template_id: str
    matching_key: MatchingKey
    due_date: date
    amount: float
    synthetic: bool = True


# =============================================================================
# ENGINE OUTPUTS
# =============================================================================

@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class RecurrenceDetection:
    """Result of interval analysis over one group of bills."""
    frequency: Optional[Frequency]
    confidence: float                # 0.0 – 1.0
    day_of_month: Optional[int] = None


@dataclass
class DetectedPattern:
    """
    A recurrence inferred from historical bills lacking an explicit rule.

    bills are sorted by due date.
    """

    bills: list[Bill]
    frequency: Optional[Frequency]
    confidence: float
    day_of_month: Optional[int] = None

    @property
    def matching_key(self) -> MatchingKey:
        return self.bills[0].matching_key

    @property
    def last_bill(self) -> Bill:
        return self.bills[-1]

    @property
    def mean_amount(self) -> float:
        return sum(float(b.amount) for b in self.bills) / len(self.bills)


@dataclass(frozen=True)
class ForecastResult:
    amount: float
    confidence: float
    method: ForecastMethod


@dataclass(frozen=True)
class PredictedOccurrence:
    """
    A forecasted instance of a recurring series. Transient, never persisted.

    When an actual bill fulfils the occurrence, actual_bill_id is set and
    amount/due_date/title come from that bill.
    """

    title: str
    amount: float
    due_date: date
    template_id: str
    matching_key: MatchingKey
    provenance: Provenance
    method: Optional[ForecastMethod] = None
    confidence: Optional[float] = None
    actual_bill_id: Optional[str] = None

    @property
    def is_actual(self) -> bool:
        return self.actual_bill_id is not None


@dataclass
class PredictionPeriod:
    period_label: str                # "2024-03" | "2024-Q1" | "2024"
    predicted_amount: float
    occurrence_count: int
    occurrences: list[PredictedOccurrence] = field(default_factory=list)


@dataclass
class HistoricPeriod:
    period_label: str
    total_amount: float
    bill_count: int
    bills: list[Bill] = field(default_factory=list)


@dataclass
class VendorTrend:
    vendor_id: str
    periods: list[HistoricPeriod] = field(default_factory=list)


@dataclass
class BudgetForecastReport:
    """Full orchestrator output — predictions plus the optional historic comparison."""
    period: PeriodGranularity
    predictions: list[PredictionPeriod] = field(default_factory=list)
    historic_data: Optional[list[HistoricPeriod]] = None
    rule_errors: dict[str, str] = field(default_factory=dict)   # template bill id → message
