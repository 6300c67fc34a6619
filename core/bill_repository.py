"""
bill_repository.py
-------------------
Read-only access to the bill snapshot the engine forecasts from.

The engine never fetches or mutates bills itself. Callers hand it the
four views this repository produces:

    - recurring templates (bills flagged recurring, optionally with a rule)
    - actual bills inside the analysis window
    - historical bills before the window (pattern and seasonal detection)
    - paid bills in a date range (historic comparison report)

Tabular input (CSV / DataFrame) is converted to Bill objects here.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List, Optional

import pandas as pd
from dateutil.relativedelta import relativedelta

from core.models import Bill, Frequency, RecurrenceRule
from config.config_loader import get_reporting_config


REQUIRED_COLUMNS = ["id", "title", "amount", "due_date", "category_id"]
DATE_COLUMNS = ["due_date", "paid_date", "rule_start_date", "rule_end_date"]


def _clean(value: Any) -> Any:
    """NaN / NaT / empty string → None."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if pd.isna(value):
        return None
    return value


def _as_date(value: Any) -> Optional[date]:
    value = _clean(value)
    if value is None:
        return None
    return pd.Timestamp(value).date()


def _as_id(value: Any) -> Optional[str]:
    value = _clean(value)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def _as_bool(value: Any) -> bool:
    value = _clean(value)
    if value is None:
        return False
    if isinstance(value, str):
        return value.lower() in {"true", "1", "yes", "y"}
    return bool(value)


def _build_rule(row: dict, due_date: date) -> Optional[RecurrenceRule]:
    frequency = _clean(row.get("frequency"))
    if frequency is None:
        return None

    day_of_month = _clean(row.get("day_of_month"))
    return RecurrenceRule(
        frequency=Frequency(str(frequency).upper()),
        day_of_month=int(float(day_of_month)) if day_of_month is not None else due_date.day,
        start_date=_as_date(row.get("rule_start_date")) or due_date,
        end_date=_as_date(row.get("rule_end_date")),
    )


def bills_from_dataframe(df: pd.DataFrame) -> List[Bill]:
    """
    Build Bill objects from a table.

    Args:
        df: Required columns id, title, amount, due_date, category_id.
            Optional: paid_date, vendor_id, vendor_account_id, is_recurring,
            frequency, day_of_month, rule_start_date, rule_end_date.

    Returns:
        One Bill per row, in row order. A row with a frequency carries a
        RecurrenceRule and is flagged recurring.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    bills: List[Bill] = []
    for row in df.to_dict("records"):
        due_date = _as_date(row["due_date"])
        rule = _build_rule(row, due_date)

        bills.append(
            Bill(
                id=_as_id(row["id"]),
                title=str(row["title"]),
                amount=Decimal(str(_clean(row["amount"]) or 0)),
                due_date=due_date,
                category_id=_as_id(row["category_id"]),
                paid_date=_as_date(row.get("paid_date")),
                vendor_id=_as_id(row.get("vendor_id")),
                vendor_account_id=_as_id(row.get("vendor_account_id")),
                recurrence_rule=rule,
                is_recurring=_as_bool(row.get("is_recurring")) or rule is not None,
            )
        )

    return bills


class BillRepository:
    """
    In-memory bill snapshot.

    Usage:
        repository = BillRepository.from_csv("bills.csv")
        templates = repository.recurring_templates()
    """

    def __init__(self, bills: Iterable[Bill]):
        self._bills: List[Bill] = list(bills)
        self.config = get_reporting_config()

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "BillRepository":
        return cls(bills_from_dataframe(df))

    @classmethod
    def from_csv(cls, path: str) -> "BillRepository":
        return cls.from_dataframe(pd.read_csv(path, dtype=str))

    # -------------------------------------------------------------------------
    # VIEWS
    # -------------------------------------------------------------------------

    def all_bills(self) -> List[Bill]:
        return list(self._bills)

    def recurring_templates(self) -> List[Bill]:
        """Bills flagged recurring; only those with a rule generate occurrences."""
        return [b for b in self._bills if b.is_recurring]

    def actual_bills(self, start_date: date, end_date: date) -> List[Bill]:
        """Bills due inside [start_date, end_date]."""
        return [b for b in self._bills if start_date <= b.due_date <= end_date]

    def historical_bills(self, start_date: date, years_back: int | None = None) -> List[Bill]:
        """Bills due in the years_back years up to and including start_date."""
        if years_back is None:
            years_back = self.config["historical_years_back"]
        window_start = start_date - relativedelta(years=years_back)
        return [b for b in self._bills if window_start <= b.due_date <= start_date]

    def paid_bills(self, start_date: date, end_date: date) -> List[Bill]:
        """Bills paid inside [start_date, end_date] (by paid date)."""
        return [
            b for b in self._bills
            if b.paid_date is not None and start_date <= b.paid_date <= end_date
        ]

    def __len__(self) -> int:
        return len(self._bills)

    def __repr__(self) -> str:
        return f"BillRepository(bills={len(self)})"
