# SubVault: Vault - Renewal Schedule
#
# Pure functions over subscription dates and costs. No I/O, no state.
# The vault manager calls next_renewal() on every create/update; it is the
# only source of Subscription.renewal_date.

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from .models import PERMANENT_RENEWAL, FrequencyUnit, Subscription

_DAY_SECONDS = 24 * 60 * 60
_CENTS = Decimal("0.01")

CURRENCY_SYMBOLS = {
    "CNY": "¥",
    "USD": "$",
    "EUR": "€",
    "HKD": "HK$",
}

FREQUENCY_LABELS = {
    FrequencyUnit.DAYS: "天",
    FrequencyUnit.WEEKS: "周",
    FrequencyUnit.MONTHS: "月",
    FrequencyUnit.YEARS: "年",
}
PERMANENT_LABEL = "买断"

# Billing periods per month as (periods, months), used to normalise costs
_PER_MONTH = {
    FrequencyUnit.DAYS: (365, 12),
    FrequencyUnit.WEEKS: (52, 12),
    FrequencyUnit.MONTHS: (1, 1),
    FrequencyUnit.YEARS: (1, 12),
}


def _add_months(start: date, months: int) -> date:
    """
    Add calendar months keeping the day-of-month.

    A day that does not exist in the target month rolls over into the next
    one: 2024-01-31 + 1 month is 2024-03-02, 2023-01-31 + 1 month is
    2023-03-03. Blobs written by the web client were computed this way.
    """
    total = start.year * 12 + (start.month - 1) + months
    year, month_index = divmod(total, 12)
    first = date(year, month_index + 1, 1)
    return first + timedelta(days=start.day - 1)


def next_renewal(start_date: date, amount: int, unit: FrequencyUnit | str) -> date:
    """
    Next billing date for a subscription starting at ``start_date``.

    PERMANENT (and any date past the end of the calendar) maps to the
    9999-12-31 sentinel.
    """
    unit = FrequencyUnit(unit)
    if unit == FrequencyUnit.PERMANENT:
        return PERMANENT_RENEWAL
    if amount < 1:
        raise ValueError("Frequency amount must be at least 1")

    try:
        if unit == FrequencyUnit.DAYS:
            result = start_date + timedelta(days=amount)
        elif unit == FrequencyUnit.WEEKS:
            result = start_date + timedelta(weeks=amount)
        elif unit == FrequencyUnit.MONTHS:
            result = _add_months(start_date, amount)
        else:
            result = _add_months(start_date, amount * 12)
    except (ValueError, OverflowError):
        return PERMANENT_RENEWAL

    return min(result, PERMANENT_RENEWAL)


def _midnight_utc(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def days_remaining(renewal_date: date, now: Optional[datetime] = None) -> float:
    """
    Whole days until ``renewal_date`` (rounded up).

    Returns ``math.inf`` for the PERMANENT sentinel, a negative number once
    the date has passed.
    """
    if renewal_date >= PERMANENT_RENEWAL:
        return math.inf
    delta = _midnight_utc(renewal_date) - _as_utc(now)
    return math.ceil(delta.total_seconds() / _DAY_SECONDS)


def cycle_progress(start_date: date, renewal_date: date, now: Optional[datetime] = None) -> float:
    """Percentage (0-100) of the current billing cycle already elapsed."""
    if renewal_date >= PERMANENT_RENEWAL:
        return 100.0
    start = _midnight_utc(start_date)
    total = (_midnight_utc(renewal_date) - start).total_seconds()
    if total <= 0:
        return 100.0
    elapsed = (_as_utc(now) - start).total_seconds()
    return min(100.0, max(0.0, elapsed / total * 100))


def _plain_number(value) -> str:
    number = Decimal(str(value)).normalize()
    return format(number, "f")


def format_currency(currency: str, cost) -> str:
    """``format_currency("USD", 15.99)`` -> ``"$15.99"``."""
    return f"{CURRENCY_SYMBOLS.get(currency, currency)}{_plain_number(cost)}"


def format_frequency(amount: int, unit: FrequencyUnit | str) -> str:
    """``format_frequency(3, "MONTHS")`` -> ``"3月"``."""
    unit = FrequencyUnit(unit)
    if unit == FrequencyUnit.PERMANENT:
        return PERMANENT_LABEL
    return f"{amount}{FREQUENCY_LABELS[unit]}"


def monthly_cost(subscription: Subscription) -> Decimal:
    """Cost normalised to one month. One-off PERMANENT purchases count as zero."""
    if subscription.is_permanent:
        return Decimal(0)
    periods, months = _PER_MONTH[FrequencyUnit(subscription.frequency_unit)]
    return subscription.cost * periods / (months * subscription.frequency_amount)


@dataclass(frozen=True)
class CategorySpend:
    name: str
    amount: Decimal
    percentage: float


@dataclass(frozen=True)
class SpendingSummary:
    """Monthly/yearly totals plus a per-category breakdown."""

    total_monthly: Decimal
    total_yearly: Decimal
    categories: List[CategorySpend] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "totalMonthly": float(self.total_monthly),
            "totalYearly": float(self.total_yearly),
            "categories": [
                {"name": c.name, "amount": float(c.amount), "percentage": c.percentage}
                for c in self.categories
            ],
        }


def spending_summary(
    subscriptions: Iterable[Subscription],
    currency: Optional[str] = None,
) -> SpendingSummary:
    """
    Aggregate active subscriptions into monthly and yearly spend.

    Amounts in different currencies are never converted; pass ``currency``
    to restrict the summary to one of them.
    """
    by_category: Dict[str, Decimal] = {}
    for sub in subscriptions:
        if not sub.active or (currency and sub.currency != currency):
            continue
        amount = monthly_cost(sub)
        if amount == 0:
            continue
        name = sub.category or "Other"
        by_category[name] = by_category.get(name, Decimal(0)) + amount

    total = sum(by_category.values(), Decimal(0))
    categories = [
        CategorySpend(
            name=name,
            amount=amount.quantize(_CENTS, rounding=ROUND_HALF_UP),
            percentage=round(float(amount / total * 100), 2) if total else 0.0,
        )
        for name, amount in sorted(by_category.items(), key=lambda kv: kv[1], reverse=True)
    ]
    return SpendingSummary(
        total_monthly=total.quantize(_CENTS, rounding=ROUND_HALF_UP),
        total_yearly=(total * 12).quantize(_CENTS, rounding=ROUND_HALF_UP),
        categories=categories,
    )
