"""
Robust Monthly Statistics

Central values of monthly spending that stay useful when a few months
are outliers (a holiday, a new laptop). All arithmetic is exact
(Fraction); results are rounded half-to-even to whole cents.
"""

import math
from datetime import date
from fractions import Fraction
from typing import Optional, Sequence, Union
from uuid import UUID

import structlog

from ledger_recon.aggregation.effective_amount import monthly_totals
from ledger_recon.aggregation.service import load_nodes
from ledger_recon.config import LedgerSettings
from ledger_recon.errors import LedgerValidationError
from ledger_recon.models.ledger import (
    CategoryTrend,
    MonthlyStatistics,
    MonthlyTotal,
    TransactionType,
    Trend,
)
from ledger_recon.models.money import month_of
from ledger_recon.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)

MonthsArg = Union[int, str, None]


def _to_cents(value: Fraction) -> int:
    # round() on a Fraction rounds half to even
    return round(value)


def plain_average(values: Sequence[int]) -> int:
    if not values:
        return 0
    return _to_cents(Fraction(sum(values), len(values)))


def median(values: Sequence[int]) -> int:
    if not values:
        return 0
    ordered = sorted(values)
    count = len(ordered)
    middle = count // 2
    if count % 2:
        return ordered[middle]
    return _to_cents(Fraction(ordered[middle - 1] + ordered[middle], 2))


def trimmed_mean(values: Sequence[int], trim: float = 0.2) -> int:
    """
    Mean after dropping floor(n * trim) values from each end.

    Fewer than 4 values: plain average.
    """
    if not values:
        return 0
    count = len(values)
    if count < 4:
        return plain_average(values)

    ordered = sorted(values)
    trim_count = math.floor(count * Fraction(repr(trim)))
    kept = ordered[trim_count:count - trim_count]
    return plain_average(kept)


def iqr_mean(values: Sequence[int]) -> int:
    """
    Mean of the values inside [Q1 - 1.5*IQR, Q3 + 1.5*IQR].

    Q1 and Q3 are the sorted values at floor(n/4) and floor(3n/4).
    Fewer than 4 values: plain average.
    """
    if not values:
        return 0
    count = len(values)
    if count < 4:
        return plain_average(values)

    ordered = sorted(values)
    q1 = ordered[count // 4]
    q3 = ordered[(3 * count) // 4]
    spread = Fraction(3, 2) * (q3 - q1)
    lower = q1 - spread
    upper = q3 + spread

    kept = [v for v in ordered if lower <= v <= upper]
    return plain_average(kept)


def weighted_median(values: Sequence[int]) -> int:
    """
    Median where recent months count more.

    `values` are ordered most recent first; the value at index i is
    repeated n - i times. Fewer than 3 values: plain median.
    """
    if not values:
        return 0
    count = len(values)
    if count < 3:
        return median(values)

    weighted = []
    for index, value in enumerate(values):
        weighted.extend([value] * (count - index))
    return median(weighted)


class StatisticsService:
    """Monthly spending statistics and per-category trends for an account."""

    def __init__(self, storage: LedgerStorageInterface, settings: LedgerSettings):
        self._storage = storage
        self._settings = settings

    def _month_limit(self, months: MonthsArg) -> Optional[int]:
        if months is None:
            return self._settings.default_lookback_months
        if isinstance(months, str):
            if months.strip().lower() == "all":
                return None
            try:
                months = int(months)
            except ValueError:
                raise LedgerValidationError("months", "must be a positive number or 'all'")
        if isinstance(months, bool) or months < 1:
            raise LedgerValidationError("months", "must be a positive number or 'all'")
        return months

    async def monthly_statistics(
        self,
        account_id: UUID,
        months: MonthsArg = None,
        today: Optional[date] = None,
    ) -> MonthlyStatistics:
        """
        Robust statistics of monthly expense totals.

        The first month with data and the current month are left out as
        they are incomplete. Totals are expense magnitudes, most recent
        month first, limited to `months` months ("all" for no limit).
        """
        limit = self._month_limit(months)
        current_month = month_of(today or date.today())

        transactions = await self._storage.list_transactions(account_id=account_id)
        if not transactions:
            return MonthlyStatistics()

        first_month = min(month_of(tx.date) for tx in transactions)
        nodes = await load_nodes(self._storage, transactions)

        totals = [
            MonthlyTotal(month=t.month, total=abs(t.total))
            for t in monthly_totals(nodes, transaction_type=TransactionType.DEBIT)
            if first_month < t.month < current_month
        ]
        totals.reverse()
        if limit is not None:
            totals = totals[:limit]

        if not totals:
            return MonthlyStatistics()

        values = [t.total for t in totals]
        stats = MonthlyStatistics(
            median=median(values),
            trimmed_mean=trimmed_mean(values, self._settings.trim_percentage),
            iqr_mean=iqr_mean(values),
            weighted_median=weighted_median(values),
            plain_average=plain_average(values),
            month_count=len(values),
            monthly_totals=totals,
        )
        logger.debug(
            "monthly_statistics_computed",
            account_id=str(account_id),
            month_count=stats.month_count,
            median=stats.median,
        )
        return stats

    async def category_trend(self, account_id: UUID, category_id: UUID) -> CategoryTrend:
        """
        Median of the most recent months against the median of all months.

        Uses magnitudes, so a growing expense reads as "increasing".
        """
        transactions = await self._storage.list_transactions(
            account_id=account_id,
            category_ids=[category_id],
        )
        nodes = await load_nodes(self._storage, transactions)

        all_totals = [abs(t.total) for t in reversed(monthly_totals(nodes))]
        recent_totals = all_totals[:self._settings.default_lookback_months]

        median_all = median(all_totals)
        median_recent = median(recent_totals)

        trend = Trend.STABLE
        trend_percentage = 0.0
        if median_all > 0 and median_recent > 0:
            change = Fraction((median_recent - median_all) * 100, median_all)
            trend_percentage = float(round(change, 1))
            if trend_percentage > self._settings.trend_threshold_percent:
                trend = Trend.INCREASING
            elif trend_percentage < -self._settings.trend_threshold_percent:
                trend = Trend.DECREASING

        return CategoryTrend(
            median_recent=median_recent,
            median_all=median_all,
            trend=trend,
            trend_percentage=trend_percentage,
            months_recent=len(recent_totals),
            months_all=len(all_totals),
        )
