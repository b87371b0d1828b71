"""Effective-amount aggregation and monthly statistics."""

from ledger_recon.aggregation.effective_amount import (
    adjusted_amount,
    category_breakdown,
    category_total,
    contribution,
    is_included,
    monthly_totals,
    total_contribution,
)
from ledger_recon.aggregation.service import LedgerAggregator, load_nodes
from ledger_recon.aggregation.statistics import (
    StatisticsService,
    iqr_mean,
    median,
    plain_average,
    trimmed_mean,
    weighted_median,
)

__all__ = [
    "adjusted_amount",
    "category_breakdown",
    "category_total",
    "contribution",
    "is_included",
    "monthly_totals",
    "total_contribution",
    "LedgerAggregator",
    "load_nodes",
    "StatisticsService",
    "iqr_mean",
    "median",
    "plain_average",
    "trimmed_mean",
    "weighted_median",
]
