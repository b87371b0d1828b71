"""Budget version resolution."""

from ledger_recon.budgets.resolver import (
    BudgetVersionService,
    plan_version_change,
    ranges_overlap,
    validate_version_months,
)

__all__ = [
    "BudgetVersionService",
    "plan_version_change",
    "ranges_overlap",
    "validate_version_months",
]
