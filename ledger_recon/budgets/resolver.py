"""
Budget Version Resolver

A budget's monthly amount changes over time. Each change is a version
covering an inclusive range of months; the last version may be
open-ended.

Rules kept for every budget:
- Version ranges never overlap
- Only the latest version can be open-ended
- There is always at least one version

Adding a version that starts after the open-ended one closes the latter
the month before (auto-heal). Any other overlap is a conflict the user
has to resolve. Nothing is written when a conflict exists.
"""

from typing import Optional
from uuid import UUID

import structlog

from ledger_recon.audit import AuditLogger
from ledger_recon.errors import (
    LastVersionProtectedError,
    LedgerValidationError,
    NotFoundError,
    OverlapConflictError,
)
from ledger_recon.models.ledger import Budget, BudgetVersion
from ledger_recon.models.money import MoneyInput, is_valid_month, month_before, to_cents
from ledger_recon.services.locking import KeyedLockRegistry
from ledger_recon.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)

# Stand-in for "no end" when comparing ranges
_OPEN_END = "9999-12"


def ranges_overlap(
    start_a: str,
    end_a: Optional[str],
    start_b: str,
    end_b: Optional[str],
) -> bool:
    """Inclusive month ranges; a missing end extends indefinitely."""
    end_a = end_a or _OPEN_END
    end_b = end_b or _OPEN_END
    return start_a <= end_b and start_b <= end_a


def validate_version_months(effective_from_month: str, effective_until_month: Optional[str]) -> None:
    """
    Raises:
        LedgerValidationError: Malformed month, or from is not before until
    """
    if not effective_from_month or not is_valid_month(effective_from_month):
        raise LedgerValidationError("effective_from_month", "expected a YYYY-MM month")
    if effective_until_month is not None and not is_valid_month(effective_until_month):
        raise LedgerValidationError("effective_until_month", "expected a YYYY-MM month")
    if effective_until_month and effective_from_month >= effective_until_month:
        raise LedgerValidationError(
            "effective_until_month",
            "Effective from date must be before effective until date",
        )


def plan_version_change(
    existing: list[BudgetVersion],
    effective_from_month: str,
    effective_until_month: Optional[str],
    exclude_id: Optional[UUID] = None,
) -> list[BudgetVersion]:
    """
    Work out which versions must be closed to make room for a new range.

    Args:
        existing: Current versions of the budget
        effective_from_month: Start of the new range
        effective_until_month: End of the new range (None = open-ended)
        exclude_id: Version being edited, ignored for overlap checks

    Returns:
        Copies of the versions to close, with their new end month

    Raises:
        LedgerValidationError: Malformed range
        OverlapConflictError: The range overlaps a version that cannot be auto-closed
    """
    validate_version_months(effective_from_month, effective_until_month)

    closures = []
    for version in existing:
        if exclude_id is not None and version.id == exclude_id:
            continue

        can_auto_close = (
            version.effective_until_month is None
            and effective_from_month > version.effective_from_month
        )
        if can_auto_close:
            closures.append(version.model_copy(
                update={"effective_until_month": month_before(effective_from_month)}
            ))
            continue

        if ranges_overlap(
            effective_from_month,
            effective_until_month,
            version.effective_from_month,
            version.effective_until_month,
        ):
            raise OverlapConflictError(
                conflicting_version_id=version.id,
                effective_from_month=version.effective_from_month,
                effective_until_month=version.effective_until_month,
            )

    return closures


class BudgetVersionService:
    """Creates, edits and deletes budget versions under the resolver rules."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit: AuditLogger,
        locks: KeyedLockRegistry,
    ):
        self._storage = storage
        self._audit = audit
        self._locks = locks

    async def _get_budget(self, budget_id: UUID) -> Budget:
        budget = await self._storage.get_budget(budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)
        return budget

    async def create_budget(
        self,
        budget: Budget,
        monthly_amount: MoneyInput,
        effective_from_month: str,
        change_reason: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> BudgetVersion:
        """Store a new budget together with its first, open-ended version."""
        validate_version_months(effective_from_month, None)
        amount = self._checked_amount(monthly_amount)

        version = BudgetVersion(
            budget_id=budget.id,
            monthly_amount=amount,
            effective_from_month=effective_from_month,
            change_reason=change_reason,
        )
        async with self._locks.hold("budget", budget.id):
            await self._storage.save_budget(budget)
            await self._storage.save_budget_versions([version])

        await self._audit.log_budget_version_saved(
            version.id, budget.id, effective_from_month, None, correlation_id
        )
        return version

    def _checked_amount(self, monthly_amount: MoneyInput) -> int:
        try:
            amount = to_cents(monthly_amount)
        except ValueError as e:
            raise LedgerValidationError("monthly_amount", str(e))
        if amount < 0:
            raise LedgerValidationError("monthly_amount", "Monthly amount must not be negative")
        return amount

    async def create_or_update_version(
        self,
        budget_id: UUID,
        effective_from_month: str,
        effective_until_month: Optional[str],
        monthly_amount: MoneyInput,
        change_reason: Optional[str] = None,
        version_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> UUID:
        """
        Add a version, or change an existing one when `version_id` is given.

        Open-ended versions that start before the new range are closed the
        month before it. Closures and the saved version go to the store in
        one atomic write.

        Raises:
            LedgerValidationError: Malformed months or negative amount
            NotFoundError: Unknown budget or version
            OverlapConflictError: Overlap that cannot be auto-closed

        Returns:
            ID of the saved version
        """
        validate_version_months(effective_from_month, effective_until_month)
        amount = self._checked_amount(monthly_amount)

        async with self._locks.hold("budget", budget_id):
            await self._get_budget(budget_id)

            if version_id is not None:
                current = await self._storage.get_budget_version(version_id)
                if current is None or current.budget_id != budget_id:
                    raise NotFoundError("budget version", version_id)
                version = current.model_copy(update={
                    "monthly_amount": amount,
                    "effective_from_month": effective_from_month,
                    "effective_until_month": effective_until_month,
                    "change_reason": change_reason,
                })
            else:
                version = BudgetVersion(
                    budget_id=budget_id,
                    monthly_amount=amount,
                    effective_from_month=effective_from_month,
                    effective_until_month=effective_until_month,
                    change_reason=change_reason,
                )

            existing = await self._storage.list_budget_versions(budget_id)
            closures = plan_version_change(
                existing,
                effective_from_month,
                effective_until_month,
                exclude_id=version_id,
            )
            await self._storage.save_budget_versions(closures + [version])

        for closed in closures:
            logger.info(
                "budget_version_auto_closed",
                version_id=str(closed.id),
                budget_id=str(budget_id),
                until=closed.effective_until_month,
            )
            await self._audit.log_budget_version_auto_closed(
                closed.id, budget_id, closed.effective_until_month, correlation_id
            )

        await self._audit.log_budget_version_saved(
            version.id,
            budget_id,
            effective_from_month,
            effective_until_month,
            correlation_id,
        )
        return version.id

    async def delete_version(
        self,
        version_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            NotFoundError: Unknown version
            LastVersionProtectedError: It is the budget's only version
        """
        version = await self._storage.get_budget_version(version_id)
        if version is None:
            raise NotFoundError("budget version", version_id)

        async with self._locks.hold("budget", version.budget_id):
            versions = await self._storage.list_budget_versions(version.budget_id)
            if len(versions) <= 1:
                raise LastVersionProtectedError(version_id)
            await self._storage.delete_budget_version(version_id)

        await self._audit.log_budget_version_deleted(version_id, version.budget_id, correlation_id)

    async def list_versions(self, budget_id: UUID) -> list[BudgetVersion]:
        """All versions of a budget, oldest range first."""
        await self._get_budget(budget_id)
        return await self._storage.list_budget_versions(budget_id)

    async def get_version(self, version_id: UUID) -> BudgetVersion:
        version = await self._storage.get_budget_version(version_id)
        if version is None:
            raise NotFoundError("budget version", version_id)
        return version

    async def version_for_month(self, budget_id: UUID, month: str) -> Optional[BudgetVersion]:
        """The version in effect for a YYYY-MM month, if any."""
        if not is_valid_month(month):
            raise LedgerValidationError("month", "expected a YYYY-MM month")
        for version in await self.list_versions(budget_id):
            if version.is_effective_for_month(month):
                return version
        return None
