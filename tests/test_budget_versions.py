"""
Tests for budget version resolution.
"""

from uuid import uuid4

import pytest
import pytest_asyncio

from ledger_recon.budgets import BudgetVersionService, plan_version_change, ranges_overlap
from ledger_recon.errors import (
    LastVersionProtectedError,
    LedgerValidationError,
    NotFoundError,
    OverlapConflictError,
)
from ledger_recon.models.ledger import Budget, BudgetVersion


def _version(budget_id, start, until=None, amount=10000):
    return BudgetVersion(
        budget_id=budget_id,
        monthly_amount=amount,
        effective_from_month=start,
        effective_until_month=until,
    )


class TestRangeRules:
    """Pure overlap and auto-close planning."""

    def test_ranges_overlap(self):
        assert ranges_overlap("2024-01", "2024-06", "2024-06", None)
        assert not ranges_overlap("2024-01", "2024-05", "2024-06", None)
        assert ranges_overlap("2024-01", None, "2030-01", "2030-02")

    def test_open_version_is_auto_closed(self):
        budget_id = uuid4()
        open_version = _version(budget_id, "2024-01")

        closures = plan_version_change([open_version], "2024-07", None)

        assert len(closures) == 1
        assert closures[0].id == open_version.id
        assert closures[0].effective_until_month == "2024-06"
        # input is left untouched
        assert open_version.effective_until_month is None

    def test_closing_across_year_boundary(self):
        closures = plan_version_change([_version(uuid4(), "2023-05")], "2024-01", None)
        assert closures[0].effective_until_month == "2023-12"

    def test_overlap_with_closed_version(self):
        existing = _version(uuid4(), "2024-01", "2024-06")

        with pytest.raises(OverlapConflictError) as exc_info:
            plan_version_change([existing], "2024-03", "2024-09")
        assert exc_info.value.conflicting_version_id == existing.id

    def test_new_range_before_open_version_conflicts(self):
        existing = _version(uuid4(), "2024-06")
        with pytest.raises(OverlapConflictError):
            plan_version_change([existing], "2024-01", None)

    def test_new_range_before_open_version_without_overlap(self):
        existing = _version(uuid4(), "2024-06")
        assert plan_version_change([existing], "2024-01", "2024-05") == []

    def test_excluded_version_is_ignored(self):
        existing = _version(uuid4(), "2024-01", "2024-06")
        assert plan_version_change([existing], "2024-02", "2024-04", exclude_id=existing.id) == []

    def test_from_must_precede_until(self):
        with pytest.raises(LedgerValidationError):
            plan_version_change([], "2024-05", "2024-05")
        with pytest.raises(LedgerValidationError):
            plan_version_change([], "2024-05", "2024-04")

    def test_malformed_month(self):
        with pytest.raises(LedgerValidationError):
            plan_version_change([], "2024-13", None)
        with pytest.raises(LedgerValidationError):
            plan_version_change([], "2024-01", "24-02")


class TestBudgetVersionService:
    """Version writes against the in-memory store."""

    @pytest.fixture
    def service(self, storage, audit, locks):
        return BudgetVersionService(storage, audit, locks)

    @pytest_asyncio.fixture
    async def budget(self, service, account_id):
        budget = Budget(account_id=account_id, name="Groceries")
        await service.create_budget(budget, 40000, "2024-01")
        return budget

    @pytest.mark.asyncio
    async def test_auto_close_on_new_version(self, service, budget, audit_storage):
        new_id = await service.create_or_update_version(budget.id, "2024-07", None, "450.00")

        versions = await service.list_versions(budget.id)
        assert [(v.effective_from_month, v.effective_until_month) for v in versions] == [
            ("2024-01", "2024-06"),
            ("2024-07", None),
        ]
        assert versions[1].id == new_id
        assert versions[1].monthly_amount == 45000

        event_types = [e.event_type.value for e in await audit_storage.get_recent_events()]
        assert "budget_version_auto_closed" in event_types

    @pytest.mark.asyncio
    async def test_version_for_month(self, service, budget):
        await service.create_or_update_version(budget.id, "2024-07", None, 45000)

        assert (await service.version_for_month(budget.id, "2024-03")).monthly_amount == 40000
        assert (await service.version_for_month(budget.id, "2025-01")).monthly_amount == 45000
        assert await service.version_for_month(budget.id, "2023-12") is None

    @pytest.mark.asyncio
    async def test_overlap_writes_nothing(self, service, budget):
        await service.create_or_update_version(budget.id, "2024-07", None, 45000)

        with pytest.raises(OverlapConflictError):
            await service.create_or_update_version(budget.id, "2024-03", "2024-08", 50000)

        versions = await service.list_versions(budget.id)
        assert len(versions) == 2
        assert versions[0].effective_until_month == "2024-06"

    @pytest.mark.asyncio
    async def test_update_existing_version(self, service, budget):
        version_id = await service.create_or_update_version(budget.id, "2024-07", None, 45000)

        await service.create_or_update_version(
            budget.id, "2024-07", None, 47500, change_reason="raise", version_id=version_id
        )

        updated = await service.get_version(version_id)
        assert updated.monthly_amount == 47500
        assert updated.change_reason == "raise"
        assert len(await service.list_versions(budget.id)) == 2

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, service, budget):
        with pytest.raises(LedgerValidationError):
            await service.create_or_update_version(budget.id, "2024-07", None, -1)

    @pytest.mark.asyncio
    async def test_unknown_budget_and_version(self, service, budget):
        with pytest.raises(NotFoundError):
            await service.create_or_update_version(uuid4(), "2024-07", None, 100)
        with pytest.raises(NotFoundError):
            await service.create_or_update_version(
                budget.id, "2024-07", None, 100, version_id=uuid4()
            )

    @pytest.mark.asyncio
    async def test_last_version_protected(self, service, budget):
        (only,) = await service.list_versions(budget.id)

        with pytest.raises(LastVersionProtectedError):
            await service.delete_version(only.id)
        assert len(await service.list_versions(budget.id)) == 1

    @pytest.mark.asyncio
    async def test_delete_version(self, service, budget):
        new_id = await service.create_or_update_version(budget.id, "2024-07", None, 45000)

        await service.delete_version(new_id)

        versions = await service.list_versions(budget.id)
        assert len(versions) == 1
        with pytest.raises(NotFoundError):
            await service.delete_version(new_id)
