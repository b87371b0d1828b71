"""
Tests for split validation and materialization.
"""

import asyncio
from datetime import date
from uuid import uuid4

import pytest
import pytest_asyncio

from conftest import make_transaction
from ledger_recon.errors import (
    AlreadySplitError,
    AmountMismatchError,
    LedgerValidationError,
    NotFoundError,
)
from ledger_recon.hashing import SPLIT_HASH_PREFIX
from ledger_recon.models.ledger import Pattern, SplitCandidate, TransactionType
from ledger_recon.patterns import PatternAssigner
from ledger_recon.splits import SplitMaterializer
from ledger_recon.validation import SplitCandidateValidator


def _candidate(amount, description="Item", day=date(2024, 3, 1)):
    return SplitCandidate(
        date=day,
        description=description,
        amount=amount,
        transaction_type=TransactionType.for_amount(amount),
    )


class _BrokenAssigner(PatternAssigner):
    async def assign(self, account_id, transaction_ids=None):
        raise RuntimeError("pattern store unavailable")


class TestSplitCandidateValidator:
    """Two-stage validation of split line items."""

    def test_exact_sum_is_valid(self, account_id):
        parent = make_transaction(account_id, date(2024, 3, 1), -10000)
        result = SplitCandidateValidator().validate(parent, [_candidate(-6000), _candidate(-4000)])

        assert result.is_valid
        assert result.expected_total == 10000
        assert result.actual_total == 10000

    def test_one_cent_off_is_tolerated(self, account_id):
        parent = make_transaction(account_id, date(2024, 3, 1), -10000)
        validator = SplitCandidateValidator()

        assert validator.validate(parent, [_candidate(-6000), _candidate(-4001)]).is_valid
        assert validator.validate(parent, [_candidate(-6000), _candidate(-3999)]).is_valid

    def test_two_cents_off_is_rejected(self, account_id):
        parent = make_transaction(account_id, date(2024, 3, 1), -10000)
        result = SplitCandidateValidator().validate(parent, [_candidate(-6000), _candidate(-4002)])

        assert result.schema_valid
        assert not result.semantic_valid
        assert result.errors[0].issue_type == "amount_mismatch"
        assert "100.02" in result.errors[0].message

    def test_schema_errors_skip_semantic_stage(self, account_id):
        parent = make_transaction(account_id, date(2024, 3, 1), -10000)
        result = SplitCandidateValidator().validate(parent, [_candidate(0, description="")])

        assert not result.schema_valid
        assert not result.semantic_valid
        assert {issue.field for issue in result.errors} == {
            "candidates[0].description",
            "candidates[0].amount",
        }

    def test_empty_candidates(self, account_id):
        parent = make_transaction(account_id, date(2024, 3, 1), -10000)
        result = SplitCandidateValidator().validate(parent, [])
        assert not result.is_valid

    def test_type_sign_mismatch_is_a_warning(self, account_id):
        parent = make_transaction(account_id, date(2024, 3, 1), -10000)
        odd = SplitCandidate(
            date=date(2024, 3, 1),
            description="Odd",
            amount=-10000,
            transaction_type=TransactionType.CREDIT,
        )
        result = SplitCandidateValidator().validate(parent, [odd])

        assert result.is_valid
        assert len(result.warnings) == 1


class TestSplitMaterializer:
    """Creating and deleting split children."""

    @pytest.fixture
    def materializer(self, storage, audit, locks):
        return SplitMaterializer(storage, audit, locks)

    @pytest_asyncio.fixture
    async def parent(self, storage, account_id):
        tx = make_transaction(account_id, date(2024, 3, 5), -10000, "CC settlement", balance_after=5000)
        await storage.add_transactions([tx])
        return tx

    @pytest.mark.asyncio
    async def test_create_splits(self, materializer, storage, parent):
        ids = await materializer.create_splits(
            parent.id, [_candidate(-6000, "Hotel"), _candidate(-4000, "Train")]
        )

        assert len(ids) == 2
        children = await materializer.get_splits(parent.id)
        assert sorted(c.description for c in children) == ["Hotel", "Train"]
        for child in children:
            assert child.parent_id == parent.id
            assert child.account_id == parent.account_id
            assert child.balance_after == 5000
            assert child.hash.startswith(SPLIT_HASH_PREFIX)

    @pytest.mark.asyncio
    async def test_identical_line_items_get_distinct_hashes(self, materializer, parent):
        ids = await materializer.create_splits(
            parent.id, [_candidate(-5000, "Coffee"), _candidate(-5000, "Coffee")]
        )
        children = await materializer.get_splits(parent.id)
        assert len(ids) == 2
        assert len({c.hash for c in children}) == 2

    @pytest.mark.asyncio
    async def test_mismatch_writes_nothing(self, materializer, storage, parent):
        with pytest.raises(AmountMismatchError) as exc_info:
            await materializer.create_splits(parent.id, [_candidate(-6000), _candidate(-4002)])

        assert exc_info.value.expected == 10000
        assert exc_info.value.actual == 10002
        assert "(100.02)" in str(exc_info.value)
        assert "(100.00)" in str(exc_info.value)
        assert await materializer.get_splits(parent.id) == []

    @pytest.mark.asyncio
    async def test_already_split(self, materializer, parent):
        await materializer.create_splits(parent.id, [_candidate(-10000)])

        with pytest.raises(AlreadySplitError):
            await materializer.create_splits(parent.id, [_candidate(-10000)])

    @pytest.mark.asyncio
    async def test_concurrent_splits_on_same_parent(self, materializer, parent):
        results = await asyncio.gather(
            materializer.create_splits(parent.id, [_candidate(-10000, "A")]),
            materializer.create_splits(parent.id, [_candidate(-10000, "B")]),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], AlreadySplitError)
        assert len(await materializer.get_splits(parent.id)) == 1

    @pytest.mark.asyncio
    async def test_child_cannot_be_split(self, materializer, parent):
        child_id = (await materializer.create_splits(parent.id, [_candidate(-10000)]))[0]

        with pytest.raises(LedgerValidationError):
            await materializer.create_splits(child_id, [_candidate(-10000)])

    @pytest.mark.asyncio
    async def test_unknown_parent(self, materializer):
        with pytest.raises(NotFoundError):
            await materializer.create_splits(uuid4(), [_candidate(-100)])

    @pytest.mark.asyncio
    async def test_empty_candidates_rejected(self, materializer, parent):
        with pytest.raises(LedgerValidationError):
            await materializer.create_splits(parent.id, [])

    @pytest.mark.asyncio
    async def test_delete_splits_keeps_parent(self, materializer, storage, parent):
        await materializer.create_splits(parent.id, [_candidate(-6000), _candidate(-4000)])

        assert await materializer.delete_splits(parent.id) == 2
        assert await materializer.get_splits(parent.id) == []
        assert await storage.get_transaction(parent.id) is not None

        # can be split again afterwards
        await materializer.create_splits(parent.id, [_candidate(-10000)])

    @pytest.mark.asyncio
    async def test_delete_single_split(self, materializer, parent):
        ids = await materializer.create_splits(parent.id, [_candidate(-6000), _candidate(-4000)])

        await materializer.delete_split(ids[0])

        remaining = await materializer.get_splits(parent.id)
        assert [c.id for c in remaining] == [ids[1]]

    @pytest.mark.asyncio
    async def test_delete_split_rejects_parent(self, materializer, parent):
        with pytest.raises(LedgerValidationError):
            await materializer.delete_split(parent.id)

    @pytest.mark.asyncio
    async def test_create_single_manual_split(self, materializer, parent):
        category_id = uuid4()
        child = await materializer.create_split(
            parent.id, date(2024, 3, 2), "Dinner", "-12.50", category_id=category_id
        )

        assert child.amount == -1250
        assert child.transaction_type == TransactionType.DEBIT
        assert child.category_id == category_id

    @pytest.mark.asyncio
    async def test_manual_split_requires_description(self, materializer, parent):
        with pytest.raises(LedgerValidationError):
            await materializer.create_split(parent.id, date(2024, 3, 2), "  ", -100)

    @pytest.mark.asyncio
    async def test_patterns_applied_to_new_children(self, storage, audit, locks, parent):
        category_id = uuid4()
        await storage.save_pattern(Pattern(
            account_id=parent.account_id,
            category_id=category_id,
            description="hotel",
        ))
        materializer = SplitMaterializer(storage, audit, locks, assigner=PatternAssigner(storage))

        await materializer.create_splits(
            parent.id, [_candidate(-6000, "HOTEL Berlin"), _candidate(-4000, "Train")]
        )

        children = {c.description: c for c in await materializer.get_splits(parent.id)}
        assert children["HOTEL Berlin"].category_id == category_id
        assert children["Train"].category_id is None

    @pytest.mark.asyncio
    async def test_failing_assigner_keeps_children(self, storage, audit_storage, audit, locks, parent):
        materializer = SplitMaterializer(storage, audit, locks, assigner=_BrokenAssigner(storage))

        ids = await materializer.create_splits(
            parent.id, [_candidate(-6000, "Hotel"), _candidate(-4000, "Train")]
        )

        children = await materializer.get_splits(parent.id)
        assert sorted(c.id for c in children) == sorted(ids)
        events = await audit_storage.get_recent_events()
        assert "enrichment_failed" in {e.event_type.value for e in events}
