"""
Tests for category pattern matching and assignment.
"""

from datetime import date
from uuid import uuid4

import pytest
from pydantic import ValidationError

from conftest import make_transaction
from ledger_recon.audit import AuditLogger
from ledger_recon.models.ledger import MatchType, Pattern, TransactionType
from ledger_recon.patterns import PatternAssigner, enrich_best_effort, pattern_matches


class TestPatternMatching:
    """Single pattern against single transaction."""

    def test_like_is_case_insensitive_substring(self, account_id):
        pattern = Pattern(account_id=account_id, category_id=uuid4(), description="albert")
        tx = make_transaction(account_id, date(2024, 3, 1), -500, "ALBERT HEIJN 1234")
        assert pattern_matches(pattern, tx)

    def test_exact_match(self, account_id):
        pattern = Pattern(
            account_id=account_id,
            category_id=uuid4(),
            description="Rent",
            match_type_description=MatchType.EXACT,
        )
        assert pattern_matches(pattern, make_transaction(account_id, date(2024, 3, 1), -500, "Rent"))
        assert not pattern_matches(
            pattern, make_transaction(account_id, date(2024, 3, 1), -500, "Rent March")
        )

    def test_amount_and_date_bounds(self, account_id):
        pattern = Pattern(
            account_id=account_id,
            category_id=uuid4(),
            min_amount="-50.00",
            max_amount="-10.00",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31),
        )
        assert pattern_matches(pattern, make_transaction(account_id, date(2024, 3, 1), -2000))
        assert not pattern_matches(pattern, make_transaction(account_id, date(2024, 3, 1), -6000))
        assert not pattern_matches(pattern, make_transaction(account_id, date(2025, 3, 1), -2000))

    def test_type_and_tag(self, account_id):
        pattern = Pattern(
            account_id=account_id,
            category_id=uuid4(),
            transaction_type=TransactionType.CREDIT,
            tag="salary",
        )
        assert pattern_matches(pattern, make_transaction(account_id, date(2024, 3, 1), 300000, tag="salary"))
        assert not pattern_matches(pattern, make_transaction(account_id, date(2024, 3, 1), 300000))

    def test_non_strict_skips_categorized(self, account_id):
        pattern = Pattern(account_id=account_id, category_id=uuid4(), description="shop")
        tx = make_transaction(account_id, date(2024, 3, 1), -500, "Shop", category_id=uuid4())

        assert not pattern_matches(pattern, tx)
        assert pattern_matches(pattern.model_copy(update={"strict": True}), tx)

    def test_other_account_never_matches(self, account_id):
        pattern = Pattern(account_id=account_id, category_id=uuid4())
        assert not pattern_matches(pattern, make_transaction(uuid4(), date(2024, 3, 1), -500))

    def test_invalid_ranges_rejected(self, account_id):
        with pytest.raises(ValidationError):
            Pattern(
                account_id=account_id,
                category_id=uuid4(),
                start_date=date(2024, 5, 1),
                end_date=date(2024, 4, 1),
            )


class TestPatternAssigner:
    """Assignment through the store."""

    @pytest.mark.asyncio
    async def test_assign_restricted_to_ids(self, storage, account_id):
        groceries = uuid4()
        await storage.save_pattern(Pattern(account_id=account_id, category_id=groceries, description="market"))
        first = make_transaction(account_id, date(2024, 3, 1), -500, "Market A")
        second = make_transaction(account_id, date(2024, 3, 2), -700, "Market B")
        await storage.add_transactions([first, second])

        updated = await PatternAssigner(storage).assign(account_id, [first.id])

        assert updated == 1
        assert (await storage.get_transaction(first.id)).category_id == groceries
        assert (await storage.get_transaction(second.id)).category_id is None

    @pytest.mark.asyncio
    async def test_no_patterns(self, storage, account_id):
        await storage.add_transactions([make_transaction(account_id, date(2024, 3, 1), -500)])
        assert await PatternAssigner(storage).assign(account_id) == 0


class _BrokenAssigner(PatternAssigner):
    async def assign(self, account_id, transaction_ids=None):
        raise RuntimeError("pattern store unavailable")


class TestBestEffortEnrichment:
    """Enrichment failures never propagate."""

    @pytest.mark.asyncio
    async def test_failure_is_audited_not_raised(self, storage, audit_storage, account_id):
        audit = AuditLogger(audit_storage)

        updated = await enrich_best_effort(_BrokenAssigner(storage), audit, account_id, [uuid4()])

        assert updated == 0
        events = await audit_storage.get_recent_events()
        assert events[0].event_type.value == "enrichment_failed"
        assert events[0].error_message == "pattern store unavailable"

    @pytest.mark.asyncio
    async def test_nothing_to_enrich(self, storage, audit, account_id):
        assert await enrich_best_effort(None, audit, account_id, [uuid4()]) == 0
        assert await enrich_best_effort(PatternAssigner(storage), audit, account_id, []) == 0
