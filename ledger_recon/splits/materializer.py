"""
Split Materializer

Decomposes one ledger transaction (typically a credit card settlement)
into child transactions, one per statement line item.

Rules:
- A parent is split at most once; existing splits must be deleted first
- Children never get children of their own
- The line items must add up to the parent (magnitudes, within tolerance)
- All children are written in ONE store call, or none are

Pattern assignment on the new children runs afterwards as a best-effort
step; a failure there never undoes the split.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from ledger_recon.audit import AuditLogger
from ledger_recon.errors import (
    AlreadySplitError,
    AmountMismatchError,
    LedgerValidationError,
    NotFoundError,
)
from ledger_recon.hashing import split_hash
from ledger_recon.models.ledger import SplitCandidate, Transaction, TransactionType
from ledger_recon.models.money import MoneyInput, to_cents
from ledger_recon.patterns.assigner import PatternAssigner, enrich_best_effort
from ledger_recon.services.locking import KeyedLockRegistry
from ledger_recon.services.storage import LedgerStorageInterface
from ledger_recon.validation.validator import SplitCandidateValidator

logger = structlog.get_logger(__name__)


class SplitMaterializer:
    """Creates, lists and deletes split children of ledger transactions."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit: AuditLogger,
        locks: KeyedLockRegistry,
        validator: Optional[SplitCandidateValidator] = None,
        assigner: Optional[PatternAssigner] = None,
    ):
        self._storage = storage
        self._audit = audit
        self._locks = locks
        self._validator = validator or SplitCandidateValidator()
        self._assigner = assigner

    async def _get_parent(self, parent_id: UUID) -> Transaction:
        parent = await self._storage.get_transaction(parent_id)
        if parent is None:
            raise NotFoundError("transaction", parent_id)
        if parent.parent_id is not None:
            raise LedgerValidationError("parent_id", "a split child cannot be split again")
        return parent

    def _child_from_candidate(self, parent: Transaction, candidate: SplitCandidate) -> Transaction:
        return Transaction(
            account_id=parent.account_id,
            hash=split_hash(parent.id, candidate.date, candidate.description, candidate.amount),
            date=candidate.date,
            description=candidate.description,
            amount=candidate.amount,
            transaction_type=candidate.transaction_type,
            parent_id=parent.id,
            # Splits don't move money; they inherit the parent's balance snapshot
            balance_after=parent.balance_after,
            notes=candidate.notes,
            tag=candidate.tag,
            mutation_type=candidate.mutation_type,
            transaction_code=candidate.transaction_code,
            counterparty_account=candidate.counterparty_account,
        )

    async def create_splits(
        self,
        parent_id: UUID,
        candidates: list[SplitCandidate],
        correlation_id: Optional[UUID] = None,
    ) -> list[UUID]:
        """
        Split a parent into one child per candidate, in input order.

        Raises:
            NotFoundError: Parent does not exist
            LedgerValidationError: Parent is a child, or a candidate is malformed
            AlreadySplitError: Parent already has children
            AmountMismatchError: Candidates don't add up to the parent

        Returns:
            IDs of the created children
        """
        async with self._locks.hold("transaction", parent_id):
            parent = await self._get_parent(parent_id)

            existing = await self._storage.load_children_for([parent_id])
            if existing.get(parent_id):
                raise AlreadySplitError(parent_id)

            result = self._validator.validate(parent, candidates)
            if not result.schema_valid:
                first = result.errors[0]
                raise LedgerValidationError(first.field, first.message)
            if not result.semantic_valid:
                raise AmountMismatchError(
                    expected=result.expected_total,
                    actual=result.actual_total,
                    tolerance=self._validator.tolerance_cents,
                )
            for warning in result.warnings:
                logger.warning("split_candidate_warning", parent_id=str(parent_id), warning=warning)

            children = [self._child_from_candidate(parent, c) for c in candidates]
            await self._storage.add_transactions(children)

        child_ids = [child.id for child in children]
        logger.info(
            "splits_created",
            parent_id=str(parent_id),
            count=len(child_ids),
            total=result.actual_total,
        )
        await self._audit.log_splits_created(
            parent_id=parent_id,
            child_ids=child_ids,
            total=result.actual_total,
            correlation_id=correlation_id,
        )

        await enrich_best_effort(
            self._assigner, self._audit, parent.account_id, child_ids, correlation_id
        )
        return child_ids

    async def create_split(
        self,
        parent_id: UUID,
        day: date,
        description: str,
        amount: MoneyInput,
        category_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Add a single manual split.

        The type follows the sign of the amount. The sum against the
        parent is NOT checked: manual splits may be entered one at a time.
        """
        amount = to_cents(amount)
        description = description.strip()
        if not description:
            raise LedgerValidationError("description", "Description is required")
        if amount == 0:
            raise LedgerValidationError("amount", "Amount must not be zero")

        async with self._locks.hold("transaction", parent_id):
            parent = await self._get_parent(parent_id)
            candidate = SplitCandidate(
                date=day,
                description=description,
                amount=amount,
                transaction_type=TransactionType.for_amount(amount),
                tag=None,
            )
            child = self._child_from_candidate(parent, candidate)
            child.category_id = category_id
            await self._storage.add_transactions([child])

        await self._audit.log_splits_created(
            parent_id=parent_id,
            child_ids=[child.id],
            total=abs(amount),
            correlation_id=correlation_id,
        )
        if category_id is None:
            await enrich_best_effort(
                self._assigner, self._audit, parent.account_id, [child.id], correlation_id
            )
        return child

    async def delete_splits(
        self,
        parent_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Hard-delete every child of a parent. The parent is left untouched.

        Returns:
            Number of children deleted
        """
        async with self._locks.hold("transaction", parent_id):
            parent = await self._storage.get_transaction(parent_id)
            if parent is None:
                raise NotFoundError("transaction", parent_id)

            children = (await self._storage.load_children_for([parent_id])).get(parent_id, [])
            deleted = 0
            if children:
                deleted = await self._storage.delete_transactions([c.id for c in children])

        logger.info("splits_deleted", parent_id=str(parent_id), count=deleted)
        await self._audit.log_splits_deleted(parent_id, deleted, correlation_id)
        return deleted

    async def delete_split(
        self,
        split_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Hard-delete one child.

        Raises:
            NotFoundError: No such transaction
            LedgerValidationError: The transaction is not a split
        """
        split = await self._storage.get_transaction(split_id)
        if split is None:
            raise NotFoundError("transaction", split_id)
        if split.parent_id is None:
            raise LedgerValidationError("split_id", "Transaction is not a split")

        async with self._locks.hold("transaction", split.parent_id):
            await self._storage.delete_transactions([split_id])

        logger.info("split_deleted", split_id=str(split_id), parent_id=str(split.parent_id))
        await self._audit.log_split_deleted(split_id, split.parent_id, correlation_id)

    async def get_splits(self, parent_id: UUID) -> list[Transaction]:
        """Children of a parent (empty when it was never split)."""
        parent = await self._storage.get_transaction(parent_id)
        if parent is None:
            raise NotFoundError("transaction", parent_id)
        children = await self._storage.load_children_for([parent_id])
        return children.get(parent_id, [])
