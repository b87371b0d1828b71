"""
Reconciliation Service

Turns matched external payments into child transactions of the bank
transaction that settled them, so a single "PAYPAL *" bank line can be
broken down into the purchases behind it.

Flows:
- match_external_records: dry run, returns pairs and unmatched records
- import_external_records: match and create one child per pair
- link_records: the user picked the parent by hand
- parse_without_matching / list_unmatched_transactions: inputs for the
  manual flow

Each pair of an automatic import is written on its own. A failing pair
is logged and counted; it never undoes the pairs that succeeded.
"""

from typing import Optional
from uuid import UUID

import structlog

from ledger_recon.audit import AuditLogger
from ledger_recon.config import LedgerSettings
from ledger_recon.errors import LedgerValidationError, NotFoundError
from ledger_recon.hashing import linked_child_hash
from ledger_recon.models.ledger import (
    ExternalPaymentRecord,
    ReconciliationImportSummary,
    ReconciliationResult,
    Transaction,
    TransactionType,
)
from ledger_recon.patterns.assigner import PatternAssigner, enrich_best_effort
from ledger_recon.reconciliation.matcher import drop_linked, match_records
from ledger_recon.services.locking import KeyedLockRegistry
from ledger_recon.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)

EXTERNAL_MUTATION_TYPE = "PayPal"
EXTERNAL_TRANSACTION_CODE = "PP"


class ReconciliationService:
    """Matches external payment records and materializes them as children."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: LedgerSettings,
        audit: AuditLogger,
        locks: KeyedLockRegistry,
        assigner: Optional[PatternAssigner] = None,
    ):
        self._storage = storage
        self._settings = settings
        self._audit = audit
        self._locks = locks
        self._assigner = assigner

    def _child_from_record(self, parent: Transaction, record: ExternalPaymentRecord) -> Transaction:
        """Build the child transaction representing one external payment."""
        return Transaction(
            account_id=parent.account_id,
            hash=linked_child_hash(
                parent.id, record.reference, record.date, record.merchant, record.amount
            ),
            date=record.date,
            description=record.merchant,
            amount=record.amount,
            transaction_type=TransactionType.for_amount(record.amount),
            parent_id=parent.id,
            balance_after=parent.balance_after,
            notes=record.reference or "",
            tag=self._settings.external_tag,
            mutation_type=EXTERNAL_MUTATION_TYPE,
            transaction_code=EXTERNAL_TRANSACTION_CODE,
            counterparty_account=None,
        )

    async def _prefilter(
        self,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
    ) -> tuple[list[ExternalPaymentRecord], int]:
        linked = await self._storage.find_linked_references(account_id, self._settings.external_tag)
        return drop_linked(records, linked)

    async def match_external_records(
        self,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
        skip_linked: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Pair records with settlement candidates. Writes nothing.

        Args:
            skip_linked: Drop records whose reference is already linked first
        """
        already_linked = 0
        if skip_linked:
            records, already_linked = await self._prefilter(account_id, records)

        candidates = await self._storage.find_reconciliation_candidates(
            account_id, self._settings.external_marker
        )
        result = match_records(
            records,
            candidates,
            window_days=self._settings.match_window_days,
            tolerance=self._settings.amount_tolerance_cents,
        )
        result.already_linked = already_linked

        logger.info(
            "external_records_matched",
            account_id=str(account_id),
            records=len(records),
            candidates=len(candidates),
            matched=result.matched_count,
            unmatched=result.unmatched_count,
            already_linked=already_linked,
        )
        await self._audit.log_reconciliation_matched(
            account_id=account_id,
            matched=result.matched_count,
            unmatched=result.unmatched_count,
            already_linked=already_linked,
            correlation_id=correlation_id,
        )
        return result

    async def import_external_records(
        self,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
        skip_linked: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationImportSummary:
        """
        Match records and create one child per matched pair.

        Returns:
            Counts of parsed, matched, imported, skipped (unmatched),
            already linked and failed records
        """
        summary = ReconciliationImportSummary(parsed=len(records))
        if not records:
            return summary

        result = await self.match_external_records(
            account_id, records, skip_linked=skip_linked, correlation_id=correlation_id
        )
        summary.matched = result.matched_count
        summary.skipped = result.unmatched_count
        summary.already_linked = result.already_linked

        for pair in result.matches:
            try:
                child_id = await self._import_pair(pair.transaction_id, pair.record)
            except Exception as e:
                summary.failed += 1
                logger.warning(
                    "reconciliation_pair_failed",
                    account_id=str(account_id),
                    parent_id=str(pair.transaction_id),
                    reference=pair.record.reference,
                    error=str(e),
                )
                continue
            summary.imported += 1
            summary.created_ids.append(child_id)

        await self._audit.log_reconciliation_imported(
            account_id=account_id,
            imported=summary.imported,
            failed=summary.failed,
            correlation_id=correlation_id,
        )

        await enrich_best_effort(
            self._assigner, self._audit, account_id, summary.created_ids, correlation_id
        )
        return summary

    async def _import_pair(self, parent_id: UUID, record: ExternalPaymentRecord) -> UUID:
        async with self._locks.hold("transaction", parent_id):
            parent = await self._storage.get_transaction(parent_id)
            if parent is None:
                raise NotFoundError("transaction", parent_id)
            # Another request may have split or linked it since matching
            existing = await self._storage.load_children_for([parent_id])
            if existing.get(parent_id):
                raise LedgerValidationError("transaction_id", "settlement already has children")

            child = self._child_from_record(parent, record)
            await self._storage.add_transactions([child])
            return child.id

    async def link_records(
        self,
        parent_id: UUID,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
        correlation_id: Optional[UUID] = None,
    ) -> list[UUID]:
        """
        Attach hand-picked records to a chosen parent transaction.

        Records whose reference is already linked are ignored. All
        children are written in one store call.

        Raises:
            NotFoundError: Parent does not exist
            LedgerValidationError: Parent belongs to another account or is a child
        """
        async with self._locks.hold("transaction", parent_id):
            parent = await self._storage.get_transaction(parent_id)
            if parent is None:
                raise NotFoundError("transaction", parent_id)
            if parent.account_id != account_id:
                raise LedgerValidationError("parent_id", "transaction does not belong to this account")
            if parent.parent_id is not None:
                raise LedgerValidationError("parent_id", "a split child cannot have children")

            records, already_linked = await self._prefilter(account_id, records)
            children = [self._child_from_record(parent, record) for record in records]
            if children:
                await self._storage.add_transactions(children)

        child_ids = [child.id for child in children]
        logger.info(
            "external_records_linked",
            parent_id=str(parent_id),
            created=len(child_ids),
            already_linked=already_linked,
        )
        if child_ids:
            await self._audit.log_records_linked(parent_id, child_ids, correlation_id)
            await enrich_best_effort(
                self._assigner, self._audit, account_id, child_ids, correlation_id
            )
        return child_ids

    async def parse_without_matching(
        self,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
    ) -> tuple[list[ExternalPaymentRecord], int]:
        """
        Records the user can still link by hand.

        Returns:
            (records not yet linked, number already linked)
        """
        return await self._prefilter(account_id, records)

    async def list_unmatched_transactions(self, account_id: UUID) -> list[Transaction]:
        """Settlement candidates without children, newest first."""
        candidates = await self._storage.find_reconciliation_candidates(
            account_id, self._settings.external_marker
        )
        return sorted(candidates, key=lambda t: t.date, reverse=True)
