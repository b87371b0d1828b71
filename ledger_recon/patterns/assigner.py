"""
Pattern Assigner

Applies an account's category-matching patterns to transactions.
Used as a best-effort enrichment step after splits or reconciliation
children are created; callers decide whether its failures matter.
"""

from typing import Iterable, Optional
from uuid import UUID

import structlog

from ledger_recon.audit import AuditLogger
from ledger_recon.models.ledger import MatchType, Pattern, Transaction
from ledger_recon.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)


def _text_matches(value: Optional[str], expected: str, match_type: MatchType) -> bool:
    value = value or ""
    if match_type == MatchType.EXACT:
        return value == expected
    return expected.lower() in value.lower()


def pattern_matches(pattern: Pattern, tx: Transaction) -> bool:
    """True when every criterion set on the pattern holds for `tx`."""
    if tx.account_id != pattern.account_id:
        return False
    if pattern.start_date and tx.date < pattern.start_date:
        return False
    if pattern.end_date and tx.date > pattern.end_date:
        return False
    if pattern.min_amount is not None and tx.amount < pattern.min_amount:
        return False
    if pattern.max_amount is not None and tx.amount > pattern.max_amount:
        return False
    if pattern.transaction_type and tx.transaction_type != pattern.transaction_type:
        return False
    if pattern.description and not _text_matches(
        tx.description, pattern.description, pattern.match_type_description
    ):
        return False
    if pattern.notes and not _text_matches(tx.notes, pattern.notes, pattern.match_type_notes):
        return False
    if pattern.tag and tx.tag != pattern.tag:
        return False
    # Non-strict patterns never overwrite a category
    if not pattern.strict and tx.category_id is not None:
        return False
    return True


class PatternAssigner:
    """Sets category_id on transactions matched by the account's patterns."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def assign(
        self,
        account_id: UUID,
        transaction_ids: Optional[Iterable[UUID]] = None,
    ) -> int:
        """
        Apply every pattern of the account, in order.

        Args:
            account_id: Whose patterns to apply
            transaction_ids: Restrict to these transactions (default: whole account)

        Returns:
            Number of transactions whose category changed
        """
        patterns = await self._storage.list_patterns(account_id)
        if not patterns:
            return 0

        transactions = await self._storage.list_transactions(account_id=account_id)
        if transaction_ids is not None:
            wanted = set(transaction_ids)
            transactions = [tx for tx in transactions if tx.id in wanted]

        changed: dict[UUID, Transaction] = {}
        for pattern in patterns:
            for tx in transactions:
                if not pattern_matches(pattern, tx):
                    continue
                if tx.category_id == pattern.category_id:
                    continue
                tx.category_id = pattern.category_id
                changed[tx.id] = tx

        if changed:
            await self._storage.update_transactions(list(changed.values()))

        logger.info(
            "patterns_assigned",
            account_id=str(account_id),
            patterns=len(patterns),
            updated=len(changed),
        )
        return len(changed)


async def enrich_best_effort(
    assigner: Optional[PatternAssigner],
    audit: AuditLogger,
    account_id: UUID,
    transaction_ids: list[UUID],
    correlation_id: Optional[UUID] = None,
) -> int:
    """
    Run the assigner on freshly created transactions.

    Failures are logged and audited, never raised: the transactions are
    already committed and stay valid without a category.
    """
    if assigner is None or not transaction_ids:
        return 0
    try:
        return await assigner.assign(account_id, transaction_ids)
    except Exception as e:
        logger.warning(
            "pattern_enrichment_failed",
            account_id=str(account_id),
            transactions=len(transaction_ids),
            error=str(e),
        )
        await audit.log_enrichment_failed(
            step="pattern_assignment",
            error_message=str(e),
            entity_id=transaction_ids[0],
            correlation_id=correlation_id,
        )
        return 0
