"""
Aggregation Service

Loads "transactions plus their direct children" from the Ledger Store in
one batch and hands the resulting nodes to the pure functions in
effective_amount. Never issues one query per transaction.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

import structlog

from ledger_recon.aggregation import effective_amount
from ledger_recon.models.ledger import (
    CategoryTotal,
    MonthlyTotal,
    Transaction,
    TransactionNode,
    TransactionType,
)
from ledger_recon.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)


async def load_nodes(
    storage: LedgerStorageInterface,
    transactions: list[Transaction],
) -> list[TransactionNode]:
    """Attach direct children to each transaction with a single store call."""
    parent_ids = [tx.id for tx in transactions if tx.parent_id is None]
    children = await storage.load_children_for(parent_ids)
    return [
        TransactionNode(transaction=tx, children=children.get(tx.id, []))
        for tx in transactions
    ]


class LedgerAggregator:
    """Category, budget and period totals over the Ledger Store."""

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def _nodes(
        self,
        account_id: Optional[UUID] = None,
        category_ids: Optional[Iterable[UUID]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[TransactionNode]:
        transactions = await self._storage.list_transactions(
            account_id=account_id,
            category_ids=category_ids,
            date_from=date_from,
            date_to=date_to,
        )
        return await load_nodes(self._storage, transactions)

    async def compute_category_total(
        self,
        category_ids: Iterable[UUID],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> int:
        """
        Total contribution (cents) of the given categories in the period.

        Split parents only count their uncategorized remainder; categorized
        children count under their own category.
        """
        category_ids = set(category_ids)
        if not category_ids:
            return 0

        nodes = await self._nodes(category_ids=category_ids, date_from=date_from, date_to=date_to)
        total = effective_amount.category_total(nodes, category_ids, date_from, date_to)
        logger.debug(
            "category_total_computed",
            categories=len(category_ids),
            transactions=len(nodes),
            total=total,
        )
        return total

    async def compute_category_breakdown(
        self,
        category_ids: Iterable[UUID],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[CategoryTotal]:
        category_ids = set(category_ids)
        if not category_ids:
            return []

        nodes = await self._nodes(category_ids=category_ids, date_from=date_from, date_to=date_to)
        return effective_amount.category_breakdown(nodes, category_ids, date_from, date_to)

    async def compute_monthly_totals(
        self,
        account_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        category_ids: Optional[Iterable[UUID]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[MonthlyTotal]:
        """Per-month contributions of one account, oldest month first."""
        nodes = await self._nodes(
            account_id=account_id,
            category_ids=category_ids,
            date_from=date_from,
            date_to=date_to,
        )
        return effective_amount.monthly_totals(nodes, transaction_type=transaction_type)
