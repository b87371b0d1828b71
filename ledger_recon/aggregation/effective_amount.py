"""
Effective-Amount Aggregation

Pure functions computing what a transaction contributes to category,
budget and period totals once some of its amount has been split off.

A split parent keeps its original amount. Its categorized children are
counted on their own, so the parent only contributes the remainder
(the adjusted amount). An uncategorized child contributes nothing: its
amount is still part of that remainder.

Nothing here touches storage. Callers load transactions together with
their direct children (see LedgerAggregator) and pass them in as nodes.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional, Sequence
from uuid import UUID

from ledger_recon.models.ledger import (
    CategoryTotal,
    MonthlyTotal,
    Transaction,
    TransactionNode,
    TransactionType,
)
from ledger_recon.models.money import month_of


def _remaining_magnitude(transaction: Transaction, children: Sequence[Transaction]) -> int:
    # Magnitudes throughout; transaction_type carries the direction.
    remaining = abs(transaction.amount)
    for child in children:
        if child.category_id is None:
            continue
        if child.transaction_type == transaction.transaction_type:
            remaining -= abs(child.amount)
        else:
            remaining += abs(child.amount)
    return remaining


def adjusted_amount(transaction: Transaction, children: Sequence[Transaction]) -> int:
    """
    Amount of `transaction` left after removing its categorized children.

    Children of the same type reduce the parent; children of the opposite
    type (a refund split off a purchase) enlarge it. The result carries
    the parent's sign.
    """
    if not children:
        return transaction.amount

    remaining = _remaining_magnitude(transaction, children)
    return -remaining if transaction.amount < 0 else remaining


def is_included(transaction: Transaction, children: Sequence[Transaction]) -> bool:
    """Whether the transaction takes part in totals at all."""
    if transaction.parent_id is not None and transaction.category_id is None:
        return False
    if not children:
        return True
    return adjusted_amount(transaction, children) != 0


def contribution(transaction: Transaction, children: Sequence[Transaction]) -> int:
    """
    Signed contribution to a total, in ledger sign.

    Spending (DEBIT) counts negative and compensation (CREDIT) positive,
    so a refund in an expense category offsets the purchases there.
    """
    if not is_included(transaction, children):
        return 0

    remaining = _remaining_magnitude(transaction, children)
    if transaction.transaction_type == TransactionType.DEBIT:
        return -remaining
    return remaining


def _node_contribution(node: TransactionNode) -> int:
    return contribution(node.transaction, node.children)


def _in_range(day: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from and day < date_from:
        return False
    if date_to and day > date_to:
        return False
    return True


def _select(
    nodes: Iterable[TransactionNode],
    category_ids: Optional[Iterable[UUID]],
    date_from: Optional[date],
    date_to: Optional[date],
) -> list[TransactionNode]:
    wanted = set(category_ids) if category_ids is not None else None
    return [
        node for node in nodes
        if (wanted is None or node.transaction.category_id in wanted)
        and _in_range(node.transaction.date, date_from, date_to)
    ]


def total_contribution(nodes: Iterable[TransactionNode]) -> int:
    return sum(_node_contribution(node) for node in nodes)


def category_total(
    nodes: Iterable[TransactionNode],
    category_ids: Iterable[UUID],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> int:
    """
    Sum of contributions of the nodes in any of `category_ids`.

    An empty category set yields 0.
    """
    category_ids = set(category_ids)
    if not category_ids:
        return 0
    return total_contribution(_select(nodes, category_ids, date_from, date_to))


def category_breakdown(
    nodes: Iterable[TransactionNode],
    category_ids: Iterable[UUID],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[CategoryTotal]:
    """
    Per-category totals, ordered by category id.

    Categories with no contributing transaction are left out.
    """
    category_ids = set(category_ids)
    if not category_ids:
        return []

    totals: dict[UUID, int] = defaultdict(int)
    counts: dict[UUID, int] = defaultdict(int)
    for node in _select(nodes, category_ids, date_from, date_to):
        if not is_included(node.transaction, node.children):
            continue
        category_id = node.transaction.category_id
        totals[category_id] += _node_contribution(node)
        counts[category_id] += 1

    return [
        CategoryTotal(
            category_id=category_id,
            total=totals[category_id],
            transaction_count=counts[category_id],
        )
        for category_id in sorted(counts, key=str)
    ]


def monthly_totals(
    nodes: Iterable[TransactionNode],
    transaction_type: Optional[TransactionType] = None,
    category_ids: Optional[Iterable[UUID]] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[MonthlyTotal]:
    """
    Contributions summed per calendar month, oldest month first.

    Months without any included transaction are absent.
    """
    totals: dict[str, int] = {}
    for node in _select(nodes, category_ids, date_from, date_to):
        tx = node.transaction
        if transaction_type is not None and tx.transaction_type != transaction_type:
            continue
        if not is_included(tx, node.children):
            continue
        month = month_of(tx.date)
        totals[month] = totals.get(month, 0) + _node_contribution(node)

    return [MonthlyTotal(month=month, total=total) for month, total in sorted(totals.items())]
