"""
Reconciliation Matcher

Pairs externally-reported payments (a PayPal export, a pasted list) with
the ledger transactions that settled them.

The algorithm is a deterministic FIFO greedy match:
- records are processed oldest first
- each record takes the OLDEST unused candidate whose amount magnitude is
  within the tolerance and whose date falls in [record date, record date + window]
- a candidate is used at most once

Both sorts are stable, so equal dates keep their input order and the same
input always yields the same pairs.
"""

from datetime import timedelta
from typing import Iterable, Sequence

from ledger_recon.models.ledger import (
    ExternalPaymentRecord,
    MatchPair,
    ReconciliationResult,
    Transaction,
)


def amounts_match(record_amount: int, transaction_amount: int, tolerance: int) -> bool:
    """Compare magnitudes only; the two sources disagree on sign conventions."""
    return abs(abs(record_amount) - abs(transaction_amount)) <= tolerance


def match_records(
    records: Sequence[ExternalPaymentRecord],
    candidates: Sequence[Transaction],
    window_days: int = 5,
    tolerance: int = 1,
) -> ReconciliationResult:
    """
    Match external records to candidate settlement transactions.

    Args:
        records: External payments, any order
        candidates: Ledger transactions eligible for settlement
        window_days: How many days after the record a settlement may be booked
        tolerance: Maximum amount difference in cents

    Returns:
        Pairs and unmatched records. Unmatched records are not an error.
    """
    ordered_records = sorted(records, key=lambda r: r.date)
    ordered_candidates = sorted(candidates, key=lambda t: t.date)
    window = timedelta(days=window_days)

    used = [False] * len(ordered_candidates)
    result = ReconciliationResult()

    for record in ordered_records:
        latest = record.date + window
        for index, candidate in enumerate(ordered_candidates):
            if used[index]:
                continue
            if candidate.date < record.date or candidate.date > latest:
                continue
            if not amounts_match(record.amount, candidate.amount, tolerance):
                continue
            used[index] = True
            result.matches.append(MatchPair(record=record, transaction_id=candidate.id))
            break
        else:
            result.unmatched.append(record)

    return result


def drop_linked(
    records: Iterable[ExternalPaymentRecord],
    linked_references: set[str],
) -> tuple[list[ExternalPaymentRecord], int]:
    """
    Remove records whose reference is already linked to a ledger transaction.

    Records without a reference are always kept.

    Returns:
        (remaining records, number dropped)
    """
    remaining = []
    dropped = 0
    for record in records:
        if record.reference and record.reference in linked_references:
            dropped += 1
            continue
        remaining.append(record)
    return remaining, dropped
