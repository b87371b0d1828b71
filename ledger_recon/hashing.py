"""
Content hashes for idempotent imports.

The canonical field order and the integer-cents normalization must not
change: stored hashes of earlier imports are compared against these.
"""

import hashlib
from datetime import date
from typing import Optional
from uuid import UUID, uuid4

from ledger_recon.models.ledger import BankRecord

SPLIT_HASH_PREFIX = "SPLIT_"


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def bank_record_hash(record: BankRecord) -> str:
    """
    Hash of a bank statement row.

    Fields: date, description, account, counterparty, direction,
    amount (cents), balance after (cents).
    """
    fields = [
        record.date.isoformat(),
        record.description,
        record.account_number,
        record.counterparty_account,
        record.transaction_type.value,
        str(record.amount),
        str(record.balance_after) if record.balance_after is not None else "",
    ]
    return _sha256("|".join(fields))


def split_hash(
    parent_id: UUID,
    day: date,
    description: str,
    amount: int,
    nonce: Optional[str] = None,
) -> str:
    """
    Hash for a child created by splitting a parent.

    The nonce keeps otherwise identical line items (two equal purchases
    on one statement) from colliding.
    """
    nonce = nonce or uuid4().hex
    data = f"{parent_id}_{day.isoformat()}_{description}_{amount}_{nonce}"
    return SPLIT_HASH_PREFIX + _sha256(data)


def linked_child_hash(
    parent_id: UUID,
    reference: Optional[str],
    day: date,
    description: str,
    amount: int,
    nonce: Optional[str] = None,
) -> str:
    """
    Hash for a child created by reconciliation.

    With a source reference the hash is stable, so linking the same
    record to the same parent twice hits the unique index.
    """
    if reference:
        return _sha256(f"{parent_id}_{reference}")
    nonce = nonce or uuid4().hex
    return _sha256(f"{parent_id}_{day.isoformat()}_{description}_{amount}_{nonce}")
