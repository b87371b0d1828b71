"""
Shared fixtures for the ledger engine tests.

The in-memory store is the test double for every service; nothing here
talks to Google Sheets.
"""

from datetime import date
from itertools import count
from typing import Optional
from uuid import UUID, uuid4

import pytest

from ledger_recon.audit import AuditLogger
from ledger_recon.config import LedgerSettings
from ledger_recon.models.ledger import Transaction, TransactionType
from ledger_recon.services.locking import KeyedLockRegistry
from ledger_recon.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage

_hash_counter = count()


def make_transaction(
    account_id: UUID,
    day: date,
    amount: int,
    description: str = "",
    category_id: Optional[UUID] = None,
    parent_id: Optional[UUID] = None,
    transaction_type: Optional[TransactionType] = None,
    **kwargs,
) -> Transaction:
    """Build a transaction with a unique hash. Type defaults to the amount's sign."""
    return Transaction(
        account_id=account_id,
        hash=f"test-{next(_hash_counter)}",
        date=day,
        description=description,
        amount=amount,
        transaction_type=transaction_type or TransactionType.for_amount(amount),
        category_id=category_id,
        parent_id=parent_id,
        **kwargs,
    )


@pytest.fixture
def account_id() -> UUID:
    return uuid4()


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def locks() -> KeyedLockRegistry:
    return KeyedLockRegistry()


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings()
