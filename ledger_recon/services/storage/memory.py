"""
In-Memory Storage Implementation

Used for tests and for single-process setups that don't need
persistence. Mirrors the persisted layout: transactions keyed by id with
a unique hash index and a parent index, versions keyed by id.

Each write validates the whole batch before touching any row, so a
failing batch leaves the store unchanged.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from ledger_recon.models.audit import AuditEvent
from ledger_recon.models.ledger import Budget, BudgetVersion, Pattern, Transaction
from ledger_recon.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dictionary-backed Ledger Store."""

    def __init__(self):
        self._transactions: dict[UUID, Transaction] = {}
        self._by_hash: dict[str, UUID] = {}
        self._children: dict[UUID, set[UUID]] = defaultdict(set)
        self._budgets: dict[UUID, Budget] = {}
        self._versions: dict[UUID, BudgetVersion] = {}
        self._patterns: dict[UUID, Pattern] = {}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        tx = self._transactions.get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        category_ids: Optional[Iterable[UUID]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        wanted = set(category_ids) if category_ids is not None else None

        result = []
        for tx in self._transactions.values():
            if account_id and tx.account_id != account_id:
                continue
            if wanted is not None and tx.category_id not in wanted:
                continue
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date > date_to:
                continue
            result.append(tx.model_copy(deep=True))

        result.sort(key=lambda t: t.date)
        return result

    async def load_children_for(
        self,
        parent_ids: Iterable[UUID],
    ) -> dict[UUID, list[Transaction]]:
        result = {}
        for parent_id in parent_ids:
            child_ids = self._children.get(parent_id)
            if not child_ids:
                continue
            children = [self._transactions[c].model_copy(deep=True) for c in child_ids]
            children.sort(key=lambda t: (t.date, t.created_at))
            result[parent_id] = children
        return result

    async def find_reconciliation_candidates(
        self,
        account_id: UUID,
        marker: str,
    ) -> list[Transaction]:
        marker = marker.lower()
        result = [
            tx.model_copy(deep=True)
            for tx in self._transactions.values()
            if tx.account_id == account_id
            and marker in tx.description.lower()
            and tx.parent_id is None
            and not self._children.get(tx.id)
        ]
        result.sort(key=lambda t: t.date)
        return result

    async def find_linked_references(self, account_id: UUID, tag: str) -> set[str]:
        return {
            tx.notes
            for tx in self._transactions.values()
            if tx.account_id == account_id
            and tx.parent_id is not None
            and tx.tag == tag
            and tx.notes
        }

    async def existing_hashes(self, hashes: Iterable[str]) -> set[str]:
        return {h for h in hashes if h in self._by_hash}

    async def add_transactions(self, transactions: list[Transaction]) -> None:
        batch_hashes: set[str] = set()
        batch_ids: set[UUID] = set()
        for tx in transactions:
            if tx.id in self._transactions or tx.id in batch_ids:
                raise DuplicateError(f"Transaction already exists: {tx.id}")
            if tx.hash in self._by_hash or tx.hash in batch_hashes:
                raise DuplicateError(f"Duplicate transaction hash: {tx.hash}")
            batch_ids.add(tx.id)
            batch_hashes.add(tx.hash)

        for tx in transactions:
            stored = tx.model_copy(deep=True)
            self._transactions[stored.id] = stored
            self._by_hash[stored.hash] = stored.id
            if stored.parent_id is not None:
                self._children[stored.parent_id].add(stored.id)

    async def update_transactions(self, transactions: list[Transaction]) -> None:
        for tx in transactions:
            current = self._transactions.get(tx.id)
            if current is None:
                raise StorageError(f"Transaction not found: {tx.id}")
            owner = self._by_hash.get(tx.hash)
            if owner is not None and owner != tx.id:
                raise DuplicateError(f"Duplicate transaction hash: {tx.hash}")

        for tx in transactions:
            current = self._transactions[tx.id]
            del self._by_hash[current.hash]
            if current.parent_id is not None:
                self._children[current.parent_id].discard(current.id)

            stored = tx.model_copy(deep=True)
            self._transactions[stored.id] = stored
            self._by_hash[stored.hash] = stored.id
            if stored.parent_id is not None:
                self._children[stored.parent_id].add(stored.id)

    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        deleted = 0
        for transaction_id in list(transaction_ids):
            tx = self._transactions.pop(transaction_id, None)
            if tx is None:
                continue
            self._by_hash.pop(tx.hash, None)
            if tx.parent_id is not None:
                self._children[tx.parent_id].discard(tx.id)
            # Children cascade with their parent
            for child_id in self._children.pop(tx.id, set()):
                child = self._transactions.pop(child_id, None)
                if child is not None:
                    self._by_hash.pop(child.hash, None)
                    deleted += 1
            deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        budget = self._budgets.get(budget_id)
        return budget.model_copy(deep=True) if budget else None

    async def save_budget(self, budget: Budget) -> None:
        self._budgets[budget.id] = budget.model_copy(deep=True)

    async def get_budget_version(self, version_id: UUID) -> Optional[BudgetVersion]:
        version = self._versions.get(version_id)
        return version.model_copy(deep=True) if version else None

    async def list_budget_versions(self, budget_id: UUID) -> list[BudgetVersion]:
        versions = [
            v.model_copy(deep=True)
            for v in self._versions.values()
            if v.budget_id == budget_id
        ]
        versions.sort(key=lambda v: v.effective_from_month)
        return versions

    async def save_budget_versions(self, versions: list[BudgetVersion]) -> None:
        for version in versions:
            if version.budget_id not in self._budgets:
                raise StorageError(f"Budget not found: {version.budget_id}")

        for version in versions:
            self._versions[version.id] = version.model_copy(deep=True)

    async def delete_budget_version(self, version_id: UUID) -> bool:
        return self._versions.pop(version_id, None) is not None

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    async def list_patterns(self, account_id: UUID) -> list[Pattern]:
        return [
            p.model_copy(deep=True)
            for p in self._patterns.values()
            if p.account_id == account_id
        ]

    async def save_pattern(self, pattern: Pattern) -> None:
        self._patterns[pattern.id] = pattern.model_copy(deep=True)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
