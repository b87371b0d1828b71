"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the Ledger Store.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

Every write method takes the complete set of rows it must change and
applies them all or none. That is the only transactional guarantee the
engine relies on.

Reads load "transactions plus their direct children" in batches
(load_children_for) instead of one query per row.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from ledger_recon.models.audit import AuditEvent
from ledger_recon.models.ledger import Budget, BudgetVersion, Pattern, Transaction


class TransactionStorageInterface(ABC):
    """
    Abstract interface for ledger transaction storage.

    Implementations must keep `hash` unique across all transactions.
    """

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        category_ids: Optional[Iterable[UUID]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters.

        Args:
            account_id: Only transactions of this account
            category_ids: Only transactions in one of these categories
            date_from: On or after this date
            date_to: On or before this date

        Returns:
            Matching transactions, oldest first
        """
        pass

    @abstractmethod
    async def load_children_for(
        self,
        parent_ids: Iterable[UUID],
    ) -> dict[UUID, list[Transaction]]:
        """
        Load the direct children of many parents in one call.

        Returns:
            {parent_id: [children]} for every parent that has children
        """
        pass

    @abstractmethod
    async def find_reconciliation_candidates(
        self,
        account_id: UUID,
        marker: str,
    ) -> list[Transaction]:
        """
        Transactions that may settle an external payment.

        Description contains `marker` (case-insensitive), not a child,
        and no children yet.

        Returns:
            Candidates, oldest first
        """
        pass

    @abstractmethod
    async def find_linked_references(
        self,
        account_id: UUID,
        tag: str,
    ) -> set[str]:
        """
        External references already linked as children.

        The reference of a linked child is kept in its notes field.
        """
        pass

    @abstractmethod
    async def existing_hashes(self, hashes: Iterable[str]) -> set[str]:
        """Return the subset of `hashes` that is already stored."""
        pass

    @abstractmethod
    async def add_transactions(self, transactions: list[Transaction]) -> None:
        """
        Insert new transactions atomically.

        Raises:
            DuplicateError: If an id or hash already exists (nothing is written)
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_transactions(self, transactions: list[Transaction]) -> None:
        """
        Replace existing transactions atomically.

        Raises:
            StorageError: If any transaction does not exist (nothing is written)
        """
        pass

    @abstractmethod
    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        """
        Hard-delete transactions atomically.

        Returns:
            Number of transactions deleted
        """
        pass


class BudgetStorageInterface(ABC):
    """
    Abstract interface for budget and budget version storage.

    The non-overlap invariant of versions is NOT enforced here.
    """

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def save_budget(self, budget: Budget) -> None:
        pass

    @abstractmethod
    async def get_budget_version(self, version_id: UUID) -> Optional[BudgetVersion]:
        pass

    @abstractmethod
    async def list_budget_versions(self, budget_id: UUID) -> list[BudgetVersion]:
        """
        All versions of a budget.

        Returns:
            Versions ordered by effective_from_month
        """
        pass

    @abstractmethod
    async def save_budget_versions(self, versions: list[BudgetVersion]) -> None:
        """
        Insert or replace versions atomically.

        Raises:
            StorageError: If the write fails (nothing is written)
        """
        pass

    @abstractmethod
    async def delete_budget_version(self, version_id: UUID) -> bool:
        """
        Delete a version by ID.

        Returns:
            True if a version was deleted
        """
        pass


class PatternStorageInterface(ABC):
    """Abstract interface for category-matching patterns."""

    @abstractmethod
    async def list_patterns(self, account_id: UUID) -> list[Pattern]:
        """
        All patterns of an account.

        Returns:
            Patterns in the order they were saved
        """
        pass

    @abstractmethod
    async def save_pattern(self, pattern: Pattern) -> None:
        """Insert or replace a pattern."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one engine call).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class LedgerStorageInterface(
    TransactionStorageInterface,
    BudgetStorageInterface,
    PatternStorageInterface,
):
    """The complete Ledger Store: transactions, budget versions and patterns."""
    pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity (id or hash)."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
