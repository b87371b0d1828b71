"""
Ledger Engine

Ties the components together behind one facade:
1. Aggregation (category totals, breakdowns, monthly statistics, trends)
2. Reconciliation (match / import / link external payment records)
3. Splits (create and delete split children)
4. Budget versions (create, update, delete with auto-close)
5. Bank import (idempotent on the content hash)

DESIGN DECISION: The engine enforces the boundaries:
- Every call gets its own correlation id
- Every rejected request is audited before the error reaches the caller
- Nothing here retries; storage retries live in the Sheets client

Components never read global settings themselves; the engine hands them
their values at construction.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

import structlog

from ledger_recon.aggregation import LedgerAggregator, StatisticsService
from ledger_recon.aggregation.statistics import MonthsArg
from ledger_recon.audit import AuditLogger, create_correlation_id
from ledger_recon.budgets import BudgetVersionService
from ledger_recon.config import LedgerSettings, Settings, get_settings
from ledger_recon.errors import LedgerError
from ledger_recon.hashing import bank_record_hash
from ledger_recon.models.ledger import (
    BankRecord,
    Budget,
    BudgetVersion,
    CategoryTotal,
    CategoryTrend,
    ExternalPaymentRecord,
    MonthlyStatistics,
    ReconciliationImportSummary,
    ReconciliationResult,
    SplitCandidate,
    Transaction,
)
from ledger_recon.models.money import MoneyInput
from ledger_recon.patterns import PatternAssigner, enrich_best_effort
from ledger_recon.reconciliation import ReconciliationService
from ledger_recon.services.locking import KeyedLockRegistry
from ledger_recon.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
)
from ledger_recon.splits import SplitMaterializer
from ledger_recon.validation import SplitCandidateValidator

logger = structlog.get_logger(__name__)


class LedgerEngine:
    """
    Entry point for every ledger operation.

    One engine owns one lock registry; share the engine (not the
    components) between concurrent callers so their critical sections
    actually serialize.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[KeyedLockRegistry] = None,
    ):
        self._storage = storage
        self._settings = settings or LedgerSettings()
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or KeyedLockRegistry()

        self._assigner = PatternAssigner(storage)
        self._aggregator = LedgerAggregator(storage)
        self._statistics = StatisticsService(storage, self._settings)
        self._reconciliation = ReconciliationService(
            storage, self._settings, self._audit, self._locks, assigner=self._assigner
        )
        self._splits = SplitMaterializer(
            storage,
            self._audit,
            self._locks,
            validator=SplitCandidateValidator(self._settings.split_tolerance_cents),
            assigner=self._assigner,
        )
        self._budgets = BudgetVersionService(storage, self._audit, self._locks)

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    @asynccontextmanager
    async def _operation(
        self,
        operation: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
    ) -> AsyncIterator[UUID]:
        """Hand out a correlation id and audit the call if it is rejected."""
        correlation_id = create_correlation_id()
        try:
            yield correlation_id
        except LedgerError as e:
            logger.info(
                "operation_rejected",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
                correlation_id=str(correlation_id),
            )
            await self._audit.log_operation_rejected(
                operation=operation,
                error=e,
                entity_type=entity_type,
                entity_id=entity_id,
                correlation_id=correlation_id,
            )
            raise

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    async def compute_category_total(
        self,
        category_ids: Iterable[UUID],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> int:
        return await self._aggregator.compute_category_total(category_ids, date_from, date_to)

    async def compute_category_breakdown(
        self,
        category_ids: Iterable[UUID],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[CategoryTotal]:
        return await self._aggregator.compute_category_breakdown(category_ids, date_from, date_to)

    async def monthly_statistics(
        self,
        account_id: UUID,
        months: MonthsArg = None,
        today: Optional[date] = None,
    ) -> MonthlyStatistics:
        async with self._operation("monthly_statistics", "account", account_id):
            return await self._statistics.monthly_statistics(account_id, months, today)

    async def category_trend(self, account_id: UUID, category_id: UUID) -> CategoryTrend:
        return await self._statistics.category_trend(account_id, category_id)

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def match_external_records(
        self,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
        skip_linked: bool = False,
    ) -> ReconciliationResult:
        async with self._operation("match_external_records", "account", account_id) as cid:
            return await self._reconciliation.match_external_records(
                account_id, records, skip_linked=skip_linked, correlation_id=cid
            )

    async def import_external_records(
        self,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
    ) -> ReconciliationImportSummary:
        async with self._operation("import_external_records", "account", account_id) as cid:
            return await self._reconciliation.import_external_records(
                account_id, records, correlation_id=cid
            )

    async def link_records(
        self,
        parent_id: UUID,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
    ) -> list[UUID]:
        async with self._operation("link_records", "transaction", parent_id) as cid:
            return await self._reconciliation.link_records(
                parent_id, account_id, records, correlation_id=cid
            )

    async def parse_without_matching(
        self,
        account_id: UUID,
        records: list[ExternalPaymentRecord],
    ) -> tuple[list[ExternalPaymentRecord], int]:
        return await self._reconciliation.parse_without_matching(account_id, records)

    async def list_unmatched_transactions(self, account_id: UUID) -> list[Transaction]:
        return await self._reconciliation.list_unmatched_transactions(account_id)

    # =========================================================================
    # SPLITS
    # =========================================================================

    async def create_splits(self, parent_id: UUID, candidates: list[SplitCandidate]) -> list[UUID]:
        async with self._operation("create_splits", "transaction", parent_id) as cid:
            return await self._splits.create_splits(parent_id, candidates, correlation_id=cid)

    async def create_split(
        self,
        parent_id: UUID,
        day: date,
        description: str,
        amount: MoneyInput,
        category_id: Optional[UUID] = None,
    ) -> Transaction:
        async with self._operation("create_split", "transaction", parent_id) as cid:
            return await self._splits.create_split(
                parent_id, day, description, amount, category_id, correlation_id=cid
            )

    async def delete_splits(self, parent_id: UUID) -> int:
        async with self._operation("delete_splits", "transaction", parent_id) as cid:
            return await self._splits.delete_splits(parent_id, correlation_id=cid)

    async def delete_split(self, split_id: UUID) -> None:
        async with self._operation("delete_split", "transaction", split_id) as cid:
            await self._splits.delete_split(split_id, correlation_id=cid)

    async def get_splits(self, parent_id: UUID) -> list[Transaction]:
        return await self._splits.get_splits(parent_id)

    # =========================================================================
    # BUDGET VERSIONS
    # =========================================================================

    async def create_budget(
        self,
        budget: Budget,
        monthly_amount: MoneyInput,
        effective_from_month: str,
        change_reason: Optional[str] = None,
    ) -> BudgetVersion:
        async with self._operation("create_budget", "budget", budget.id) as cid:
            return await self._budgets.create_budget(
                budget, monthly_amount, effective_from_month, change_reason, correlation_id=cid
            )

    async def create_or_update_budget_version(
        self,
        budget_id: UUID,
        effective_from_month: str,
        effective_until_month: Optional[str],
        monthly_amount: MoneyInput,
        change_reason: Optional[str] = None,
        version_id: Optional[UUID] = None,
    ) -> UUID:
        async with self._operation("save_budget_version", "budget", budget_id) as cid:
            return await self._budgets.create_or_update_version(
                budget_id,
                effective_from_month,
                effective_until_month,
                monthly_amount,
                change_reason=change_reason,
                version_id=version_id,
                correlation_id=cid,
            )

    async def delete_budget_version(self, version_id: UUID) -> None:
        async with self._operation("delete_budget_version", "budget_version", version_id) as cid:
            await self._budgets.delete_version(version_id, correlation_id=cid)

    async def list_budget_versions(self, budget_id: UUID) -> list[BudgetVersion]:
        return await self._budgets.list_versions(budget_id)

    async def budget_version_for_month(self, budget_id: UUID, month: str) -> Optional[BudgetVersion]:
        return await self._budgets.version_for_month(budget_id, month)

    # =========================================================================
    # BANK IMPORT
    # =========================================================================

    async def import_transactions(self, records: list[BankRecord]) -> tuple[int, int]:
        """
        Create ledger transactions from parsed bank rows.

        Rows whose hash is already stored, or repeated within the batch,
        are skipped. Each account's new rows are written in one call.

        Returns:
            (created, skipped)
        """
        by_account: dict[UUID, list[BankRecord]] = {}
        for record in records:
            by_account.setdefault(record.account_id, []).append(record)

        created = 0
        skipped = 0
        async with self._operation("import_transactions") as cid:
            for account_id, account_records in by_account.items():
                async with self._locks.hold("account", account_id):
                    new_transactions = await self._new_transactions(account_records)
                    if new_transactions:
                        await self._storage.add_transactions(new_transactions)

                created += len(new_transactions)
                skipped += len(account_records) - len(new_transactions)
                await enrich_best_effort(
                    self._assigner,
                    self._audit,
                    account_id,
                    [tx.id for tx in new_transactions],
                    cid,
                )

            logger.info("transactions_imported", created=created, skipped=skipped)
            await self._audit.log_transactions_imported(created, skipped, cid)
        return created, skipped

    async def _new_transactions(self, records: list[BankRecord]) -> list[Transaction]:
        hashed = [(bank_record_hash(record), record) for record in records]
        known = await self._storage.existing_hashes(h for h, _ in hashed)

        transactions = []
        for record_hash, record in hashed:
            if record_hash in known:
                continue
            known.add(record_hash)
            transactions.append(Transaction(
                account_id=record.account_id,
                hash=record_hash,
                date=record.date,
                description=record.description,
                amount=record.amount,
                transaction_type=record.transaction_type,
                balance_after=record.balance_after,
                notes=record.notes,
                tag=record.tag,
                mutation_type=record.mutation_type,
                transaction_code=record.transaction_code,
                counterparty_account=record.counterparty_account or None,
            ))
        return transactions


def create_app_components(
    settings: Optional[Settings] = None,
) -> LedgerEngine:
    """
    Factory function to build an engine for the configured backend.

    Args:
        settings: Root settings (default: cached environment settings)

    Returns:
        A ready LedgerEngine
    """
    settings = settings or get_settings()

    if settings.app.uses_google_sheets:
        client = GoogleSheetsClient(settings.google_sheets)
        storage = GoogleSheetsLedgerStorage(client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(client))
    else:
        storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    logger.info("engine_created", backend=settings.app.storage_backend)
    return LedgerEngine(storage, settings.ledger, audit_logger)
