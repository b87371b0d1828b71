"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as the persistent backend because:
1. Households can inspect and correct their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (a household ledger is fine)
- No transactions: every write validates the whole batch against the
  current sheet first and then issues ONE batch call
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so a SQL backend can
replace it without changing business logic.
"""

import json
from datetime import date, datetime
from typing import Iterable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_recon.config import GoogleSheetsSettings, get_settings
from ledger_recon.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger_recon.models.ledger import (
    Budget,
    BudgetVersion,
    Pattern,
    Transaction,
    TransactionType,
)
from ledger_recon.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


# Column mappings for the Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "account_id",
    "hash",
    "date",
    "description",
    "amount_cents",
    "transaction_type",
    "category_id",
    "parent_id",
    "balance_after_cents",
    "notes",
    "tag",
    "mutation_type",
    "transaction_code",
    "counterparty_account",
    "created_at",
]

BUDGET_COLUMNS = [
    "id",
    "account_id",
    "name",
    "category_ids_json",
]

BUDGET_VERSION_COLUMNS = [
    "id",
    "budget_id",
    "monthly_amount_cents",
    "effective_from_month",
    "effective_until_month",
    "change_reason",
    "created_at",
]

# Criteria are stored as one JSON document per pattern
PATTERN_COLUMNS = [
    "id",
    "account_id",
    "pattern_json",
]

# Column mappings for the Audit sheet (matches AuditEvent.to_sheets_row)
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]

_api_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_getter(row: list):
    """Index into a sheet row, tolerating short rows."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    All sheet I/O of the storage classes goes through the methods below.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @_api_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_budgets_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.budgets_sheet_name, BUDGET_COLUMNS)

    def get_budget_versions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.budget_versions_sheet_name, BUDGET_VERSION_COLUMNS
        )

    def get_patterns_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.patterns_sheet_name, PATTERN_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self.get_worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)

    # ------------------------------------------------------------------
    # Batch I/O
    # ------------------------------------------------------------------

    @_api_retry
    def read_rows(self, sheet: gspread.Worksheet) -> list[list]:
        """All data rows (header excluded)."""
        return sheet.get_all_values()[1:]

    @_api_retry
    def append_rows(self, sheet: gspread.Worksheet, rows: list[list]) -> None:
        if rows:
            sheet.append_rows(rows, value_input_option="RAW")

    @_api_retry
    def update_rows(self, sheet: gspread.Worksheet, updates: dict[int, list]) -> None:
        """
        Overwrite whole rows in one batch call.

        Args:
            updates: {sheet row number (1-based, header is row 1): values}
        """
        if not updates:
            return
        data = [
            {
                "range": f"{rowcol_to_a1(row_number, 1)}:{rowcol_to_a1(row_number, len(values))}",
                "values": [values],
            }
            for row_number, values in sorted(updates.items())
        ]
        sheet.batch_update(data, value_input_option="RAW")

    def delete_rows(self, sheet: gspread.Worksheet, row_numbers: Iterable[int]) -> None:
        # Bottom-up so earlier deletions don't shift the remaining indexes.
        # Retries are per row: after a partial failure the old numbers are stale.
        for row_number in sorted(set(row_numbers), reverse=True):
            self._delete_row(sheet, row_number)

    @_api_retry
    def _delete_row(self, sheet: gspread.Worksheet, row_number: int) -> None:
        sheet.delete_rows(row_number)


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of the Ledger Store.

    Transactions, budgets and budget versions each live in their own
    worksheet, one entity per row. Money is stored as integer cents.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _transaction_to_row(self, tx: Transaction) -> list:
        """Convert a Transaction to a spreadsheet row."""
        return [
            str(tx.id),
            str(tx.account_id),
            tx.hash,
            tx.date.isoformat(),
            tx.description,
            str(tx.amount),
            tx.transaction_type.value,
            str(tx.category_id) if tx.category_id else "",
            str(tx.parent_id) if tx.parent_id else "",
            str(tx.balance_after) if tx.balance_after is not None else "",
            tx.notes,
            tx.tag or "",
            tx.mutation_type or "",
            tx.transaction_code or "",
            tx.counterparty_account or "",
            tx.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        """Convert a spreadsheet row to a Transaction."""
        safe_get = _safe_getter(row)

        return Transaction(
            id=UUID(safe_get(0)),
            account_id=UUID(safe_get(1)),
            hash=safe_get(2),
            date=date.fromisoformat(safe_get(3)),
            description=safe_get(4),
            amount=int(safe_get(5, "0")),
            transaction_type=TransactionType(safe_get(6)),
            category_id=UUID(safe_get(7)) if safe_get(7) else None,
            parent_id=UUID(safe_get(8)) if safe_get(8) else None,
            balance_after=int(safe_get(9)) if safe_get(9) else None,
            notes=safe_get(10),
            tag=safe_get(11) or None,
            mutation_type=safe_get(12) or None,
            transaction_code=safe_get(13) or None,
            counterparty_account=safe_get(14) or None,
            created_at=datetime.fromisoformat(safe_get(15)) if safe_get(15) else datetime.utcnow(),
        )

    def _budget_to_row(self, budget: Budget) -> list:
        return [
            str(budget.id),
            str(budget.account_id),
            budget.name,
            json.dumps([str(c) for c in budget.category_ids]),
        ]

    def _row_to_budget(self, row: list) -> Budget:
        safe_get = _safe_getter(row)
        return Budget(
            id=UUID(safe_get(0)),
            account_id=UUID(safe_get(1)),
            name=safe_get(2),
            category_ids=[UUID(c) for c in json.loads(safe_get(3, "[]"))],
        )

    def _version_to_row(self, version: BudgetVersion) -> list:
        return [
            str(version.id),
            str(version.budget_id),
            str(version.monthly_amount),
            version.effective_from_month,
            version.effective_until_month or "",
            version.change_reason or "",
            version.created_at.isoformat(),
        ]

    def _row_to_version(self, row: list) -> BudgetVersion:
        safe_get = _safe_getter(row)
        return BudgetVersion(
            id=UUID(safe_get(0)),
            budget_id=UUID(safe_get(1)),
            monthly_amount=int(safe_get(2, "0")),
            effective_from_month=safe_get(3),
            effective_until_month=safe_get(4) or None,
            change_reason=safe_get(5) or None,
            created_at=datetime.fromisoformat(safe_get(6)) if safe_get(6) else datetime.utcnow(),
        )

    def _load_transactions(self) -> tuple[gspread.Worksheet, list[tuple[int, Transaction]]]:
        """Read the whole Transactions sheet as (row number, transaction) pairs."""
        sheet = self._client.get_transactions_sheet()
        result = []
        for row_number, row in enumerate(self._client.read_rows(sheet), start=2):
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                result.append((row_number, self._row_to_transaction(row)))
            except Exception as e:
                logger.warning("malformed_transaction_row", row_number=row_number, error=str(e))
        return sheet, result

    def _load_versions(self) -> tuple[gspread.Worksheet, list[tuple[int, BudgetVersion]]]:
        sheet = self._client.get_budget_versions_sheet()
        result = []
        for row_number, row in enumerate(self._client.read_rows(sheet), start=2):
            if not row or not row[0]:
                continue
            try:
                result.append((row_number, self._row_to_version(row)))
            except Exception as e:
                logger.warning("malformed_budget_version_row", row_number=row_number, error=str(e))
        return sheet, result

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Retrieve a transaction by its ID."""
        try:
            _, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

        for _, tx in rows:
            if tx.id == transaction_id:
                return tx
        return None

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        category_ids: Optional[Iterable[UUID]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """List transactions with optional filters."""
        try:
            _, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        wanted = set(category_ids) if category_ids is not None else None

        transactions = []
        for _, tx in rows:
            # Apply filters
            if account_id and tx.account_id != account_id:
                continue
            if wanted is not None and tx.category_id not in wanted:
                continue
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date > date_to:
                continue
            transactions.append(tx)

        transactions.sort(key=lambda t: t.date)
        return transactions

    async def load_children_for(
        self,
        parent_ids: Iterable[UUID],
    ) -> dict[UUID, list[Transaction]]:
        """One sheet read for all requested parents."""
        wanted = set(parent_ids)
        if not wanted:
            return {}

        try:
            _, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to load split children: {e}")

        children: dict[UUID, list[Transaction]] = {}
        for _, tx in rows:
            if tx.parent_id in wanted:
                children.setdefault(tx.parent_id, []).append(tx)
        for items in children.values():
            items.sort(key=lambda t: (t.date, t.created_at))
        return children

    async def find_reconciliation_candidates(
        self,
        account_id: UUID,
        marker: str,
    ) -> list[Transaction]:
        try:
            _, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to find reconciliation candidates: {e}")

        marker = marker.lower()
        parents_with_children = {tx.parent_id for _, tx in rows if tx.parent_id}
        candidates = [
            tx for _, tx in rows
            if tx.account_id == account_id
            and marker in tx.description.lower()
            and tx.parent_id is None
            and tx.id not in parents_with_children
        ]
        candidates.sort(key=lambda t: t.date)
        return candidates

    async def find_linked_references(self, account_id: UUID, tag: str) -> set[str]:
        try:
            _, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to read linked references: {e}")

        return {
            tx.notes for _, tx in rows
            if tx.account_id == account_id
            and tx.parent_id is not None
            and tx.tag == tag
            and tx.notes
        }

    async def existing_hashes(self, hashes: Iterable[str]) -> set[str]:
        wanted = set(hashes)
        try:
            _, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to read transaction hashes: {e}")
        return {tx.hash for _, tx in rows if tx.hash in wanted}

    async def add_transactions(self, transactions: list[Transaction]) -> None:
        """Append all rows in one call after checking id and hash uniqueness."""
        if not transactions:
            return

        try:
            sheet, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to add transactions: {e}")

        known_ids = {tx.id for _, tx in rows}
        known_hashes = {tx.hash for _, tx in rows}
        for tx in transactions:
            if tx.id in known_ids:
                raise DuplicateError(f"Transaction already exists: {tx.id}")
            if tx.hash in known_hashes:
                raise DuplicateError(f"Duplicate transaction hash: {tx.hash}")
            known_ids.add(tx.id)
            known_hashes.add(tx.hash)

        try:
            self._client.append_rows(sheet, [self._transaction_to_row(tx) for tx in transactions])
        except Exception as e:
            raise StorageError(f"Failed to add transactions: {e}")

    async def update_transactions(self, transactions: list[Transaction]) -> None:
        if not transactions:
            return

        try:
            sheet, rows = self._load_transactions()
        except Exception as e:
            raise StorageError(f"Failed to update transactions: {e}")

        row_numbers = {tx.id: row_number for row_number, tx in rows}
        hash_owner = {tx.hash: tx.id for _, tx in rows}
        updates = {}
        for tx in transactions:
            if tx.id not in row_numbers:
                raise StorageError(f"Transaction not found: {tx.id}")
            owner = hash_owner.get(tx.hash)
            if owner is not None and owner != tx.id:
                raise DuplicateError(f"Duplicate transaction hash: {tx.hash}")
            updates[row_numbers[tx.id]] = self._transaction_to_row(tx)

        try:
            self._client.update_rows(sheet, updates)
        except Exception as e:
            raise StorageError(f"Failed to update transactions: {e}")

    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        """Delete the given rows and, for parents, their children."""
        wanted = set(transaction_ids)
        if not wanted:
            return 0

        try:
            sheet, rows = self._load_transactions()
            doomed = [
                row_number for row_number, tx in rows
                if tx.id in wanted or tx.parent_id in wanted
            ]
            self._client.delete_rows(sheet, doomed)
            return len(doomed)
        except Exception as e:
            raise StorageError(f"Failed to delete transactions: {e}")

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        try:
            sheet = self._client.get_budgets_sheet()
            for row in self._client.read_rows(sheet):
                if row and row[0] == str(budget_id):
                    return self._row_to_budget(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get budget: {e}")

    async def save_budget(self, budget: Budget) -> None:
        try:
            sheet = self._client.get_budgets_sheet()
            for row_number, row in enumerate(self._client.read_rows(sheet), start=2):
                if row and row[0] == str(budget.id):
                    self._client.update_rows(sheet, {row_number: self._budget_to_row(budget)})
                    return
            self._client.append_rows(sheet, [self._budget_to_row(budget)])
        except Exception as e:
            raise StorageError(f"Failed to save budget: {e}")

    async def get_budget_version(self, version_id: UUID) -> Optional[BudgetVersion]:
        try:
            _, rows = self._load_versions()
        except Exception as e:
            raise StorageError(f"Failed to get budget version: {e}")

        for _, version in rows:
            if version.id == version_id:
                return version
        return None

    async def list_budget_versions(self, budget_id: UUID) -> list[BudgetVersion]:
        try:
            _, rows = self._load_versions()
        except Exception as e:
            raise StorageError(f"Failed to list budget versions: {e}")

        versions = [v for _, v in rows if v.budget_id == budget_id]
        versions.sort(key=lambda v: v.effective_from_month)
        return versions

    async def save_budget_versions(self, versions: list[BudgetVersion]) -> None:
        """Upsert: rewrite known rows in one batch, append the rest in one batch."""
        if not versions:
            return

        try:
            sheet, rows = self._load_versions()
            row_numbers = {v.id: row_number for row_number, v in rows}

            updates = {}
            appends = []
            for version in versions:
                if version.id in row_numbers:
                    updates[row_numbers[version.id]] = self._version_to_row(version)
                else:
                    appends.append(self._version_to_row(version))

            self._client.update_rows(sheet, updates)
            self._client.append_rows(sheet, appends)
        except Exception as e:
            raise StorageError(f"Failed to save budget versions: {e}")

    async def delete_budget_version(self, version_id: UUID) -> bool:
        try:
            sheet, rows = self._load_versions()
            for row_number, version in rows:
                if version.id == version_id:
                    self._client.delete_rows(sheet, [row_number])
                    return True
            return False
        except Exception as e:
            raise StorageError(f"Failed to delete budget version: {e}")

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    async def list_patterns(self, account_id: UUID) -> list[Pattern]:
        try:
            sheet = self._client.get_patterns_sheet()
            rows = self._client.read_rows(sheet)
        except Exception as e:
            raise StorageError(f"Failed to list patterns: {e}")

        patterns = []
        for row in rows:
            if len(row) < 3 or row[1] != str(account_id):
                continue
            try:
                patterns.append(Pattern.model_validate_json(row[2]))
            except Exception as e:
                logger.warning("malformed_pattern_row", pattern_id=row[0], error=str(e))
        return patterns

    async def save_pattern(self, pattern: Pattern) -> None:
        new_row = [str(pattern.id), str(pattern.account_id), pattern.model_dump_json()]
        try:
            sheet = self._client.get_patterns_sheet()
            for row_number, row in enumerate(self._client.read_rows(sheet), start=2):
                if row and row[0] == str(pattern.id):
                    self._client.update_rows(sheet, {row_number: new_row})
                    return
            self._client.append_rows(sheet, [new_row])
        except Exception as e:
            raise StorageError(f"Failed to save pattern: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
        )

    def _read_events(self, predicate) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in self._client.read_rows(sheet):
            if not row or not row[0] or not predicate(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            self._client.append_rows(sheet, [event.to_sheets_row()])
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_append_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = self._read_events(
                lambda row: len(row) > 6 and row[6] == str(correlation_id)
            )
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = self._read_events(
                lambda row: len(row) > 5 and row[4] == entity_type and row[5] == str(entity_id)
            )
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._read_events(lambda row: True)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
