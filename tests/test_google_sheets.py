"""
Tests for the Google Sheets backend.

A fake worksheet stands in for gspread; no network access happens.
"""

from datetime import date
from uuid import uuid4

import pytest
from gspread.utils import a1_to_rowcol
from tenacity import wait_none

from conftest import make_transaction
from ledger_recon.config import GoogleSheetsSettings
from ledger_recon.models.audit import AuditEventBuilder
from ledger_recon.models.ledger import Budget, BudgetVersion, Pattern
from ledger_recon.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)
from ledger_recon.services.storage.google_sheets import TRANSACTION_COLUMNS


class FakeWorksheet:
    """The subset of gspread.Worksheet the client uses."""

    def __init__(self, title, header):
        self.title = title
        self.rows = [list(header)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values):
        self.rows.append(list(values))

    def append_rows(self, values, value_input_option=None):
        self.rows.extend(list(row) for row in values)

    def batch_update(self, data, value_input_option=None):
        for entry in data:
            row_number, _ = a1_to_rowcol(entry["range"].split(":")[0])
            self.rows[row_number - 1] = list(entry["values"][0])

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient(GoogleSheetsClient):
    """GoogleSheetsClient whose worksheets live in memory."""

    def __init__(self, settings):
        super().__init__(settings)
        self.sheets = {}

    def get_worksheet(self, title, columns, rows=1000):
        if title not in self.sheets:
            self.sheets[title] = FakeWorksheet(title, columns)
        return self.sheets[title]


@pytest.fixture
def sheets_client(tmp_path):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}")
    settings = GoogleSheetsSettings(credentials_path=str(credentials), spreadsheet_id="sheet-id")
    return FakeSheetsClient(settings)


@pytest.fixture
def sheets_storage(sheets_client):
    return GoogleSheetsLedgerStorage(sheets_client)


class TestSheetsTransactions:
    """Transactions worksheet round trips."""

    @pytest.mark.asyncio
    async def test_add_and_read_back(self, sheets_storage, sheets_client, account_id):
        tx = make_transaction(
            account_id, date(2024, 3, 1), -1250, "Bakery", balance_after=99000, tag="food"
        )
        await sheets_storage.add_transactions([tx])

        stored = await sheets_storage.get_transaction(tx.id)
        assert stored.amount == -1250
        assert stored.balance_after == 99000
        assert stored.tag == "food"
        assert stored.category_id is None

        sheet = sheets_client.sheets["Transactions"]
        assert sheet.rows[0] == TRANSACTION_COLUMNS
        assert sheet.rows[1][5] == "-1250"

    @pytest.mark.asyncio
    async def test_duplicate_hash_rejects_whole_batch(self, sheets_storage, account_id):
        tx = make_transaction(account_id, date(2024, 3, 1), -100)
        await sheets_storage.add_transactions([tx])

        clash = make_transaction(account_id, date(2024, 3, 2), -200)
        clash.hash = tx.hash
        fresh = make_transaction(account_id, date(2024, 3, 3), -300)

        with pytest.raises(DuplicateError):
            await sheets_storage.add_transactions([fresh, clash])
        assert len(await sheets_storage.list_transactions(account_id=account_id)) == 1

    @pytest.mark.asyncio
    async def test_children_and_cascade_delete(self, sheets_storage, account_id):
        parent = make_transaction(account_id, date(2024, 3, 5), -1000, "PAYPAL *X")
        other = make_transaction(account_id, date(2024, 3, 6), -500, "PAYPAL *Y")
        await sheets_storage.add_transactions([parent, other])
        child = make_transaction(
            account_id, date(2024, 3, 5), -1000, parent_id=parent.id, tag="paypal", notes="R1"
        )
        await sheets_storage.add_transactions([child])

        children = await sheets_storage.load_children_for([parent.id, other.id])
        assert list(children) == [parent.id]
        assert await sheets_storage.find_linked_references(account_id, "paypal") == {"R1"}

        candidates = await sheets_storage.find_reconciliation_candidates(account_id, "paypal")
        assert [t.id for t in candidates] == [other.id]

        assert await sheets_storage.delete_transactions([parent.id]) == 2
        remaining = await sheets_storage.list_transactions(account_id=account_id)
        assert [t.id for t in remaining] == [other.id]

    @pytest.mark.asyncio
    async def test_update_transactions(self, sheets_storage, account_id):
        tx = make_transaction(account_id, date(2024, 3, 1), -100)
        await sheets_storage.add_transactions([tx])

        tx.category_id = uuid4()
        await sheets_storage.update_transactions([tx])

        assert (await sheets_storage.get_transaction(tx.id)).category_id == tx.category_id

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, sheets_storage, sheets_client, account_id):
        await sheets_storage.add_transactions([make_transaction(account_id, date(2024, 3, 1), -100)])
        sheets_client.sheets["Transactions"].append_row(["not-a-uuid", "x"])

        assert len(await sheets_storage.list_transactions()) == 1


class TestSheetsBudgets:
    """Budgets, versions and patterns."""

    @pytest.mark.asyncio
    async def test_versions_upsert(self, sheets_storage, account_id):
        budget = Budget(account_id=account_id, name="Rent", category_ids=[uuid4()])
        await sheets_storage.save_budget(budget)
        first = BudgetVersion(budget_id=budget.id, monthly_amount=90000, effective_from_month="2024-01")
        await sheets_storage.save_budget_versions([first])

        closed = first.model_copy(update={"effective_until_month": "2024-06"})
        second = BudgetVersion(budget_id=budget.id, monthly_amount=95000, effective_from_month="2024-07")
        await sheets_storage.save_budget_versions([closed, second])

        versions = await sheets_storage.list_budget_versions(budget.id)
        assert [(v.effective_from_month, v.effective_until_month) for v in versions] == [
            ("2024-01", "2024-06"),
            ("2024-07", None),
        ]
        assert (await sheets_storage.get_budget(budget.id)).category_ids == budget.category_ids

        assert await sheets_storage.delete_budget_version(second.id)
        assert not await sheets_storage.delete_budget_version(second.id)

    @pytest.mark.asyncio
    async def test_patterns_round_trip(self, sheets_storage, account_id):
        pattern = Pattern(account_id=account_id, category_id=uuid4(), description="rent", min_amount=-100000)
        await sheets_storage.save_pattern(pattern)
        await sheets_storage.save_pattern(pattern.model_copy(update={"strict": True}))

        (stored,) = await sheets_storage.list_patterns(account_id)
        assert stored.strict
        assert stored.min_amount == -100000
        assert await sheets_storage.list_patterns(uuid4()) == []


class TestSheetsAudit:
    """Audit worksheet."""

    @pytest.mark.asyncio
    async def test_append_and_query(self, sheets_client):
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
        correlation_id = uuid4()
        parent_id = uuid4()
        event = AuditEventBuilder.splits_created(parent_id, [uuid4()], 1000, correlation_id)

        assert await audit_storage.append_event(event)

        (stored,) = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert stored.event_id == event.event_id
        assert stored.details["total_cents"] == 1000
        assert len(await audit_storage.get_events_by_entity("transaction", parent_id)) == 1


class FlakyWorksheet(FakeWorksheet):
    """Fails the n-th delete_rows call once, after which it behaves."""

    def __init__(self, title, header, fail_on_call):
        super().__init__(title, header)
        self.fail_on_call = fail_on_call
        self.delete_calls = 0

    def delete_rows(self, index):
        self.delete_calls += 1
        if self.delete_calls == self.fail_on_call:
            raise RuntimeError("quota exceeded")
        super().delete_rows(index)


class TestSheetsRowDeletion:
    """Row deletion under transient API failures."""

    @pytest.mark.asyncio
    async def test_retry_after_partial_delete_keeps_other_rows(
        self, sheets_storage, sheets_client, account_id, monkeypatch
    ):
        monkeypatch.setattr(GoogleSheetsClient._delete_row.retry, "wait", wait_none())
        sheet = FlakyWorksheet("Transactions", TRANSACTION_COLUMNS, fail_on_call=2)
        sheets_client.sheets["Transactions"] = sheet
        by_day = {
            day: make_transaction(account_id, date(2024, 3, day), -100 * day)
            for day in range(1, 6)
        }
        await sheets_storage.add_transactions(list(by_day.values()))

        deleted = await sheets_storage.delete_transactions([by_day[2].id, by_day[4].id])

        assert deleted == 2
        assert sheet.delete_calls == 3
        remaining = await sheets_storage.list_transactions(account_id=account_id)
        assert sorted(tx.date.day for tx in remaining) == [1, 3, 5]
