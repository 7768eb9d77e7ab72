"""
Tests for the Google Sheets storage backend.

The gspread worksheets are replaced by an in-process fake that keeps
rows as lists of strings, the way the Sheets API returns them.
"""

import re
import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from bookkeeper.models import (
    Alert,
    AlertSeverity,
    AlertType,
    Category,
    EntryType,
    Party,
    PartyType,
    utc_now,
)
from bookkeeper.orchestrator import LedgerFlow
from bookkeeper.services.storage import (
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsEntryStore,
    GoogleSheetsPartyStore,
    RecordNotFoundError,
)
from bookkeeper.services.storage.google_sheets import (
    ALERT_COLUMNS,
    BALANCE_COLUMNS,
    ENTRY_COLUMNS,
    PARTY_COLUMNS,
)


TODAY = date(2025, 3, 15)


class FakeWorksheet:
    """The subset of gspread.Worksheet the stores use."""

    def __init__(self, columns):
        self.rows = [list(columns)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update(self, range_name, values, value_input_option=None):
        row_number = int(re.match(r"A(\d+):", range_name).group(1))
        self.rows[row_number - 1] = [str(v) for v in values[0]]

    def update_cell(self, row, col, value):
        self.rows[row - 1][col - 1] = str(value)

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient(GoogleSheetsClient):
    def __init__(self):
        self.entries = FakeWorksheet(ENTRY_COLUMNS)
        self.parties = FakeWorksheet(PARTY_COLUMNS)
        self.balances = FakeWorksheet(BALANCE_COLUMNS)
        self.alerts = FakeWorksheet(ALERT_COLUMNS)

    def get_entries_sheet(self):
        return self.entries

    def get_parties_sheet(self):
        return self.parties

    def get_balances_sheet(self):
        return self.balances

    def get_alerts_sheet(self):
        return self.alerts


@pytest.fixture
def sheets():
    return FakeSheetsClient()


@pytest.fixture
def store(sheets):
    return GoogleSheetsEntryStore(sheets)


@pytest.fixture
def party_sheet_store(sheets):
    return GoogleSheetsPartyStore(sheets)


class TestEntryRows:
    @pytest.mark.asyncio
    async def test_entry_survives_row_conversion(self, store, make_entry):
        """Every field comes back from the sheet as it went in."""
        entry = make_entry(
            EntryType.CREDIT, Category.SALES, "1234.50",
            remaining="234.50",
            party_id=uuid4(),
            notes="Invoice 17",
        )
        await store.insert_entry(entry)

        assert await store.find_entry("owner-1", entry.id) == entry

    @pytest.mark.asyncio
    async def test_update_and_delete(self, store, sheets, make_entry):
        entry = await store.insert_entry(make_entry(EntryType.CASH_OUT, Category.OPEX, "80"))

        await store.update_entry("owner-1", entry.evolve(notes="fuel"))
        assert (await store.find_entry("owner-1", entry.id)).notes == "fuel"

        assert await store.delete_entry("owner-1", entry.id) is True
        assert await store.delete_entry("owner-1", entry.id) is False
        assert len(sheets.entries.rows) == 1

    @pytest.mark.asyncio
    async def test_update_other_owners_entry(self, store, make_entry):
        entry = await store.insert_entry(make_entry(EntryType.CASH_OUT, Category.OPEX, "80"))
        with pytest.raises(RecordNotFoundError):
            await store.update_entry("owner-2", entry)

    @pytest.mark.asyncio
    async def test_companions_by_reference(self, store, make_entry):
        credit = await store.insert_entry(make_entry(EntryType.CREDIT, Category.SALES, "100"))
        companion = await store.insert_entry(make_entry(
            EntryType.CASH_IN, Category.SALES, "40",
            is_settlement=True, settlement_type="credit", original_entry_id=credit.id,
        ))
        await store.insert_entry(make_entry(EntryType.CASH_IN, Category.SALES, "40"))

        assert [c.id for c in await store.find_companions("owner-1", credit.id)] == [companion.id]


class TestBalanceRows:
    @pytest.mark.asyncio
    async def test_write_then_adjust(self, store):
        assert await store.adjust_balance("owner-1", Decimal("5"), utc_now()) is None

        await store.write_balance("owner-1", Decimal("100"), utc_now())
        assert await store.adjust_balance("owner-1", Decimal("-25.50"), utc_now()) == Decimal("74.50")
        assert (await store.read_balance("owner-1")).balance == Decimal("74.50")


class TestUndoLog:
    @pytest.mark.asyncio
    async def test_rollback_replays_compensating_writes(self, store, sheets, make_entry):
        kept = await store.insert_entry(make_entry(EntryType.CASH_IN, Category.SALES, "10"))

        with pytest.raises(RuntimeError):
            async with store.transaction("owner-1"):
                await store.insert_entry(make_entry(EntryType.CASH_OUT, Category.OPEX, "5"))
                await store.update_entry("owner-1", kept.evolve(notes="edited"))
                await store.write_balance("owner-1", Decimal("5"), utc_now())
                raise RuntimeError("boom")

        entries = await store.list_entries("owner-1")
        assert [e.id for e in entries] == [kept.id]
        assert entries[0].notes is None
        assert await store.read_balance("owner-1") is None

    @pytest.mark.asyncio
    async def test_rollback_restores_deleted_row(self, store, make_entry):
        entry = await store.insert_entry(make_entry(EntryType.CASH_IN, Category.SALES, "10"))
        await store.write_balance("owner-1", Decimal("10"), utc_now())

        with pytest.raises(RuntimeError):
            async with store.transaction("owner-1"):
                await store.delete_entry("owner-1", entry.id)
                await store.adjust_balance("owner-1", Decimal("-10"), utc_now())
                raise RuntimeError("boom")

        assert await store.find_entry("owner-1", entry.id) == entry
        assert (await store.read_balance("owner-1")).balance == Decimal("10")

    @pytest.mark.asyncio
    async def test_writes_outside_transaction_are_not_logged(self, store, make_entry):
        await store.insert_entry(make_entry(EntryType.CASH_IN, Category.SALES, "10"))
        assert store._undo == {}


class TestAlertRows:
    @pytest.mark.asyncio
    async def test_dismiss(self, store):
        alert = await store.insert_alert(Alert(
            owner_id="owner-1",
            alert_type=AlertType.HIGH_EXPENSE,
            severity=AlertSeverity.WARNING,
            priority=7,
            title="High Expense Recorded",
            message="Large expense",
        ))

        assert [a.id for a in await store.list_alerts("owner-1")] == [alert.id]
        assert await store.dismiss_alert("owner-1", alert.id) is True
        assert await store.list_alerts("owner-1") == []
        assert len(await store.list_alerts("owner-1", include_dismissed=True)) == 1


class TestPartyRows:
    @pytest.mark.asyncio
    async def test_party_lifecycle(self, party_sheet_store):
        party = await party_sheet_store.create_party(
            Party(owner_id="owner-1", name="Acme", party_type=PartyType.VENDOR)
        )
        assert (await party_sheet_store.get_party("owner-1", party.id)).name == "Acme"

        with pytest.raises(DuplicateError):
            await party_sheet_store.create_party(
                Party(owner_id="owner-1", name="ACME", party_type=PartyType.VENDOR)
            )

        renamed = await party_sheet_store.update_party(party.model_copy(update={"name": "Acme Ltd"}))
        assert renamed.name == "Acme Ltd"

        assert await party_sheet_store.delete_party("owner-1", party.id) is True
        assert await party_sheet_store.get_party("owner-1", party.id) is None


class TestLedgerOnSheets:
    @pytest.mark.asyncio
    async def test_settlement_round_trip(self, store, party_sheet_store, settings):
        ledger = LedgerFlow(
            entry_store=store,
            party_store=party_sheet_store,
            settings=settings,
            today=lambda: TODAY,
        )
        created = await ledger.create_entry("owner-1", {
            "entry_type": "Credit",
            "category": "Sales",
            "amount": "1000",
            "entry_date": TODAY.isoformat(),
        })

        settled = await ledger.settle("owner-1", created.entry.id, "400", TODAY, "Cash")
        assert settled.new_balance == Decimal("400")

        await ledger.delete_entry("owner-1", created.entry.id)
        assert await store.list_entries("owner-1") == []
        assert await ledger.recalculate_balance("owner-1") == Decimal("0")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
