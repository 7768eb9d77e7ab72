"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a storage backend because:
1. Small business owners can view their books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for one small business)
- No transactions (we keep an undo log of compensating writes instead)
- No atomic increment (balance adjustments are serialized in-process)
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so the ledger does not
know which backend it is talking to.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bookkeeper.config import GoogleSheetsSettings, get_settings
from bookkeeper.models.alert import Alert, AlertSeverity, AlertType
from bookkeeper.models.entry import (
    Category,
    DateRange,
    Entry,
    EntryType,
    Party,
    PartyType,
    PaymentMethod,
    RunningBalance,
    SettlementType,
    utc_now,
)
from bookkeeper.services.storage.interface import (
    DuplicateError,
    EntryStoreInterface,
    PartyStoreInterface,
    RecordNotFoundError,
    StorageError,
    StoreUnavailableError,
)


logger = structlog.get_logger(__name__)

UndoAction = Callable[[], Awaitable[object]]


# Column mappings for Entries sheet
ENTRY_COLUMNS = [
    "id",
    "owner_id",
    "entry_date",
    "entry_type",
    "category",
    "amount",
    "remaining_amount",
    "settled",
    "settled_at",
    "payment_method",
    "party_id",
    "notes",
    "is_settlement",
    "settlement_type",
    "original_entry_id",
    "created_at",
    "updated_at",
]

PARTY_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "mobile",
    "party_type",
    "opening_balance",
    "created_at",
    "updated_at",
]

BALANCE_COLUMNS = [
    "owner_id",
    "balance",
    "updated_at",
]

ALERT_COLUMNS = [
    "id",
    "owner_id",
    "entry_id",
    "alert_type",
    "severity",
    "priority",
    "title",
    "message",
    "is_read",
    "created_at",
]


def _cell_getter(row: list) -> Callable[..., str]:
    """Index into a sheet row, tolerating short rows and blank cells."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _find_row(rows: list[list], key: str, column: int = 0) -> Optional[int]:
    """1-based sheet row number of the first data row whose `column` equals `key`."""
    for idx, row in enumerate(rows[1:], start=2):  # Start from 2 (row 1 is header)
        if row and len(row) > column and row[column] == key:
            return idx
    return None


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
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
                raise StoreUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StoreUnavailableError(f"Failed to connect to Google Sheets: {e}")

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
                raise StoreUnavailableError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_entries_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.entries_sheet_name, ENTRY_COLUMNS, 5000)

    def get_parties_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.parties_sheet_name, PARTY_COLUMNS, 1000)

    def get_balances_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.balances_sheet_name, BALANCE_COLUMNS, 100)

    def get_alerts_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.alerts_sheet_name, ALERT_COLUMNS, 2000)


class GoogleSheetsEntryStore(EntryStoreInterface):
    """
    Google Sheets implementation of entry, balance and alert storage.

    Entries are stored one per row. Every owner shares the same worksheets
    and is told apart by the `owner_id` column.

    Inside `transaction()` each write records a compensating action.
    If the block raises, the actions are replayed newest first.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._undo: dict[str, list[UndoAction]] = {}
        self._balance_lock = asyncio.Lock()
        self._txn_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _record_undo(self, owner_id: str, action: UndoAction) -> None:
        log = self._undo.get(owner_id)
        if log is not None:
            log.append(action)

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _entry_to_row(self, entry: Entry) -> list:
        """Convert an Entry to a spreadsheet row."""
        return [
            str(entry.id),
            entry.owner_id,
            entry.entry_date.isoformat(),
            entry.entry_type.value,
            entry.category.value,
            str(entry.amount),
            str(entry.remaining_amount) if entry.remaining_amount is not None else "",
            str(entry.settled),
            entry.settled_at.isoformat() if entry.settled_at else "",
            entry.payment_method.value,
            str(entry.party_id) if entry.party_id else "",
            entry.notes or "",
            str(entry.is_settlement),
            entry.settlement_type.value if entry.settlement_type else "",
            str(entry.original_entry_id) if entry.original_entry_id else "",
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
        ]

    def _row_to_entry(self, row: list) -> Entry:
        """Convert a spreadsheet row to an Entry."""
        safe_get = _cell_getter(row)
        return Entry(
            id=UUID(safe_get(0)),
            owner_id=safe_get(1),
            entry_date=date.fromisoformat(safe_get(2)),
            entry_type=EntryType(safe_get(3)),
            category=Category(safe_get(4)),
            amount=Decimal(safe_get(5)),
            remaining_amount=Decimal(safe_get(6)) if safe_get(6) else None,
            settled=safe_get(7).lower() == "true",
            settled_at=date.fromisoformat(safe_get(8)) if safe_get(8) else None,
            payment_method=PaymentMethod(safe_get(9, "None")),
            party_id=UUID(safe_get(10)) if safe_get(10) else None,
            notes=safe_get(11) or None,
            is_settlement=safe_get(12).lower() == "true",
            settlement_type=SettlementType(safe_get(13)) if safe_get(13) else None,
            original_entry_id=UUID(safe_get(14)) if safe_get(14) else None,
            created_at=datetime.fromisoformat(safe_get(15)),
            updated_at=datetime.fromisoformat(safe_get(16)),
        )

    def _alert_to_row(self, alert: Alert) -> list:
        return [
            str(alert.id),
            alert.owner_id,
            str(alert.entry_id) if alert.entry_id else "",
            alert.alert_type.value,
            alert.severity.value,
            str(alert.priority),
            alert.title,
            alert.message,
            str(alert.is_read),
            alert.created_at.isoformat(),
        ]

    def _row_to_alert(self, row: list) -> Alert:
        safe_get = _cell_getter(row)
        return Alert(
            id=UUID(safe_get(0)),
            owner_id=safe_get(1),
            entry_id=UUID(safe_get(2)) if safe_get(2) else None,
            alert_type=AlertType(safe_get(3)),
            severity=AlertSeverity(safe_get(4)),
            priority=int(safe_get(5)),
            title=safe_get(6),
            message=safe_get(7),
            is_read=safe_get(8).lower() == "true",
            created_at=datetime.fromisoformat(safe_get(9)),
        )

    def _owner_entries(self, owner_id: str) -> list[Entry]:
        sheet = self._client.get_entries_sheet()
        entries = []
        for row in sheet.get_all_values()[1:]:  # Skip header
            if not row or len(row) < 2 or row[1] != owner_id:
                continue
            entries.append(self._row_to_entry(row))
        return entries

    # =========================================================================
    # ENTRIES
    # =========================================================================

    async def find_entry(self, owner_id: str, entry_id: UUID) -> Optional[Entry]:
        try:
            sheet = self._client.get_entries_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == str(entry_id) and len(row) > 1 and row[1] == owner_id:
                    return self._row_to_entry(row)
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to get entry: {e}")

    async def list_entries(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> list[Entry]:
        try:
            entries = [
                entry for entry in self._owner_entries(owner_id)
                if date_range is None or date_range.contains(entry.entry_date)
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to list entries: {e}")
        entries.sort(key=lambda e: (e.entry_date, e.created_at))
        return entries

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_entry(self, entry: Entry) -> Entry:
        if entry.id is None:
            entry = entry.model_copy(update={"id": uuid4()})
        try:
            sheet = self._client.get_entries_sheet()
            sheet.append_row(self._entry_to_row(entry), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to save entry: {e}")
        self._record_undo(
            entry.owner_id, lambda: self.delete_entry(entry.owner_id, entry.id)
        )
        return entry

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def update_entry(self, owner_id: str, entry: Entry) -> Entry:
        try:
            sheet = self._client.get_entries_sheet()
            all_rows = sheet.get_all_values()
            idx = _find_row(all_rows, str(entry.id))
            if idx is None or all_rows[idx - 1][1] != owner_id:
                raise RecordNotFoundError(f"Entry not found: {entry.id}")
            previous = self._row_to_entry(all_rows[idx - 1])
            sheet.update(
                range_name=f"A{idx}:{rowcol_to_a1(idx, len(ENTRY_COLUMNS))}",
                values=[self._entry_to_row(entry)],
                value_input_option="RAW",
            )
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to update entry: {e}")
        self._record_undo(owner_id, lambda: self.update_entry(owner_id, previous))
        return entry

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def delete_entry(self, owner_id: str, entry_id: UUID) -> bool:
        try:
            sheet = self._client.get_entries_sheet()
            all_rows = sheet.get_all_values()
            idx = _find_row(all_rows, str(entry_id))
            if idx is None or all_rows[idx - 1][1] != owner_id:
                return False
            previous = self._row_to_entry(all_rows[idx - 1])
            sheet.delete_rows(idx)
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to delete entry: {e}")
        self._record_undo(owner_id, lambda: self.insert_entry(previous))
        return True

    async def find_companions(
        self,
        owner_id: str,
        original_entry_id: UUID,
    ) -> list[Entry]:
        entries = await self.list_entries(owner_id)
        companions = [
            entry for entry in entries
            if entry.is_settlement and entry.original_entry_id == original_entry_id
        ]
        companions.sort(key=lambda e: e.created_at)
        return companions

    async def clear_party_references(self, owner_id: str, party_id: UUID) -> int:
        entries = await self.list_entries(owner_id)
        cleared = 0
        for entry in entries:
            if entry.party_id == party_id:
                await self.update_entry(owner_id, entry.evolve(party_id=None))
                cleared += 1
        return cleared

    # =========================================================================
    # RUNNING BALANCE
    # =========================================================================

    async def read_balance(self, owner_id: str) -> Optional[RunningBalance]:
        try:
            sheet = self._client.get_balances_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == owner_id:
                    safe_get = _cell_getter(row)
                    return RunningBalance(
                        owner_id=owner_id,
                        balance=Decimal(safe_get(1, "0")),
                        updated_at=datetime.fromisoformat(safe_get(2)) if safe_get(2) else utc_now(),
                    )
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to read balance: {e}")

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def write_balance(
        self,
        owner_id: str,
        value: Decimal,
        timestamp: datetime,
    ) -> RunningBalance:
        previous = await self.read_balance(owner_id)
        row = [owner_id, str(value), timestamp.isoformat()]
        try:
            sheet = self._client.get_balances_sheet()
            idx = _find_row(sheet.get_all_values(), owner_id)
            if idx is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{idx}:{rowcol_to_a1(idx, len(BALANCE_COLUMNS))}",
                    values=[row],
                    value_input_option="RAW",
                )
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to write balance: {e}")

        if previous is None:
            self._record_undo(owner_id, lambda: self._drop_balance(owner_id))
        else:
            self._record_undo(
                owner_id,
                lambda: self.write_balance(owner_id, previous.balance, previous.updated_at),
            )
        return RunningBalance(owner_id=owner_id, balance=value, updated_at=timestamp)

    async def _drop_balance(self, owner_id: str) -> None:
        sheet = self._client.get_balances_sheet()
        idx = _find_row(sheet.get_all_values(), owner_id)
        if idx is not None:
            sheet.delete_rows(idx)

    async def adjust_balance(
        self,
        owner_id: str,
        delta: Decimal,
        timestamp: datetime,
    ) -> Optional[Decimal]:
        # Sheets has no atomic increment; serialize within this process.
        async with self._balance_lock:
            current = await self.read_balance(owner_id)
            if current is None:
                return None
            new_value = current.balance + delta
            await self.write_balance(owner_id, new_value, timestamp)
            return new_value

    # =========================================================================
    # ALERTS
    # =========================================================================

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_alert(self, alert: Alert) -> Alert:
        if alert.id is None:
            alert = alert.model_copy(update={"id": uuid4()})
        try:
            sheet = self._client.get_alerts_sheet()
            sheet.append_row(self._alert_to_row(alert), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to save alert: {e}")
        return alert

    async def list_alerts(
        self,
        owner_id: str,
        include_dismissed: bool = False,
    ) -> list[Alert]:
        try:
            sheet = self._client.get_alerts_sheet()
            alerts = []
            for row in sheet.get_all_values()[1:]:
                if not row or len(row) < 2 or row[1] != owner_id:
                    continue
                alert = self._row_to_alert(row)
                if include_dismissed or not alert.is_read:
                    alerts.append(alert)
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to list alerts: {e}")
        alerts.sort(key=lambda a: (a.created_at, a.priority), reverse=True)
        return alerts

    async def dismiss_alert(self, owner_id: str, alert_id: UUID) -> bool:
        try:
            sheet = self._client.get_alerts_sheet()
            all_rows = sheet.get_all_values()
            idx = _find_row(all_rows, str(alert_id))
            if idx is None or all_rows[idx - 1][1] != owner_id:
                return False
            sheet.update_cell(idx, ALERT_COLUMNS.index("is_read") + 1, "True")
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to dismiss alert: {e}")

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @asynccontextmanager
    async def transaction(self, owner_id: str) -> AsyncIterator[None]:
        """Replay compensating writes, newest first, if the block raises."""
        async with self._txn_locks[owner_id]:
            self._undo[owner_id] = []
            try:
                yield
            except BaseException:
                # Pop first so compensating writes are not themselves recorded
                actions = self._undo.pop(owner_id, [])
                for action in reversed(actions):
                    try:
                        await action()
                    except Exception as e:
                        logger.error(
                            "compensating_write_failed",
                            owner_id=owner_id,
                            error=str(e),
                        )
                logger.warning(
                    "transaction_rolled_back",
                    owner_id=owner_id,
                    undone_writes=len(actions),
                )
                raise
            finally:
                self._undo.pop(owner_id, None)


class GoogleSheetsPartyStore(PartyStoreInterface):
    """Google Sheets implementation of party storage."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _party_to_row(self, party: Party) -> list:
        return [
            str(party.id),
            party.owner_id,
            party.name,
            party.mobile or "",
            party.party_type.value,
            str(party.opening_balance),
            party.created_at.isoformat(),
            party.updated_at.isoformat(),
        ]

    def _row_to_party(self, row: list) -> Party:
        safe_get = _cell_getter(row)
        return Party(
            id=UUID(safe_get(0)),
            owner_id=safe_get(1),
            name=safe_get(2),
            mobile=safe_get(3) or None,
            party_type=PartyType(safe_get(4)),
            opening_balance=Decimal(safe_get(5, "0")),
            created_at=datetime.fromisoformat(safe_get(6)),
            updated_at=datetime.fromisoformat(safe_get(7)),
        )

    def _name_taken(self, party: Party, parties: list[Party]) -> bool:
        wanted = party.name.casefold()
        return any(
            other.name.casefold() == wanted and other.id != party.id
            for other in parties
        )

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_party(self, party: Party) -> Party:
        if self._name_taken(party, await self.list_parties(party.owner_id)):
            raise DuplicateError(f"Party already exists: {party.name}")
        if party.id is None:
            party = party.model_copy(update={"id": uuid4()})
        try:
            sheet = self._client.get_parties_sheet()
            sheet.append_row(self._party_to_row(party), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to save party: {e}")
        return party

    async def get_party(self, owner_id: str, party_id: UUID) -> Optional[Party]:
        for party in await self.list_parties(owner_id):
            if party.id == party_id:
                return party
        return None

    async def list_parties(self, owner_id: str) -> list[Party]:
        try:
            sheet = self._client.get_parties_sheet()
            parties = [
                self._row_to_party(row)
                for row in sheet.get_all_values()[1:]
                if row and len(row) > 1 and row[1] == owner_id
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to list parties: {e}")
        return sorted(parties, key=lambda p: p.name.casefold())

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def update_party(self, party: Party) -> Party:
        if self._name_taken(party, await self.list_parties(party.owner_id)):
            raise DuplicateError(f"Party already exists: {party.name}")
        try:
            sheet = self._client.get_parties_sheet()
            all_rows = sheet.get_all_values()
            idx = _find_row(all_rows, str(party.id))
            if idx is None or all_rows[idx - 1][1] != party.owner_id:
                raise RecordNotFoundError(f"Party not found: {party.id}")
            sheet.update(
                range_name=f"A{idx}:{rowcol_to_a1(idx, len(PARTY_COLUMNS))}",
                values=[self._party_to_row(party)],
                value_input_option="RAW",
            )
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to update party: {e}")
        return party

    async def delete_party(self, owner_id: str, party_id: UUID) -> bool:
        try:
            sheet = self._client.get_parties_sheet()
            all_rows = sheet.get_all_values()
            idx = _find_row(all_rows, str(party_id))
            if idx is None or all_rows[idx - 1][1] != owner_id:
                return False
            sheet.delete_rows(idx)
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to delete party: {e}")
