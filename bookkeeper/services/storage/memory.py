"""
In-Memory Storage Implementation

Used by the test suite and as the fallback backend when Google Sheets is
not configured. Records are held in per-owner dictionaries.

Entries are pydantic models that are replaced, never mutated in place,
so a transaction snapshot only needs shallow copies of the owner's maps.

`io_delay` inserts an `await asyncio.sleep()` into every call to mimic a
network round trip. Interleaving between concurrent callers then becomes
observable in tests.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

import structlog

from bookkeeper.models.alert import Alert
from bookkeeper.models.entry import DateRange, Entry, Party, RunningBalance
from bookkeeper.services.storage.interface import (
    DuplicateError,
    EntryStoreInterface,
    PartyStoreInterface,
    RecordNotFoundError,
)


logger = structlog.get_logger(__name__)


class InMemoryEntryStore(EntryStoreInterface):
    """Dictionary-backed entry, balance and alert store."""

    def __init__(self, io_delay: float = 0.0):
        self._io_delay = io_delay
        self._entries: dict[str, dict[UUID, Entry]] = defaultdict(dict)
        self._alerts: dict[str, dict[UUID, Alert]] = defaultdict(dict)
        self._balances: dict[str, RunningBalance] = {}
        self._balance_lock = asyncio.Lock()
        self._txn_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _pause(self) -> None:
        if self._io_delay:
            await asyncio.sleep(self._io_delay)

    # =========================================================================
    # ENTRIES
    # =========================================================================

    async def find_entry(self, owner_id: str, entry_id: UUID) -> Optional[Entry]:
        await self._pause()
        return self._entries[owner_id].get(entry_id)

    async def list_entries(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> list[Entry]:
        await self._pause()
        entries = [
            entry for entry in self._entries[owner_id].values()
            if date_range is None or date_range.contains(entry.entry_date)
        ]
        entries.sort(key=lambda e: (e.entry_date, e.created_at))
        return entries

    async def insert_entry(self, entry: Entry) -> Entry:
        await self._pause()
        if entry.id is None:
            entry = entry.model_copy(update={"id": uuid4()})
        owner_entries = self._entries[entry.owner_id]
        if entry.id in owner_entries:
            raise DuplicateError(f"Entry already exists: {entry.id}")
        owner_entries[entry.id] = entry
        return entry

    async def update_entry(self, owner_id: str, entry: Entry) -> Entry:
        await self._pause()
        owner_entries = self._entries[owner_id]
        if entry.id not in owner_entries:
            raise RecordNotFoundError(f"Entry not found: {entry.id}")
        owner_entries[entry.id] = entry
        return entry

    async def delete_entry(self, owner_id: str, entry_id: UUID) -> bool:
        await self._pause()
        return self._entries[owner_id].pop(entry_id, None) is not None

    async def find_companions(
        self,
        owner_id: str,
        original_entry_id: UUID,
    ) -> list[Entry]:
        await self._pause()
        companions = [
            entry for entry in self._entries[owner_id].values()
            if entry.is_settlement and entry.original_entry_id == original_entry_id
        ]
        companions.sort(key=lambda e: e.created_at)
        return companions

    async def clear_party_references(self, owner_id: str, party_id: UUID) -> int:
        await self._pause()
        owner_entries = self._entries[owner_id]
        cleared = 0
        for entry_id, entry in list(owner_entries.items()):
            if entry.party_id == party_id:
                owner_entries[entry_id] = entry.evolve(party_id=None)
                cleared += 1
        return cleared

    # =========================================================================
    # RUNNING BALANCE
    # =========================================================================

    async def read_balance(self, owner_id: str) -> Optional[RunningBalance]:
        await self._pause()
        return self._balances.get(owner_id)

    async def write_balance(
        self,
        owner_id: str,
        value: Decimal,
        timestamp: datetime,
    ) -> RunningBalance:
        await self._pause()
        balance = RunningBalance(owner_id=owner_id, balance=value, updated_at=timestamp)
        self._balances[owner_id] = balance
        return balance

    async def adjust_balance(
        self,
        owner_id: str,
        delta: Decimal,
        timestamp: datetime,
    ) -> Optional[Decimal]:
        async with self._balance_lock:
            current = self._balances.get(owner_id)
            if current is None:
                return None
            # Read and write straddle an await; only the lock keeps them atomic.
            await self._pause()
            new_value = current.balance + delta
            self._balances[owner_id] = RunningBalance(
                owner_id=owner_id,
                balance=new_value,
                updated_at=timestamp,
            )
            return new_value

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def insert_alert(self, alert: Alert) -> Alert:
        await self._pause()
        if alert.id is None:
            alert = alert.model_copy(update={"id": uuid4()})
        self._alerts[alert.owner_id][alert.id] = alert
        return alert

    async def list_alerts(
        self,
        owner_id: str,
        include_dismissed: bool = False,
    ) -> list[Alert]:
        await self._pause()
        alerts = [
            alert for alert in self._alerts[owner_id].values()
            if include_dismissed or not alert.is_read
        ]
        alerts.sort(key=lambda a: (a.created_at, a.priority), reverse=True)
        return alerts

    async def dismiss_alert(self, owner_id: str, alert_id: UUID) -> bool:
        await self._pause()
        alert = self._alerts[owner_id].get(alert_id)
        if alert is None:
            return False
        self._alerts[owner_id][alert_id] = alert.model_copy(update={"is_read": True})
        return True

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @asynccontextmanager
    async def transaction(self, owner_id: str) -> AsyncIterator[None]:
        """Snapshot the owner's records and restore them if the block raises."""
        async with self._txn_locks[owner_id]:
            entries = dict(self._entries[owner_id])
            alerts = dict(self._alerts[owner_id])
            balance = self._balances.get(owner_id)
            try:
                yield
            except BaseException:
                self._entries[owner_id] = entries
                self._alerts[owner_id] = alerts
                if balance is None:
                    self._balances.pop(owner_id, None)
                else:
                    self._balances[owner_id] = balance
                logger.warning("transaction_rolled_back", owner_id=owner_id)
                raise


class InMemoryPartyStore(PartyStoreInterface):
    """Dictionary-backed party store. Names are unique per owner."""

    def __init__(self):
        self._parties: dict[str, dict[UUID, Party]] = defaultdict(dict)

    def _name_taken(self, party: Party) -> bool:
        wanted = party.name.casefold()
        return any(
            other.name.casefold() == wanted and other.id != party.id
            for other in self._parties[party.owner_id].values()
        )

    async def create_party(self, party: Party) -> Party:
        if self._name_taken(party):
            raise DuplicateError(f"Party already exists: {party.name}")
        if party.id is None:
            party = party.model_copy(update={"id": uuid4()})
        self._parties[party.owner_id][party.id] = party
        return party

    async def get_party(self, owner_id: str, party_id: UUID) -> Optional[Party]:
        return self._parties[owner_id].get(party_id)

    async def list_parties(self, owner_id: str) -> list[Party]:
        return sorted(self._parties[owner_id].values(), key=lambda p: p.name.casefold())

    async def update_party(self, party: Party) -> Party:
        owner_parties = self._parties[party.owner_id]
        if party.id not in owner_parties:
            raise RecordNotFoundError(f"Party not found: {party.id}")
        if self._name_taken(party):
            raise DuplicateError(f"Party already exists: {party.name}")
        owner_parties[party.id] = party
        return party

    async def delete_party(self, owner_id: str, party_id: UUID) -> bool:
        return self._parties[owner_id].pop(party_id, None) is not None
