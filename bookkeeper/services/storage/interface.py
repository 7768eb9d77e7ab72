"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep Google Sheets as one backend among several
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The interface is intentionally narrow. Balance adjustment is a single
atomic primitive so concurrent writers can never lose an update, and
every multi-record write runs inside `transaction()`.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import AsyncContextManager, Optional
from uuid import UUID

from bookkeeper.models.alert import Alert
from bookkeeper.models.entry import DateRange, Entry, Party, RunningBalance


class EntryStoreInterface(ABC):
    """
    Abstract interface for ledger entry, balance and alert storage.

    Every call is scoped to one owner. Implementations must never return
    another owner's records.
    """

    # =========================================================================
    # ENTRIES
    # =========================================================================

    @abstractmethod
    async def find_entry(self, owner_id: str, entry_id: UUID) -> Optional[Entry]:
        """
        Retrieve an entry by its ID.

        Returns:
            The entry if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> list[Entry]:
        """
        List an owner's entries, oldest entry_date first.

        Args:
            owner_id: Owner whose entries to list
            date_range: Inclusive entry_date filter (None for all)

        Returns:
            List of matching entries
        """
        pass

    @abstractmethod
    async def insert_entry(self, entry: Entry) -> Entry:
        """
        Persist a new entry.

        Args:
            entry: Entry to insert. An id is assigned if it has none.

        Returns:
            The stored entry, with its id

        Raises:
            DuplicateError: If an entry with the same id exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_entry(self, owner_id: str, entry: Entry) -> Entry:
        """
        Replace a stored entry.

        Raises:
            RecordNotFoundError: If the entry doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_entry(self, owner_id: str, entry_id: UUID) -> bool:
        """
        Delete an entry by ID.

        Returns:
            True if an entry was deleted
        """
        pass

    @abstractmethod
    async def find_companions(
        self,
        owner_id: str,
        original_entry_id: UUID,
    ) -> list[Entry]:
        """
        Get the settlement entries written against an obligation.

        Returns:
            Companion entries in creation order
        """
        pass

    @abstractmethod
    async def clear_party_references(self, owner_id: str, party_id: UUID) -> int:
        """
        Null the party reference on every entry pointing at `party_id`.

        Returns:
            Number of entries updated
        """
        pass

    # =========================================================================
    # RUNNING BALANCE
    # =========================================================================

    @abstractmethod
    async def read_balance(self, owner_id: str) -> Optional[RunningBalance]:
        """Get the stored running balance, None if none was ever written."""
        pass

    @abstractmethod
    async def write_balance(
        self,
        owner_id: str,
        value: Decimal,
        timestamp: datetime,
    ) -> RunningBalance:
        """Overwrite the stored running balance."""
        pass

    @abstractmethod
    async def adjust_balance(
        self,
        owner_id: str,
        delta: Decimal,
        timestamp: datetime,
    ) -> Optional[Decimal]:
        """
        Atomically add `delta` to the stored balance.

        The read-modify-write must not interleave with any other
        adjustment for the same owner.

        Returns:
            The new balance, or None if no balance exists yet
        """
        pass

    # =========================================================================
    # ALERTS
    # =========================================================================

    @abstractmethod
    async def insert_alert(self, alert: Alert) -> Alert:
        """Persist an alert. An id is assigned if it has none."""
        pass

    @abstractmethod
    async def list_alerts(
        self,
        owner_id: str,
        include_dismissed: bool = False,
    ) -> list[Alert]:
        """
        List alerts, newest first.

        Args:
            owner_id: Owner whose alerts to list
            include_dismissed: Also return alerts already marked read
        """
        pass

    @abstractmethod
    async def dismiss_alert(self, owner_id: str, alert_id: UUID) -> bool:
        """
        Mark an alert as read.

        Returns:
            True if the alert exists
        """
        pass

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @abstractmethod
    def transaction(self, owner_id: str) -> AsyncContextManager[None]:
        """
        Scope a group of writes for one owner.

        If the block raises, every entry, balance and alert write made
        inside it is undone before the exception propagates.
        """
        pass


class PartyStoreInterface(ABC):
    """
    Abstract interface for party storage.

    Party names are unique per owner.
    """

    @abstractmethod
    async def create_party(self, party: Party) -> Party:
        """
        Persist a new party.

        Raises:
            DuplicateError: If the owner already has a party with this name
        """
        pass

    @abstractmethod
    async def get_party(self, owner_id: str, party_id: UUID) -> Optional[Party]:
        pass

    @abstractmethod
    async def list_parties(self, owner_id: str) -> list[Party]:
        """List an owner's parties sorted by name."""
        pass

    @abstractmethod
    async def update_party(self, party: Party) -> Party:
        """
        Replace a stored party.

        Raises:
            RecordNotFoundError: If the party doesn't exist
            DuplicateError: If the new name clashes with another party
        """
        pass

    @abstractmethod
    async def delete_party(self, owner_id: str, party_id: UUID) -> bool:
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StorageError):
    """Record not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate record."""
    pass


class StoreUnavailableError(StorageError):
    """Could not connect to storage backend."""
    pass
