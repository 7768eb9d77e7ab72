"""
Cash Balance Ledger

Keeps one running cash figure per owner, adjusted incrementally on every
entry mutation. `recalculate` rebuilds it from the entries and is the
reference the running figure must always agree with.

CRITICAL: apply_* must be called after the entry write it describes.
If the owner has no stored balance yet, the adjustment falls back to a
full recalculation, which then already sees that write.
"""

from decimal import Decimal
from typing import Callable, Iterable, Optional

import structlog

from bookkeeper.models.entry import Category, Entry, EntryType, utc_now
from bookkeeper.services.storage.interface import EntryStoreInterface


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def cash_delta(entry_type: EntryType, category: Category, amount: Decimal) -> Decimal:
    """
    Signed effect of one entry on cash.

    Credit moves no cash when recorded, and settlement subtypes move none
    either: credit settlements are realized as Cash IN/OUT entries and
    advance cash already moved when the Advance was recorded.
    """
    if entry_type == EntryType.CASH_IN:
        return amount
    if entry_type == EntryType.CASH_OUT:
        return -amount
    if entry_type == EntryType.ADVANCE:
        return amount if category == Category.SALES else -amount
    return ZERO


def entry_cash_delta(entry: Entry) -> Decimal:
    return cash_delta(entry.entry_type, entry.category, entry.amount)


def total_cash(entries: Iterable[Entry]) -> Decimal:
    return sum((entry_cash_delta(entry) for entry in entries), ZERO)


class CashBalanceLedger:
    """Incremental maintenance of the running balance."""

    def __init__(
        self,
        store: EntryStoreInterface,
        clock: Callable = utc_now,
    ):
        self._store = store
        self._clock = clock

    async def _apply(self, owner_id: str, delta: Decimal) -> Decimal:
        new_balance = await self._store.adjust_balance(owner_id, delta, self._clock())
        if new_balance is None:
            logger.info("balance_missing_recalculating", owner_id=owner_id)
            return await self.recalculate(owner_id)
        return new_balance

    async def apply_create(self, entry: Entry) -> Decimal:
        return await self._apply(entry.owner_id, entry_cash_delta(entry))

    async def apply_delete(self, entry: Entry) -> Decimal:
        return await self._apply(entry.owner_id, -entry_cash_delta(entry))

    async def apply_update(self, old: Entry, new: Entry) -> Decimal:
        """Reverse the old effect and apply the new one as a single adjustment."""
        return await self._apply(new.owner_id, entry_cash_delta(new) - entry_cash_delta(old))

    async def recalculate(self, owner_id: str) -> Decimal:
        """Rebuild the balance from every entry the owner has."""
        entries = await self._store.list_entries(owner_id)
        balance = total_cash(entries)
        await self._store.write_balance(owner_id, balance, self._clock())
        logger.debug(
            "balance_recalculated",
            owner_id=owner_id,
            entries=len(entries),
            balance=str(balance),
        )
        return balance

    async def current(self, owner_id: str) -> Decimal:
        """Stored balance, initialized by recalculation if there is none."""
        stored = await self._store.read_balance(owner_id)
        if stored is None:
            return await self.recalculate(owner_id)
        return stored.balance

    async def read(self, owner_id: str) -> Optional[Decimal]:
        stored = await self._store.read_balance(owner_id)
        return stored.balance if stored else None
