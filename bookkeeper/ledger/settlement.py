"""
Settlement Engine

Moves Credit and Advance obligations through open -> partially settled ->
settled, and writes the companion entry each settlement produces:

- Credit: a Cash IN (Sales) or Cash OUT (other categories). This is the
  cash the Credit never moved itself. It is excluded from profit, since
  the Credit was already recognized when it was recorded.
- Advance: an Advance Settlement (Received/Paid). It moves no cash, since
  the Advance already did, but it is what recognizes the revenue or
  expense in profit.

Every companion carries `original_entry_id`, and reversal looks
companions up by that reference alone.

DESIGN DECISION: The engine assumes the caller already validated the
request, holds the owner's lock and has opened a store transaction.
It still re-checks the bound on settled amounts against the stored
companions, because that is the one invariant stored data can break.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from bookkeeper.ledger.cash import CashBalanceLedger
from bookkeeper.ledger.errors import ConsistencyViolation
from bookkeeper.models.entry import (
    Category,
    Entry,
    EntryType,
    PaymentMethod,
    SettlementType,
)
from bookkeeper.models.metrics import OutstandingSummary
from bookkeeper.models.results import DeleteEntryResult, SettlementResult
from bookkeeper.services.storage.interface import EntryStoreInterface


logger = structlog.get_logger(__name__)


def build_companion(
    obligation: Entry,
    amount: Decimal,
    settlement_date: date,
    payment_method: PaymentMethod,
) -> Entry:
    """The entry a settlement of `amount` against `obligation` produces."""
    is_sales = obligation.category == Category.SALES

    if obligation.entry_type == EntryType.CREDIT:
        return Entry(
            owner_id=obligation.owner_id,
            entry_date=settlement_date,
            entry_type=EntryType.CASH_IN if is_sales else EntryType.CASH_OUT,
            category=obligation.category,
            amount=amount,
            payment_method=payment_method,
            party_id=obligation.party_id,
            notes=f"Settlement of credit {obligation.id}",
            is_settlement=True,
            settlement_type=SettlementType.CREDIT,
            original_entry_id=obligation.id,
        )

    return Entry(
        owner_id=obligation.owner_id,
        entry_date=settlement_date,
        entry_type=(
            EntryType.ADVANCE_SETTLEMENT_RECEIVED if is_sales
            else EntryType.ADVANCE_SETTLEMENT_PAID
        ),
        category=obligation.category,
        amount=amount,
        payment_method=PaymentMethod.NONE,
        party_id=obligation.party_id,
        notes=f"Settlement of advance {obligation.id}",
        is_settlement=True,
        settlement_type=SettlementType.ADVANCE,
        original_entry_id=obligation.id,
    )


def summarize_outstanding(entries: Iterable[Entry]) -> OutstandingSummary:
    """
    Sum what is still unsettled across open obligations.

    Pending collections are Credit sales, pending bills are every other
    Credit, and pending advances are Advances of any category.
    """
    summary = OutstandingSummary()
    for entry in entries:
        if not entry.entry_type.is_obligation or entry.settled:
            continue
        remaining = entry.remaining_amount
        summary.open_obligations += 1
        if entry.entry_type == EntryType.ADVANCE:
            summary.pending_advances += remaining
        elif entry.category == Category.SALES:
            summary.pending_collections += remaining
        else:
            summary.pending_bills += remaining
    return summary


def party_balance(opening_balance: Decimal, entries: Iterable[Entry]) -> Decimal:
    """
    What a party owes the business (positive) or is owed by it (negative).

    Starts from the party's opening balance and adds the unsettled part
    of every open obligation: Credit sales and Advances paid out count
    toward the party, Credit purchases and Advances received against it.
    """
    balance = opening_balance
    for entry in entries:
        if not entry.entry_type.is_obligation or entry.settled:
            continue
        owed_to_us = (entry.category == Category.SALES) == (entry.entry_type == EntryType.CREDIT)
        balance += entry.remaining_amount if owed_to_us else -entry.remaining_amount
    return balance


class SettlementEngine:
    """Applies settlements and reverses them on deletion."""

    def __init__(
        self,
        store: EntryStoreInterface,
        cash_ledger: CashBalanceLedger,
    ):
        self._store = store
        self._cash = cash_ledger

    async def _settled_total(self, obligation: Entry) -> tuple[list[Entry], Decimal]:
        companions = await self._store.find_companions(obligation.owner_id, obligation.id)
        return companions, sum((c.amount for c in companions), Decimal("0"))

    async def settle(
        self,
        obligation: Entry,
        amount: Decimal,
        settlement_date: date,
        payment_method: PaymentMethod,
    ) -> SettlementResult:
        """
        Record a settlement of `amount` against `obligation`.

        Writes the decremented obligation and the companion entry, then
        applies the companion's cash effect.

        Raises:
            ConsistencyViolation: If stored settlements plus this one
                would exceed the obligation's amount
        """
        _, already_settled = await self._settled_total(obligation)
        if already_settled + amount > obligation.amount:
            raise ConsistencyViolation(
                f"Settlements against {obligation.id} would total "
                f"{already_settled + amount}, above its amount {obligation.amount}"
            )

        remaining = obligation.remaining_amount - amount
        settled = remaining == 0
        updated = obligation.evolve(
            remaining_amount=remaining,
            settled=settled,
            settled_at=settlement_date if settled else None,
        )
        companion = build_companion(obligation, amount, settlement_date, payment_method)

        updated = await self._store.update_entry(obligation.owner_id, updated)
        companion = await self._store.insert_entry(companion)
        new_balance = await self._cash.apply_create(companion)

        logger.info(
            "settlement_applied",
            owner_id=obligation.owner_id,
            entry_id=str(obligation.id),
            amount=str(amount),
            remaining=str(remaining),
        )
        return SettlementResult(
            obligation=updated,
            companion_entry=companion,
            new_remaining_amount=remaining,
            new_balance=new_balance,
        )

    async def delete(self, entry: Entry) -> DeleteEntryResult:
        """
        Delete `entry` and undo everything it caused.

        - Obligations take all their companions with them.
        - A companion on its own gives its amount back to its obligation.
        - Anything else only has its own cash effect reversed.
        """
        if entry.entry_type.is_obligation:
            return await self._delete_obligation(entry)
        if entry.is_settlement:
            return await self._delete_companion(entry)

        await self._remove(entry)
        balance = await self._cash.apply_delete(entry)
        return DeleteEntryResult(deleted_entry_ids=[entry.id], reversed_balance=balance)

    async def _remove(self, entry: Entry) -> None:
        if not await self._store.delete_entry(entry.owner_id, entry.id):
            raise ConsistencyViolation(f"Entry {entry.id} vanished during deletion")

    async def _delete_obligation(self, obligation: Entry) -> DeleteEntryResult:
        companions, settled_total = await self._settled_total(obligation)
        if settled_total != obligation.settled_amount:
            raise ConsistencyViolation(
                f"Companions of {obligation.id} total {settled_total}, "
                f"but {obligation.settled_amount} is recorded as settled"
            )

        deleted_ids = []
        for companion in companions:
            await self._remove(companion)
            await self._cash.apply_delete(companion)
            deleted_ids.append(companion.id)

        await self._remove(obligation)
        balance = await self._cash.apply_delete(obligation)
        deleted_ids.append(obligation.id)

        logger.info(
            "obligation_deleted",
            owner_id=obligation.owner_id,
            entry_id=str(obligation.id),
            companions=len(companions),
        )
        return DeleteEntryResult(deleted_entry_ids=deleted_ids, reversed_balance=balance)

    async def _delete_companion(self, companion: Entry) -> DeleteEntryResult:
        obligation = await self._store.find_entry(companion.owner_id, companion.original_entry_id)
        restored: Optional[Entry] = None

        if obligation is None:
            logger.warning(
                "orphan_settlement_deleted",
                owner_id=companion.owner_id,
                entry_id=str(companion.id),
                original_entry_id=str(companion.original_entry_id),
            )
        else:
            remaining = obligation.remaining_amount + companion.amount
            if remaining > obligation.amount:
                raise ConsistencyViolation(
                    f"Reversing {companion.id} would leave {obligation.id} "
                    f"with {remaining} remaining, above its amount {obligation.amount}"
                )
            restored = await self._store.update_entry(
                obligation.owner_id,
                obligation.evolve(remaining_amount=remaining, settled=False, settled_at=None),
            )

        await self._remove(companion)
        balance = await self._cash.apply_delete(companion)
        return DeleteEntryResult(
            deleted_entry_ids=[companion.id],
            reversed_balance=balance,
            restored_obligation=restored,
        )
