"""
Shared fixtures.

Every test runs against the in-memory stores with a fixed clock.
No network access and no environment configuration are needed.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import pytest

from bookkeeper.config import LedgerSettings
from bookkeeper.ledger import OwnerLockRegistry
from bookkeeper.models import Category, Entry, EntryType, PaymentMethod
from bookkeeper.orchestrator import LedgerFlow, PartyFlow, ReportFlow
from bookkeeper.services.storage import InMemoryEntryStore, InMemoryPartyStore


TODAY = date(2025, 3, 15)
OWNER = "owner-1"


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings(_env_file=None)


@pytest.fixture
def entry_store() -> InMemoryEntryStore:
    return InMemoryEntryStore()


@pytest.fixture
def party_store() -> InMemoryPartyStore:
    return InMemoryPartyStore()


@pytest.fixture
def locks() -> OwnerLockRegistry:
    return OwnerLockRegistry()


@pytest.fixture
def ledger(entry_store, party_store, settings, locks) -> LedgerFlow:
    return LedgerFlow(
        entry_store=entry_store,
        party_store=party_store,
        settings=settings,
        locks=locks,
        today=lambda: TODAY,
    )


@pytest.fixture
def parties(entry_store, party_store, locks) -> PartyFlow:
    return PartyFlow(party_store=party_store, entry_store=entry_store, locks=locks)


@pytest.fixture
def reports(entry_store) -> ReportFlow:
    return ReportFlow(entry_store=entry_store, today=lambda: TODAY)


@pytest.fixture
def make_entry():
    """Build a stored-shape Entry without going through the ledger."""

    def _make(
        entry_type: EntryType,
        category: Category,
        amount: str,
        entry_date: date = TODAY,
        remaining: Optional[str] = None,
        **extra,
    ) -> Entry:
        amount = Decimal(amount)
        if entry_type.is_obligation:
            remaining_amount = Decimal(remaining) if remaining is not None else amount
            extra.setdefault("settled", remaining_amount == 0)
        else:
            remaining_amount = None

        if entry_type == EntryType.CREDIT or entry_type.is_settlement_subtype:
            default_method = PaymentMethod.NONE
        else:
            default_method = PaymentMethod.CASH
        extra.setdefault("payment_method", default_method)

        return Entry(
            id=extra.pop("id", uuid4()),
            owner_id=extra.pop("owner_id", OWNER),
            entry_date=entry_date,
            entry_type=entry_type,
            category=category,
            amount=amount,
            remaining_amount=remaining_amount,
            **extra,
        )

    return _make
