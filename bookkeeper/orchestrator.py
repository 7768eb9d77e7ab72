"""
Main Orchestrator for Bookkeeper

This module ties together all the components and defines the
caller-facing flows for:
1. Ledger mutations (create / update / delete entries, settle obligations)
2. Parties (counterparties referenced by entries)
3. Reports (accrual profit, trends, outstanding obligations)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written before validation passes
- Every mutation for one owner runs under that owner's lock and inside a
  single store transaction, so the balance and the entries move together
- Alerts are advisory: failing to raise one never fails the write
- Every step is logged

This is the "glue" that keeps the ledger consistent even when
individual components fail halfway through.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import AsyncIterator, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from bookkeeper.activity import ActivityLogger, create_correlation_id
from bookkeeper.config import LedgerSettings, get_settings, validate_all_settings
from bookkeeper.ledger import (
    CashBalanceLedger,
    ConsistencyViolation,
    LedgerValidationError,
    NotFoundError,
    OwnerLockRegistry,
    SettlementEngine,
    generate_alerts,
    get_expense_breakdown,
    get_profit_metrics,
    get_profit_trend,
    get_recommendations,
    month_range,
    party_balance,
    summarize_outstanding,
)
from bookkeeper.models import (
    Alert,
    CategoryExpense,
    CreateEntryResult,
    DateRange,
    DeleteEntryResult,
    Entry,
    EntryInput,
    EntryType,
    EntryUpdate,
    OutstandingSummary,
    Party,
    PartyInput,
    PartyUpdate,
    PaymentMethod,
    ProfitMetrics,
    ProfitTrendPoint,
    SettlementResult,
    UpdateEntryResult,
    ValidationIssue,
    ValidationResult,
    utc_now,
)
from bookkeeper.services.storage import (
    DuplicateError,
    EntryStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsEntryStore,
    GoogleSheetsPartyStore,
    InMemoryEntryStore,
    InMemoryPartyStore,
    PartyStoreInterface,
    StorageError,
)
from bookkeeper.validation import EntryValidator, issues_from_pydantic


logger = structlog.get_logger(__name__)


class LedgerFlow:
    """
    Orchestrates every mutation of the ledger.

    Flow for each mutation:
    1. Validate → reject before any write
    2. Lock → one mutation per owner at a time
    3. Transaction → entry writes and balance adjustment commit together
    4. Log → activity event
    5. Alerts (create only) → best effort, after commit
    """

    def __init__(
        self,
        entry_store: Optional[EntryStoreInterface] = None,
        party_store: Optional[PartyStoreInterface] = None,
        validator: Optional[EntryValidator] = None,
        activity_logger: Optional[ActivityLogger] = None,
        locks: Optional[OwnerLockRegistry] = None,
        settings: Optional[LedgerSettings] = None,
        today: Callable[[], date] = date.today,
    ):
        self._settings = settings or get_settings().ledger
        self._today = today
        self._store = entry_store or InMemoryEntryStore()
        self._party_store = party_store or InMemoryPartyStore()
        self._validator = validator or EntryValidator(self._settings, today)
        self._activity = activity_logger or ActivityLogger()
        self._locks = locks or OwnerLockRegistry()
        self._cash = CashBalanceLedger(self._store)
        self._settlement = SettlementEngine(self._store, self._cash)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _raise_if_invalid(
        self,
        owner_id: str,
        operation: str,
        validation: ValidationResult,
        correlation_id: UUID,
    ) -> None:
        if validation.is_valid:
            return
        await self._activity.log_validation_failed(
            owner_id=owner_id,
            operation=operation,
            issues=[
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in validation.issues
            ],
            correlation_id=correlation_id,
        )
        raise LedgerValidationError(validation.issues)

    async def _check_party(self, owner_id: str, party_id: Optional[UUID]) -> None:
        if party_id is None:
            return
        if await self._party_store.get_party(owner_id, party_id) is None:
            raise NotFoundError("Party", party_id)

    async def _find(self, owner_id: str, entry_id: UUID) -> Entry:
        entry = await self._store.find_entry(owner_id, entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        return entry

    @asynccontextmanager
    async def _write(
        self,
        owner_id: str,
        operation: str,
        correlation_id: UUID,
    ) -> AsyncIterator[None]:
        """
        Store transaction for one mutation.

        Failures are logged after the rollback has run, then re-raised.
        """
        try:
            async with self._store.transaction(owner_id):
                yield
        except ConsistencyViolation as e:
            await self._activity.log_consistency_violation(
                owner_id=owner_id,
                entity_id=None,
                error_message=str(e),
                details={"operation": operation},
                correlation_id=correlation_id,
            )
            raise
        except StorageError as e:
            await self._activity.log_store_error(
                owner_id=owner_id,
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

    async def _raise_alerts(
        self,
        entry: Entry,
        balance: Decimal,
        correlation_id: UUID,
    ) -> list[Alert]:
        """Generate and store threshold alerts. Never raises."""
        today = self._today()
        try:
            month_entries = await self._store.list_entries(
                entry.owner_id, month_range(today.year, today.month)
            )
            alerts = generate_alerts(entry, balance, month_entries, self._settings)
        except Exception as e:
            await self._activity.log_alert_persist_failed(
                owner_id=entry.owner_id,
                alert_type="all",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return []

        raised = []
        for alert in alerts:
            try:
                raised.append(await self._store.insert_alert(alert))
            except Exception as e:
                await self._activity.log_alert_persist_failed(
                    owner_id=entry.owner_id,
                    alert_type=alert.alert_type.value,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                raised.append(alert)

        if raised:
            await self._activity.log_alerts_raised(
                owner_id=entry.owner_id,
                entry_id=entry.id,
                alert_types=[a.alert_type.value for a in raised],
                correlation_id=correlation_id,
            )
        return raised

    # =========================================================================
    # ENTRIES
    # =========================================================================

    async def create_entry(
        self,
        owner_id: str,
        data: Union[dict, EntryInput],
        correlation_id: Optional[UUID] = None,
    ) -> CreateEntryResult:
        """
        Record a new Cash IN, Cash OUT, Credit or Advance entry.

        Returns:
            The stored entry, the balance after it, and any alerts raised

        Raises:
            LedgerValidationError: If the input is rejected
            NotFoundError: If the referenced party doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()

        parsed, validation = self._validator.parse_entry_input(data)
        await self._raise_if_invalid(owner_id, "create_entry", validation, correlation_id)
        await self._check_party(owner_id, parsed.party_id)

        entry_type = EntryType(parsed.entry_type)
        entry = Entry(
            owner_id=owner_id,
            entry_date=parsed.entry_date,
            entry_type=entry_type,
            category=parsed.category,
            amount=parsed.amount,
            remaining_amount=parsed.amount if entry_type.is_obligation else None,
            payment_method=PaymentMethod(parsed.payment_method),
            party_id=parsed.party_id,
            notes=parsed.notes,
        )

        async with self._locks.acquire(owner_id):
            async with self._write(owner_id, "create_entry", correlation_id):
                entry = await self._store.insert_entry(entry)
                new_balance = await self._cash.apply_create(entry)

        await self._activity.log_entry_created(
            owner_id=owner_id,
            entry_id=entry.id,
            entry_type=entry.entry_type.value,
            amount=entry.amount,
            new_balance=new_balance,
            correlation_id=correlation_id,
        )

        alerts = await self._raise_alerts(entry, new_balance, correlation_id)
        return CreateEntryResult(
            entry=entry,
            new_balance=new_balance,
            alerts=alerts,
            warnings=validation.warnings,
        )

    async def update_entry(
        self,
        owner_id: str,
        entry_id: UUID,
        data: Union[dict, EntryUpdate],
        correlation_id: Optional[UUID] = None,
    ) -> UpdateEntryResult:
        """
        Edit a user entry.

        The balance is only adjusted when type, category or amount change;
        `updated_balance` is None otherwise.

        Raises:
            NotFoundError: If the entry or the new party doesn't exist
            LedgerValidationError: If the edit is rejected
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._locks.acquire(owner_id):
            current = await self._find(owner_id, entry_id)
            candidate, validation = self._validator.validate_update(current, data)
            await self._raise_if_invalid(owner_id, "update_entry", validation, correlation_id)
            if candidate.party_id != current.party_id:
                await self._check_party(owner_id, candidate.party_id)

            changed = [
                name for name in (
                    "entry_type", "category", "amount", "entry_date",
                    "payment_method", "party_id", "notes",
                )
                if getattr(candidate, name) != getattr(current, name)
            ]
            moves_cash = bool({"entry_type", "category", "amount"} & set(changed))

            updated_balance = None
            async with self._write(owner_id, "update_entry", correlation_id):
                stored = await self._store.update_entry(owner_id, candidate)
                if moves_cash:
                    updated_balance = await self._cash.apply_update(current, stored)

        await self._activity.log_entry_updated(
            owner_id=owner_id,
            entry_id=entry_id,
            changed_fields=changed,
            updated_balance=updated_balance,
            correlation_id=correlation_id,
        )
        return UpdateEntryResult(
            entry=stored,
            updated_balance=updated_balance,
            warnings=validation.warnings,
        )

    async def delete_entry(
        self,
        owner_id: str,
        entry_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> DeleteEntryResult:
        """
        Delete an entry and everything it caused.

        Deleting an obligation also deletes its settlement entries.
        Deleting a settlement entry reopens its obligation.

        Raises:
            NotFoundError: If the entry doesn't exist
            ConsistencyViolation: If stored settlements don't add up
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._locks.acquire(owner_id):
            entry = await self._find(owner_id, entry_id)
            async with self._write(owner_id, "delete_entry", correlation_id):
                result = await self._settlement.delete(entry)

        await self._activity.log_entry_deleted(
            owner_id=owner_id,
            entry_id=entry_id,
            cascaded_ids=[i for i in result.deleted_entry_ids if i != entry_id],
            reversed_balance=result.reversed_balance,
            correlation_id=correlation_id,
        )
        if result.restored_obligation is not None:
            await self._activity.log_settlement_reversed(
                owner_id=owner_id,
                obligation_id=result.restored_obligation.id,
                companion_id=entry_id,
                amount=entry.amount,
                correlation_id=correlation_id,
            )
        return result

    async def get_entry(self, owner_id: str, entry_id: UUID) -> Entry:
        return await self._find(owner_id, entry_id)

    async def list_entries(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> list[Entry]:
        return await self._store.list_entries(owner_id, date_range)

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    async def settle(
        self,
        owner_id: str,
        entry_id: UUID,
        amount: Union[Decimal, str, int],
        settlement_date: date,
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
        correlation_id: Optional[UUID] = None,
    ) -> SettlementResult:
        """
        Settle part or all of a Credit or Advance entry.

        `payment_method` is how a Credit was paid; Advance settlements
        move no cash and ignore it.

        Raises:
            NotFoundError: If the entry doesn't exist
            LedgerValidationError: If the settlement is rejected
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._locks.acquire(owner_id):
            obligation = await self._find(owner_id, entry_id)
            settle_amount, method, validation = self._validator.validate_settlement(
                obligation, amount, settlement_date, payment_method
            )
            await self._raise_if_invalid(owner_id, "settle", validation, correlation_id)

            async with self._write(owner_id, "settle", correlation_id):
                result = await self._settlement.settle(
                    obligation, settle_amount, settlement_date, method
                )

        await self._activity.log_settlement_recorded(
            owner_id=owner_id,
            obligation_id=entry_id,
            companion_id=result.companion_entry.id,
            amount=settle_amount,
            remaining=result.new_remaining_amount,
            correlation_id=correlation_id,
        )
        return result

    # =========================================================================
    # BALANCE
    # =========================================================================

    async def get_balance(self, owner_id: str) -> Decimal:
        """Current running balance, computed from entries on first use."""
        async with self._locks.acquire(owner_id):
            return await self._cash.current(owner_id)

    async def recalculate_balance(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """Rebuild the running balance from all entries and store it."""
        correlation_id = correlation_id or create_correlation_id()

        async with self._locks.acquire(owner_id):
            previous = await self._cash.read(owner_id)
            async with self._write(owner_id, "recalculate_balance", correlation_id):
                balance = await self._cash.recalculate(owner_id)

        await self._activity.log_balance_recalculated(
            owner_id=owner_id,
            previous=previous,
            recalculated=balance,
            correlation_id=correlation_id,
        )
        return balance

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def list_alerts(self, owner_id: str, include_dismissed: bool = False) -> list[Alert]:
        return await self._store.list_alerts(owner_id, include_dismissed)

    async def dismiss_alert(self, owner_id: str, alert_id: UUID) -> None:
        if not await self._store.dismiss_alert(owner_id, alert_id):
            raise NotFoundError("Alert", alert_id)


class PartyFlow:
    """
    Manages counterparties.

    Deleting a party detaches it from the owner's entries rather than
    deleting them, under the same per-owner lock the ledger uses.
    """

    def __init__(
        self,
        party_store: Optional[PartyStoreInterface] = None,
        entry_store: Optional[EntryStoreInterface] = None,
        activity_logger: Optional[ActivityLogger] = None,
        locks: Optional[OwnerLockRegistry] = None,
    ):
        self._party_store = party_store or InMemoryPartyStore()
        self._entry_store = entry_store or InMemoryEntryStore()
        self._activity = activity_logger or ActivityLogger()
        self._locks = locks or OwnerLockRegistry()

    @staticmethod
    def _duplicate_name(name: str) -> LedgerValidationError:
        return LedgerValidationError([ValidationIssue(
            field="name",
            issue_type="duplicate",
            message=f"A party named '{name}' already exists",
            severity="error",
        )])

    async def create_party(self, owner_id: str, data: Union[dict, PartyInput]) -> Party:
        """
        Raises:
            LedgerValidationError: If the input is invalid or the name is taken
        """
        try:
            party_input = data if isinstance(data, PartyInput) else PartyInput.model_validate(data)
        except ValidationError as e:
            raise LedgerValidationError(issues_from_pydantic(e))

        try:
            party = await self._party_store.create_party(
                Party(owner_id=owner_id, **party_input.model_dump())
            )
        except DuplicateError:
            raise self._duplicate_name(party_input.name)

        await self._activity.log_party_created(owner_id, party.id, party.name)
        return party

    async def get_party(self, owner_id: str, party_id: UUID) -> Party:
        party = await self._party_store.get_party(owner_id, party_id)
        if party is None:
            raise NotFoundError("Party", party_id)
        return party

    async def list_parties(self, owner_id: str) -> list[Party]:
        return await self._party_store.list_parties(owner_id)

    async def get_party_balance(self, owner_id: str, party_id: UUID) -> Decimal:
        """
        Opening balance plus the party's unsettled obligations.

        Positive means the party owes the business.

        Raises:
            NotFoundError: If the party does not exist
        """
        party = await self.get_party(owner_id, party_id)
        entries = await self._entry_store.list_entries(owner_id)
        return party_balance(
            party.opening_balance,
            (e for e in entries if e.party_id == party_id),
        )

    async def update_party(
        self,
        owner_id: str,
        party_id: UUID,
        data: Union[dict, PartyUpdate],
    ) -> Party:
        try:
            update = data if isinstance(data, PartyUpdate) else PartyUpdate.model_validate(data)
        except ValidationError as e:
            raise LedgerValidationError(issues_from_pydantic(e))

        current = await self.get_party(owner_id, party_id)
        changes = update.model_dump(exclude_unset=True)
        updated = Party.model_validate({**current.model_dump(), **changes, "updated_at": utc_now()})
        try:
            return await self._party_store.update_party(updated)
        except DuplicateError:
            raise self._duplicate_name(updated.name)

    async def delete_party(self, owner_id: str, party_id: UUID) -> int:
        """
        Delete a party and null its references.

        Returns:
            Number of entries detached from the party
        """
        await self.get_party(owner_id, party_id)

        async with self._locks.acquire(owner_id):
            async with self._entry_store.transaction(owner_id):
                detached = await self._entry_store.clear_party_references(owner_id, party_id)
                await self._party_store.delete_party(owner_id, party_id)

        await self._activity.log_party_deleted(owner_id, party_id, detached)
        return detached


class ReportFlow:
    """
    Read-side reports over an owner's entries.

    Nothing here takes the owner lock: every report is a pure function of
    one `list_entries` snapshot.
    """

    def __init__(
        self,
        entry_store: Optional[EntryStoreInterface] = None,
        today: Callable[[], date] = date.today,
    ):
        self._store = entry_store or InMemoryEntryStore()
        self._today = today

    async def get_profit_metrics(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> ProfitMetrics:
        entries = await self._store.list_entries(owner_id, date_range)
        return get_profit_metrics(entries, date_range)

    async def get_profit_trend(self, owner_id: str, months: int = 6) -> list[ProfitTrendPoint]:
        entries = await self._store.list_entries(owner_id)
        return get_profit_trend(entries, months, self._today())

    async def get_expense_breakdown(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> list[CategoryExpense]:
        entries = await self._store.list_entries(owner_id, date_range)
        return get_expense_breakdown(entries, date_range)

    async def get_recommendations(
        self,
        owner_id: str,
        date_range: Optional[DateRange] = None,
    ) -> list[str]:
        entries = await self._store.list_entries(owner_id, date_range)
        return get_recommendations(entries, date_range)

    async def get_outstanding_summary(self, owner_id: str) -> OutstandingSummary:
        entries = await self._store.list_entries(owner_id)
        return summarize_outstanding(entries)


def create_app_components(
    use_storage: bool = True,
) -> tuple[LedgerFlow, PartyFlow, ReportFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run entirely in memory.

    Returns:
        (ledger_flow, party_flow, report_flow, sheets_client)
    """
    app_settings = get_settings().app
    logging.getLogger("bookkeeper").setLevel(app_settings.log_level)
    logger.info(
        "settings_checked",
        environment=app_settings.app_environment,
        **validate_all_settings(),
    )

    sheets_client = None
    entry_store: EntryStoreInterface
    party_store: PartyStoreInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            entry_store = GoogleSheetsEntryStore(sheets_client)
            party_store = GoogleSheetsPartyStore(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            entry_store = InMemoryEntryStore()
            party_store = InMemoryPartyStore()
    else:
        entry_store = InMemoryEntryStore()
        party_store = InMemoryPartyStore()

    activity_logger = ActivityLogger()
    locks = OwnerLockRegistry()

    ledger_flow = LedgerFlow(
        entry_store=entry_store,
        party_store=party_store,
        activity_logger=activity_logger,
        locks=locks,
    )
    party_flow = PartyFlow(
        party_store=party_store,
        entry_store=entry_store,
        activity_logger=activity_logger,
        locks=locks,
    )
    report_flow = ReportFlow(entry_store=entry_store)

    return ledger_flow, party_flow, report_flow, sheets_client
