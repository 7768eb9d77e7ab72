"""
Integration tests for the ledger, party and report flows.

Everything runs against the in-memory stores. After every mutation the
running balance must match a full recalculation.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from bookkeeper.ledger import LedgerValidationError, NotFoundError
from bookkeeper.models import (
    AlertType,
    Category,
    EntryType,
    ObligationState,
    PaymentMethod,
    utc_now,
)
from bookkeeper.orchestrator import LedgerFlow, create_app_components
from bookkeeper.services.storage import InMemoryEntryStore, StorageError


OWNER = "owner-1"
TODAY = date(2025, 3, 15)


def _entry(entry_type="Cash IN", category="Sales", amount="100", **extra):
    payload = {
        "entry_type": entry_type,
        "category": category,
        "amount": amount,
        "entry_date": TODAY.isoformat(),
    }
    payload.update(extra)
    return payload


async def _assert_consistent(ledger):
    """Running balance equals a from-scratch recalculation."""
    running = await ledger.get_balance(OWNER)
    assert await ledger.recalculate_balance(OWNER) == running
    return running


class CompanionFailureStore(InMemoryEntryStore):
    """Fails whenever a settlement companion is written."""

    async def insert_entry(self, entry):
        if entry.is_settlement:
            raise StorageError("Entries sheet unavailable")
        return await super().insert_entry(entry)


class AlertFailureStore(InMemoryEntryStore):
    async def insert_alert(self, alert):
        raise StorageError("Alerts sheet unavailable")


class TestScenarios:
    """Credit and Advance flows end to end."""

    @pytest.mark.asyncio
    async def test_credit_sale_recognized_before_cash(self, ledger, reports):
        """Credit revenue counts at once; its settlement moves cash but not revenue."""
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "1000"))

        assert created.new_balance == Decimal("0")
        assert created.entry.remaining_amount == Decimal("1000")
        assert created.entry.payment_method == PaymentMethod.NONE
        assert (await reports.get_profit_metrics(OWNER)).revenue == Decimal("1000")

        settled = await ledger.settle(OWNER, created.entry.id, "1000", TODAY, "Cash")

        assert settled.new_balance == Decimal("1000")
        assert settled.obligation.obligation_state == ObligationState.SETTLED
        assert settled.companion_entry.entry_type == EntryType.CASH_IN
        assert (await reports.get_profit_metrics(OWNER)).revenue == Decimal("1000")
        await _assert_consistent(ledger)

    @pytest.mark.asyncio
    async def test_advance_paid_recognized_on_settlement(self, ledger, reports):
        """Advance cash moves at once; its settlement recognizes the expense."""
        created = await ledger.create_entry(
            OWNER, _entry("Advance", "COGS", "500", payment_method="Cash")
        )

        assert created.new_balance == Decimal("-500")
        assert (await reports.get_profit_metrics(OWNER)).cogs == Decimal("0")

        settled = await ledger.settle(OWNER, created.entry.id, "500", TODAY)

        assert settled.companion_entry.entry_type == EntryType.ADVANCE_SETTLEMENT_PAID
        assert settled.companion_entry.amount == Decimal("500")
        assert settled.new_balance == Decimal("-500")
        assert (await reports.get_profit_metrics(OWNER)).cogs == Decimal("500")
        await _assert_consistent(ledger)

    @pytest.mark.asyncio
    async def test_high_expense_into_negative_cash(self, ledger):
        result = await ledger.create_entry(OWNER, _entry("Cash OUT", "Opex", "60000"))

        assert result.new_balance == Decimal("-60000")
        assert [a.alert_type for a in result.alerts] == [
            AlertType.HIGH_EXPENSE,
            AlertType.NEGATIVE_CASH_BALANCE,
        ]
        stored = await ledger.list_alerts(OWNER)
        assert {a.alert_type for a in stored} == {
            AlertType.HIGH_EXPENSE,
            AlertType.NEGATIVE_CASH_BALANCE,
        }

    @pytest.mark.asyncio
    async def test_full_walkthrough(self, ledger, reports):
        credit = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "1000"))
        await ledger.settle(OWNER, credit.entry.id, "1000", TODAY, "Cash")
        advance = await ledger.create_entry(
            OWNER, _entry("Advance", "COGS", "500", payment_method="Cash")
        )
        await ledger.settle(OWNER, advance.entry.id, "500", TODAY)
        await ledger.create_entry(OWNER, _entry("Cash OUT", "Opex", "200"))

        assert await _assert_consistent(ledger) == Decimal("300")

        metrics = await reports.get_profit_metrics(OWNER)
        assert metrics.revenue == Decimal("1000")
        assert metrics.cogs == Decimal("500")
        assert metrics.operating_expenses == Decimal("200")
        assert metrics.net_profit == Decimal("300")

        outstanding = await reports.get_outstanding_summary(OWNER)
        assert outstanding.open_obligations == 0


class TestEntryMutations:
    @pytest.mark.asyncio
    async def test_invalid_entry_writes_nothing(self, ledger, entry_store):
        with pytest.raises(LedgerValidationError) as exc_info:
            await ledger.create_entry(OWNER, _entry("Credit", payment_method="Cash"))

        assert exc_info.value.issues
        assert await entry_store.list_entries(OWNER) == []
        assert await entry_store.read_balance(OWNER) is None

    @pytest.mark.asyncio
    async def test_warnings_do_not_block(self, ledger):
        result = await ledger.create_entry(OWNER, _entry(entry_date="2025-06-01"))
        assert result.entry.entry_date == date(2025, 6, 1)
        assert len(result.warnings) == 1

    @pytest.mark.asyncio
    async def test_unknown_party_rejected(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.create_entry(OWNER, _entry(party_id=str(uuid4())))

    @pytest.mark.asyncio
    async def test_update_without_cash_effect(self, ledger):
        created = await ledger.create_entry(OWNER, _entry(amount="100"))

        result = await ledger.update_entry(OWNER, created.entry.id, {"notes": "walk-in"})

        assert result.updated_balance is None
        assert result.entry.notes == "walk-in"
        assert await _assert_consistent(ledger) == Decimal("100")

    @pytest.mark.asyncio
    async def test_update_type_and_amount(self, ledger):
        created = await ledger.create_entry(OWNER, _entry(amount="100"))

        result = await ledger.update_entry(
            OWNER, created.entry.id, {"entry_type": "Cash OUT", "category": "Opex", "amount": "40"}
        )

        assert result.updated_balance == Decimal("-40")
        assert await _assert_consistent(ledger) == Decimal("-40")

    @pytest.mark.asyncio
    async def test_update_into_credit(self, ledger):
        created = await ledger.create_entry(OWNER, _entry(amount="100"))

        result = await ledger.update_entry(OWNER, created.entry.id, {"entry_type": "Credit"})

        assert result.entry.remaining_amount == Decimal("100")
        assert result.updated_balance == Decimal("0")
        await _assert_consistent(ledger)

    @pytest.mark.asyncio
    async def test_settlement_entries_cannot_be_edited(self, ledger):
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "100"))
        settled = await ledger.settle(OWNER, created.entry.id, "100", TODAY, "Bank")

        with pytest.raises(LedgerValidationError):
            await ledger.update_entry(OWNER, settled.companion_entry.id, {"amount": "50"})

    @pytest.mark.asyncio
    async def test_update_missing_entry(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.update_entry(OWNER, uuid4(), {"notes": "x"})

    @pytest.mark.asyncio
    async def test_delete_plain_entry(self, ledger):
        keep = await ledger.create_entry(OWNER, _entry(amount="500"))
        drop = await ledger.create_entry(OWNER, _entry("Cash OUT", "Opex", "200"))

        result = await ledger.delete_entry(OWNER, drop.entry.id)

        assert result.deleted_entry_ids == [drop.entry.id]
        assert result.reversed_balance == Decimal("500")
        assert [e.id for e in await ledger.list_entries(OWNER)] == [keep.entry.id]

    @pytest.mark.asyncio
    async def test_delete_missing_entry(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.delete_entry(OWNER, uuid4())

    @pytest.mark.asyncio
    async def test_get_entry(self, ledger):
        created = await ledger.create_entry(OWNER, _entry())
        assert (await ledger.get_entry(OWNER, created.entry.id)).id == created.entry.id
        with pytest.raises(NotFoundError):
            await ledger.get_entry("owner-2", created.entry.id)


class TestSettlementFlow:
    @pytest.mark.asyncio
    async def test_partial_settlements(self, ledger):
        created = await ledger.create_entry(OWNER, _entry("Credit", "COGS", "900"))

        first = await ledger.settle(OWNER, created.entry.id, "300", TODAY, "Cash")
        assert first.obligation.obligation_state == ObligationState.PARTIALLY_SETTLED
        assert first.new_balance == Decimal("-300")

        second = await ledger.settle(OWNER, created.entry.id, "600", TODAY, "Bank")
        assert second.obligation.settled is True
        assert second.obligation.settled_at == TODAY
        assert await _assert_consistent(ledger) == Decimal("-900")

    @pytest.mark.asyncio
    async def test_over_settlement_rejected(self, ledger, entry_store):
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "100"))

        with pytest.raises(LedgerValidationError, match="exceeds remaining balance"):
            await ledger.settle(OWNER, created.entry.id, "100.01", TODAY, "Cash")

        stored = await entry_store.find_entry(OWNER, created.entry.id)
        assert stored.remaining_amount == Decimal("100")

    @pytest.mark.asyncio
    async def test_settle_then_delete_round_trip(self, ledger):
        """Deleting a settlement puts the ledger back where it was."""
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "1000"))
        balance_before = await ledger.get_balance(OWNER)

        settled = await ledger.settle(OWNER, created.entry.id, "400", TODAY, "Cash")
        result = await ledger.delete_entry(OWNER, settled.companion_entry.id)

        restored = await ledger.get_entry(OWNER, created.entry.id)
        assert result.restored_obligation.id == created.entry.id
        assert restored.remaining_amount == Decimal("1000")
        assert restored.obligation_state == ObligationState.OPEN
        assert await _assert_consistent(ledger) == balance_before

    @pytest.mark.asyncio
    async def test_delete_settled_obligation_cascades(self, ledger):
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "1000"))
        await ledger.settle(OWNER, created.entry.id, "400", TODAY, "Cash")
        await ledger.settle(OWNER, created.entry.id, "600", TODAY, "Cash")

        result = await ledger.delete_entry(OWNER, created.entry.id)

        assert len(result.deleted_entry_ids) == 3
        assert await ledger.list_entries(OWNER) == []
        assert await _assert_consistent(ledger) == Decimal("0")

    @pytest.mark.asyncio
    async def test_delete_partially_settled_advance(self, ledger, reports):
        """The Advance's own cash is reversed and its recognition goes with it."""
        created = await ledger.create_entry(
            OWNER, _entry("Advance", "Sales", "700", payment_method="Bank")
        )
        settled = await ledger.settle(OWNER, created.entry.id, "200", TODAY, "Bank")
        assert settled.new_balance == Decimal("700")
        assert (await reports.get_profit_metrics(OWNER)).revenue == Decimal("200")

        result = await ledger.delete_entry(OWNER, created.entry.id)

        assert set(result.deleted_entry_ids) == {created.entry.id, settled.companion_entry.id}
        assert await ledger.list_entries(OWNER) == []
        assert (await reports.get_profit_metrics(OWNER)).revenue == Decimal("0")
        assert await _assert_consistent(ledger) == Decimal("0")

    @pytest.mark.asyncio
    async def test_delete_unsettled_advance(self, ledger):
        created = await ledger.create_entry(
            OWNER, _entry("Advance", "COGS", "450", payment_method="Cash")
        )
        assert await ledger.get_balance(OWNER) == Decimal("-450")

        result = await ledger.delete_entry(OWNER, created.entry.id)

        assert result.deleted_entry_ids == [created.entry.id]
        assert await _assert_consistent(ledger) == Decimal("0")

    @pytest.mark.asyncio
    async def test_amount_edit_on_partially_settled_advance(self, ledger):
        """Cash moves by the difference and the settled part is kept."""
        created = await ledger.create_entry(
            OWNER, _entry("Advance", "COGS", "500", payment_method="Cash")
        )
        await ledger.settle(OWNER, created.entry.id, "200", TODAY, "Cash")

        result = await ledger.update_entry(OWNER, created.entry.id, {"amount": "800"})

        assert result.entry.remaining_amount == Decimal("600")
        assert result.entry.obligation_state == ObligationState.PARTIALLY_SETTLED
        assert result.updated_balance == Decimal("-800")
        assert await _assert_consistent(ledger) == Decimal("-800")

    @pytest.mark.asyncio
    async def test_settled_obligation_date_cannot_move(self, ledger):
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "1000"))
        await ledger.settle(OWNER, created.entry.id, "400", TODAY, "Cash")

        with pytest.raises(LedgerValidationError, match="Entry date cannot change"):
            await ledger.update_entry(OWNER, created.entry.id, {"entry_date": "2025-03-20"})

        assert (await ledger.get_entry(OWNER, created.entry.id)).entry_date == TODAY

    @pytest.mark.asyncio
    async def test_amount_edit_down_to_settled_marks_settled(self, ledger):
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "1000"))
        await ledger.settle(OWNER, created.entry.id, "400", TODAY, "Cash")

        result = await ledger.update_entry(OWNER, created.entry.id, {"amount": "400"})

        assert result.entry.obligation_state == ObligationState.SETTLED
        assert result.entry.settled_at == TODAY
        assert await _assert_consistent(ledger) == Decimal("400")

    @pytest.mark.asyncio
    async def test_failed_companion_write_rolls_back(self, party_store, settings):
        """A settlement that cannot write its companion leaves nothing behind."""
        store = CompanionFailureStore()
        ledger = LedgerFlow(
            entry_store=store, party_store=party_store, settings=settings, today=lambda: TODAY
        )
        created = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "1000"))

        with pytest.raises(StorageError):
            await ledger.settle(OWNER, created.entry.id, "400", TODAY, "Cash")

        stored = await store.find_entry(OWNER, created.entry.id)
        assert stored.remaining_amount == Decimal("1000")
        assert stored.settled is False
        assert await store.find_companions(OWNER, created.entry.id) == []
        assert await _assert_consistent(ledger) == Decimal("0")


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_creates(self, party_store, settings):
        """Interleaved creates for one owner lose no balance updates."""
        store = InMemoryEntryStore(io_delay=0.001)
        ledger = LedgerFlow(
            entry_store=store, party_store=party_store, settings=settings, today=lambda: TODAY
        )

        await asyncio.gather(
            ledger.create_entry(OWNER, _entry("Cash IN", "Sales", "100")),
            ledger.create_entry(OWNER, _entry("Cash OUT", "Opex", "40")),
        )

        assert await _assert_consistent(ledger) == Decimal("60")

    @pytest.mark.asyncio
    async def test_many_concurrent_mutations(self, party_store, settings):
        store = InMemoryEntryStore(io_delay=0.001)
        ledger = LedgerFlow(
            entry_store=store, party_store=party_store, settings=settings, today=lambda: TODAY
        )
        credit = await ledger.create_entry(OWNER, _entry("Credit", "Sales", "100"))

        await asyncio.gather(
            *(ledger.create_entry(OWNER, _entry(amount="10")) for _ in range(10)),
            ledger.settle(OWNER, credit.entry.id, "100", TODAY, "Cash"),
        )

        assert await _assert_consistent(ledger) == Decimal("200")


class TestBalanceAndAlerts:
    @pytest.mark.asyncio
    async def test_recalculate_is_idempotent(self, ledger):
        await ledger.create_entry(OWNER, _entry(amount="70"))
        first = await ledger.recalculate_balance(OWNER)
        second = await ledger.recalculate_balance(OWNER)
        assert first == second == Decimal("70")

    @pytest.mark.asyncio
    async def test_recalculate_repairs_drift(self, ledger, entry_store):
        await ledger.create_entry(OWNER, _entry(amount="70"))
        await entry_store.write_balance(OWNER, Decimal("5"), utc_now())

        assert await ledger.recalculate_balance(OWNER) == Decimal("70")
        assert await ledger.get_balance(OWNER) == Decimal("70")

    @pytest.mark.asyncio
    async def test_balance_of_new_owner(self, ledger):
        assert await ledger.get_balance("nobody") == Decimal("0")

    @pytest.mark.asyncio
    async def test_alert_storage_failure_is_not_fatal(self, party_store, settings):
        store = AlertFailureStore()
        ledger = LedgerFlow(
            entry_store=store, party_store=party_store, settings=settings, today=lambda: TODAY
        )

        result = await ledger.create_entry(OWNER, _entry("Cash OUT", "Opex", "100"))

        assert result.entry.id is not None
        assert [a.alert_type for a in result.alerts] == [AlertType.NEGATIVE_CASH_BALANCE]
        assert result.alerts[0].id is None
        assert len(await store.list_entries(OWNER)) == 1

    @pytest.mark.asyncio
    async def test_dismiss_alert(self, ledger):
        result = await ledger.create_entry(OWNER, _entry(amount="5"))
        alert_id = result.alerts[0].id

        await ledger.dismiss_alert(OWNER, alert_id)

        assert await ledger.list_alerts(OWNER) == []
        assert len(await ledger.list_alerts(OWNER, include_dismissed=True)) == 1
        with pytest.raises(NotFoundError):
            await ledger.dismiss_alert(OWNER, uuid4())


class TestPartyFlow:
    @pytest.mark.asyncio
    async def test_party_crud(self, parties):
        party = await parties.create_party(OWNER, {"name": "Acme", "party_type": "Vendor"})

        assert (await parties.get_party(OWNER, party.id)).name == "Acme"

        updated = await parties.update_party(OWNER, party.id, {"mobile": "5550100"})
        assert updated.mobile == "5550100"
        assert updated.updated_at >= party.updated_at

        assert [p.id for p in await parties.list_parties(OWNER)] == [party.id]

    @pytest.mark.asyncio
    async def test_duplicate_name(self, parties):
        await parties.create_party(OWNER, {"name": "Acme", "party_type": "Vendor"})
        with pytest.raises(LedgerValidationError, match="already exists"):
            await parties.create_party(OWNER, {"name": "ACME", "party_type": "Customer"})

    @pytest.mark.asyncio
    async def test_invalid_party(self, parties):
        with pytest.raises(LedgerValidationError):
            await parties.create_party(OWNER, {"name": "", "party_type": "Vendor"})

    @pytest.mark.asyncio
    async def test_missing_party(self, parties):
        with pytest.raises(NotFoundError):
            await parties.get_party(OWNER, uuid4())

    @pytest.mark.asyncio
    async def test_party_balance(self, ledger, parties):
        """Opening balance plus what is still open against this party."""
        party = await parties.create_party(
            OWNER, {"name": "Acme", "party_type": "Customer", "opening_balance": "100"}
        )
        credit = await ledger.create_entry(
            OWNER, _entry("Credit", "Sales", "1000", party_id=str(party.id))
        )
        await ledger.settle(OWNER, credit.entry.id, "400", TODAY, "Cash")
        await ledger.create_entry(
            OWNER, _entry("Advance", "Sales", "300", payment_method="Bank", party_id=str(party.id))
        )
        await ledger.create_entry(OWNER, _entry("Credit", "Sales", "500"))

        assert await parties.get_party_balance(OWNER, party.id) == Decimal("400")

    @pytest.mark.asyncio
    async def test_party_balance_of_missing_party(self, parties):
        with pytest.raises(NotFoundError):
            await parties.get_party_balance(OWNER, uuid4())

    @pytest.mark.asyncio
    async def test_delete_party_detaches_entries(self, ledger, parties):
        party = await parties.create_party(OWNER, {"name": "Acme", "party_type": "Customer"})
        linked = await ledger.create_entry(OWNER, _entry(party_id=str(party.id)))
        await ledger.create_entry(OWNER, _entry())

        detached = await parties.delete_party(OWNER, party.id)

        assert detached == 1
        assert (await ledger.get_entry(OWNER, linked.entry.id)).party_id is None
        assert len(await ledger.list_entries(OWNER)) == 2
        with pytest.raises(NotFoundError):
            await parties.get_party(OWNER, party.id)


class TestReports:
    @pytest.mark.asyncio
    async def test_trend_and_breakdown(self, ledger, reports):
        await ledger.create_entry(OWNER, _entry(amount="1000"))
        await ledger.create_entry(OWNER, _entry("Cash OUT", "COGS", "300"))
        await ledger.create_entry(OWNER, _entry("Cash OUT", "Opex", "100"))

        trend = await reports.get_profit_trend(OWNER)
        assert len(trend) == 6
        assert trend[-1].month == "Mar 2025"
        assert trend[-1].profit == Decimal("600")

        breakdown = await reports.get_expense_breakdown(OWNER)
        assert [b.category for b in breakdown] == [Category.COGS, Category.OPEX]

        recommendations = await reports.get_recommendations(OWNER)
        assert recommendations[-1].startswith("Top expense category: COGS")


class TestAppComponents:
    def test_in_memory_components(self):
        ledger, parties, reports, sheets_client = create_app_components(use_storage=False)
        assert sheets_client is None
        assert ledger is not None
        assert parties is not None
        assert reports is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
