"""
Core Data Models for Bookkeeper

These models define the strict schemas for every ledger record.
They are designed to:
1. Enforce the settlement invariants at construction time
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Reject loosely-typed payloads at the boundary

DESIGN DECISION: User input is parsed into a tagged variant per entry type.
Each variant only carries the fields (and payment methods) valid for that
type, so a Credit paid in cash or an Advance with no payment method is
rejected before any business logic runs.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryType(str, Enum):
    """
    Kinds of ledger entry.

    Only the first four can be created by a user. The settlement subtypes
    are written by the settlement engine.
    """
    CASH_IN = "Cash IN"
    CASH_OUT = "Cash OUT"
    CREDIT = "Credit"
    ADVANCE = "Advance"

    # Settlement-derived subtypes
    CREDIT_SETTLEMENT_COLLECTION = "Credit Settlement (Collection)"
    CREDIT_SETTLEMENT_BILL = "Credit Settlement (Bill)"
    ADVANCE_SETTLEMENT_RECEIVED = "Advance Settlement (Received)"
    ADVANCE_SETTLEMENT_PAID = "Advance Settlement (Paid)"

    @property
    def is_obligation(self) -> bool:
        """Credit and Advance entries carry a remaining amount."""
        return self in (EntryType.CREDIT, EntryType.ADVANCE)

    @property
    def is_settlement_subtype(self) -> bool:
        return self in SETTLEMENT_SUBTYPES


SETTLEMENT_SUBTYPES = frozenset({
    EntryType.CREDIT_SETTLEMENT_COLLECTION,
    EntryType.CREDIT_SETTLEMENT_BILL,
    EntryType.ADVANCE_SETTLEMENT_RECEIVED,
    EntryType.ADVANCE_SETTLEMENT_PAID,
})


class Category(str, Enum):
    """
    Accounting category of an entry.

    Sales is income; COGS and Opex are expenses that enter profit;
    Assets move cash but never enter profit.
    """
    SALES = "Sales"
    COGS = "COGS"
    OPEX = "Opex"
    ASSETS = "Assets"


class PaymentMethod(str, Enum):
    """How money moved. Credit entries always use NONE."""
    CASH = "Cash"
    BANK = "Bank"
    NONE = "None"


class SettlementType(str, Enum):
    """Which kind of obligation a companion entry settles."""
    CREDIT = "credit"
    ADVANCE = "advance"


class ObligationState(str, Enum):
    """Settlement state of a Credit or Advance entry."""
    OPEN = "open"
    PARTIALLY_SETTLED = "partially_settled"
    SETTLED = "settled"


class PartyType(str, Enum):
    CUSTOMER = "Customer"
    VENDOR = "Vendor"
    BOTH = "Both"


Money = Annotated[Decimal, Field(gt=0, decimal_places=2)]


# =============================================================================
# LEDGER ENTRY
# =============================================================================

class Entry(BaseModel):
    """
    A single recorded financial fact.

    CRITICAL: `amount` is the face value and is never touched by settlement.
    Settlement only ever decreases `remaining_amount`.

    Invariants enforced on construction:
    - Credit/Advance: 0 <= remaining_amount <= amount
    - Credit/Advance: settled iff remaining_amount == 0
    - Companion entries always reference their originating obligation
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity (assigned by the store on insert)
    id: Optional[UUID] = None
    owner_id: str = Field(..., min_length=1)

    entry_date: date
    entry_type: EntryType
    category: Category
    amount: Money
    remaining_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        decimal_places=2,
        description="Outstanding balance for Credit/Advance entries"
    )
    settled: bool = False
    settled_at: Optional[date] = None
    payment_method: PaymentMethod
    party_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    # Settlement linkage
    is_settlement: bool = False
    settlement_type: Optional[SettlementType] = None
    original_entry_id: Optional[UUID] = Field(
        default=None,
        description="Obligation this companion entry was created for"
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_settlement_state(self) -> 'Entry':
        """Reject entries that break the settlement invariants."""
        if self.entry_type.is_obligation:
            if self.remaining_amount is None:
                raise ValueError(
                    f"{self.entry_type.value} entries must track remaining_amount"
                )
            if self.remaining_amount > self.amount:
                raise ValueError("remaining_amount cannot exceed amount")
            if self.settled != (self.remaining_amount == 0):
                raise ValueError("settled must be true exactly when remaining_amount is zero")

        if self.is_settlement and (
            self.original_entry_id is None or self.settlement_type is None
        ):
            raise ValueError("Settlement entries must reference their original entry")

        return self

    @property
    def obligation_state(self) -> Optional[ObligationState]:
        """State machine position, None for non-obligation entries."""
        if not self.entry_type.is_obligation:
            return None
        if self.remaining_amount == 0:
            return ObligationState.SETTLED
        if self.remaining_amount == self.amount:
            return ObligationState.OPEN
        return ObligationState.PARTIALLY_SETTLED

    @property
    def settled_amount(self) -> Decimal:
        """How much of an obligation has been settled so far."""
        if not self.entry_type.is_obligation:
            return Decimal("0")
        return self.amount - self.remaining_amount

    @property
    def is_credit_companion(self) -> bool:
        """Cash IN/OUT written when a Credit entry was settled."""
        return self.is_settlement and self.settlement_type == SettlementType.CREDIT

    def evolve(self, **changes) -> 'Entry':
        """Return a re-validated copy with `changes` applied."""
        data = self.model_dump()
        data["updated_at"] = utc_now()
        data.update(changes)
        return Entry.model_validate(data)


# =============================================================================
# INPUT VARIANTS (tagged on entry_type)
# =============================================================================

class _EntryInputBase(BaseModel):
    """Fields shared by every user-created entry."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    category: Category
    amount: Money
    entry_date: date
    party_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class CashMovementInput(_EntryInputBase):
    """Cash IN / Cash OUT: money moved now, through cash or bank."""
    entry_type: Literal["Cash IN", "Cash OUT"]
    payment_method: Literal["Cash", "Bank"] = "Cash"


class CreditInput(_EntryInputBase):
    """Credit sale or purchase: no money moves yet."""
    entry_type: Literal["Credit"]
    payment_method: Literal["None"] = "None"


class AdvanceInput(_EntryInputBase):
    """Advance paid or received: money moves before it is earned."""
    entry_type: Literal["Advance"]
    payment_method: Literal["Cash", "Bank"]


EntryInput = Annotated[
    Union[CashMovementInput, CreditInput, AdvanceInput],
    Field(discriminator="entry_type"),
]

ENTRY_INPUT_ADAPTER: TypeAdapter = TypeAdapter(EntryInput)


class EntryUpdate(BaseModel):
    """
    Partial edit of a user entry.

    Only fields explicitly set are applied; unknown fields are rejected.
    The merged result is re-validated as the variant for its entry type.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    entry_type: Optional[Literal["Cash IN", "Cash OUT", "Credit", "Advance"]] = None
    category: Optional[Category] = None
    amount: Optional[Money] = None
    entry_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    party_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    def changes(self) -> dict:
        """Fields the caller actually supplied."""
        return self.model_dump(exclude_unset=True)


# =============================================================================
# PARTIES
# =============================================================================

class Party(BaseModel):
    """
    A named counterparty (customer or vendor).

    Entries reference parties; deleting a party nulls those references.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[UUID] = None
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    mobile: Optional[str] = Field(default=None, max_length=20)
    party_type: PartyType
    opening_balance: Decimal = Field(default=Decimal("0"), decimal_places=2)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class PartyInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    mobile: Optional[str] = Field(default=None, max_length=20)
    party_type: PartyType
    opening_balance: Decimal = Field(default=Decimal("0"), decimal_places=2)


class PartyUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    mobile: Optional[str] = Field(default=None, max_length=20)
    party_type: Optional[PartyType] = None
    opening_balance: Optional[Decimal] = Field(default=None, decimal_places=2)


# =============================================================================
# BALANCE & QUERY HELPERS
# =============================================================================

class RunningBalance(BaseModel):
    """The incrementally maintained cash position of one owner."""

    owner_id: str
    balance: Decimal
    updated_at: datetime = Field(default_factory=utc_now)


class DateRange(BaseModel):
    """Inclusive calendar-date window. Either bound may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode='after')
    def validate_bounds(self) -> 'DateRange':
        if self.start and self.end and self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True
