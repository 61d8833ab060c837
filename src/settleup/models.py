"""Pydantic domain models for SettleUp.

All amounts are non-negative integers in the smallest currency unit (yen).
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

# ============================================================================
# Enumerations
# ============================================================================


class SplitType(str, Enum):
    """How a payment is divided among members."""

    EQUAL = "equal"
    CUSTOM = "custom"
    PROXY = "proxy"


class SessionStatus(str, Enum):
    """Settlement session lifecycle: draft -> confirmed -> pending_payment -> settled."""

    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PENDING_PAYMENT = "pending_payment"
    SETTLED = "settled"


class EntryStatus(str, Enum):
    """Resolution state of a settlement entry."""

    PENDING = "pending"
    FILLED = "filled"
    SKIPPED = "skipped"


class SourceType(str, Enum):
    """Where a settlement entry came from."""

    PAYMENT = "payment"
    RECURRING_RULE = "recurring_rule"
    MANUAL = "manual"


# ============================================================================
# Group and payment models
# ============================================================================


class Member(BaseModel):
    """A group member."""

    id: str
    display_name: str


class Split(BaseModel):
    """One member's owed portion of a payment."""

    payment_id: str
    user_id: str
    amount: int = Field(ge=0)


class Payment(BaseModel):
    """A payment logged by a group member."""

    id: str
    group_id: str
    payer_id: str
    amount: int = Field(ge=0)
    payment_date: date
    description: str = ""
    split_type: SplitType = SplitType.EQUAL
    splits: list[Split] = Field(default_factory=list)
    settlement_id: str | None = None  # set once a confirmed session absorbs it


class RecurringRuleSplit(BaseModel):
    """Custom split template of a recurring rule (fixed amount or percentage)."""

    user_id: str
    amount: int | None = Field(default=None, ge=0)
    percentage: float | None = Field(default=None, ge=0, le=100)


class RecurringRule(BaseModel):
    """A recurring charge (rent, utilities...) that fires on a day of month."""

    id: str
    group_id: str
    description: str
    day_of_month: int = Field(ge=1, le=31)
    default_payer_id: str
    is_variable: bool = False  # amount differs every period, must be filled by hand
    default_amount: int | None = Field(default=None, ge=0)
    interval_months: int = Field(default=1, ge=1, le=12)
    split_type: SplitType = SplitType.EQUAL
    start_date: date
    end_date: date | None = None
    is_active: bool = True
    splits: list[RecurringRuleSplit] = Field(default_factory=list)


# ============================================================================
# Settlement models
# ============================================================================


class NetTransfer(BaseModel):
    """A single point-to-point payment instruction."""

    from_id: str
    from_name: str
    to_id: str
    to_name: str
    amount: int = Field(ge=0)


class SettlementSession(BaseModel):
    """A bounded period over which payments are aggregated and netted."""

    id: str
    group_id: str
    period_start: date
    period_end: date
    status: SessionStatus = SessionStatus.DRAFT
    created_by: str | None = None
    net_transfers: list[NetTransfer] = Field(default_factory=list)
    confirmed_at: datetime | None = None
    payment_reported_at: datetime | None = None
    settled_at: datetime | None = None


class EntrySplit(BaseModel):
    """A member's share of a settlement entry (custom and proxy entries)."""

    user_id: str
    amount: int = Field(ge=0)


def make_source_key(
    source_type: SourceType, source_id: str | None, payment_date: date
) -> str | None:
    """
    Build the identity key of an obligation.

    Payments are identified by id alone; recurring rules fire once per date,
    so the firing date is part of their identity. Manual entries have no key.
    """
    if source_id is None or source_type == SourceType.MANUAL:
        return None
    if source_type == SourceType.RECURRING_RULE:
        return f"{source_type.value}:{source_id}|{payment_date.isoformat()}"
    return f"{source_type.value}:{source_id}"


class Obligation(BaseModel):
    """A freshly computed obligation that a draft session should contain."""

    source_type: SourceType
    source_id: str
    payment_date: date
    description: str = ""
    payer_id: str
    expected_amount: int | None = None
    actual_amount: int | None = None
    split_type: SplitType = SplitType.EQUAL
    splits: list[EntrySplit] = Field(default_factory=list)

    @property
    def source_key(self) -> str:
        key = make_source_key(self.source_type, self.source_id, self.payment_date)
        assert key is not None
        return key


class SettlementEntry(BaseModel):
    """One obligation tracked within a draft session."""

    id: str | None = None
    session_id: str
    source_type: SourceType
    source_id: str | None = None
    payment_date: date
    description: str = ""
    payer_id: str
    expected_amount: int | None = Field(default=None, ge=0)
    actual_amount: int | None = Field(default=None, ge=0)
    status: EntryStatus = EntryStatus.PENDING
    split_type: SplitType = SplitType.EQUAL
    splits: list[EntrySplit] = Field(default_factory=list)
    filled_by: str | None = None

    @property
    def source_key(self) -> str | None:
        return make_source_key(self.source_type, self.source_id, self.payment_date)

    @property
    def is_locked(self) -> bool:
        """Filled and skipped entries hold user input and survive refresh."""
        return self.status in (EntryStatus.FILLED, EntryStatus.SKIPPED)


class EntryDiff(BaseModel):
    """Minimal change set that brings a draft's entries up to date."""

    to_insert: list[SettlementEntry] = Field(default_factory=list)
    to_update: list[SettlementEntry] = Field(default_factory=list)
    to_delete: list[str] = Field(default_factory=list)  # entry ids

    @property
    def is_empty(self) -> bool:
        return not (self.to_insert or self.to_update or self.to_delete)


# ============================================================================
# Derived results
# ============================================================================


class EqualSplit(BaseModel):
    """Result of dividing an amount evenly."""

    amount_per_person: int
    remainder: int | float  # carried over as unsettled
    total: int  # amount_per_person * count


class MemberBalance(BaseModel):
    """Paid/owed totals of a member over a period."""

    id: str
    name: str
    paid: int = 0
    owed: int = 0
    balance: int = 0  # paid - owed; positive receives, negative pays


class ConsolidationResult(BaseModel):
    """Transfers produced by the netting solver."""

    transfers: list[NetTransfer] = Field(default_factory=list)
    is_zero: bool = False  # nothing to settle at all


class PeriodSuggestion(BaseModel):
    """Suggested [start, end] range for the next settlement draft."""

    suggested_start: date
    suggested_end: date
    oldest_unsettled_date: date | None = None
    last_confirmed_end: date | None = None
    unsettled_count: int = 0
