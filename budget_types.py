"""
Domain types for the budget allocation and income distribution engine.

Closed enumerations replace the free-form status strings of the plan
store, and plain dataclasses carry catalog snapshots and derived results
between the ledger, the distribution engine and the transfer advisor.
"""

import enum
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime
from typing import Any, List, Optional, Tuple

from exceptions import ValidationError


class _ParseableEnum(enum.Enum):
    """Enum with a validating constructor for user-supplied strings."""

    @classmethod
    def parse(cls, value: Any, field_name: str) -> "_ParseableEnum":
        """
        Convert a raw value into a member, raising ValidationError otherwise.

        Args:
            value: Member or raw string value
            field_name: Field reported on failure
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(member.value for member in cls)
            raise ValidationError(
                f"{field_name} must be one of: {allowed}",
                field=field_name,
                original_error=exc
            ) from exc


class EnvelopePurpose(_ParseableEnum):
    """What an envelope is saving for."""
    SINKING_FUND = "sinking_fund"
    SPENDING_BUDGET = "spending_budget"


class PriorityTier(_ParseableEnum):
    """Envelope priority tiers, most important first."""
    ESSENTIAL = "essential"
    IMPORTANT = "important"
    DISCRETIONARY = "discretionary"

    @property
    def rank(self) -> int:
        """Sort key: lower ranks are funded first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    PriorityTier.ESSENTIAL: 0,
    PriorityTier.IMPORTANT: 1,
    PriorityTier.DISCRETIONARY: 2,
}


class EnvelopeStatus(_ParseableEnum):
    """Lifecycle status of an envelope."""
    ACTIVE = "active"
    ARCHIVED = "archived"


class Reliability(_ParseableEnum):
    """How certain an income source is."""
    GUARANTEED = "guaranteed"
    EXPECTED = "expected"
    UNCERTAIN = "uncertain"

    @property
    def is_budget_safe(self) -> bool:
        """Guaranteed and expected income can be budgeted against."""
        return self in (Reliability.GUARANTEED, Reliability.EXPECTED)


class IncomeSourceStatus(_ParseableEnum):
    """Lifecycle status of an income source."""
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class DistributionStrategy(_ParseableEnum):
    """How a distributable amount is spread across envelopes."""
    PRIORITY = "priority"
    PROPORTIONAL = "proportional"
    EQUAL = "equal"


class TransactionType(_ParseableEnum):
    """Classification of a transaction (assigned by the transaction store)."""
    INCOME = "income"
    EXPENSE = "expense"


class AllocationStatusColor(_ParseableEnum):
    """Banner colour for the monthly allocation state."""
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class TransferStatus(_ParseableEnum):
    """Outcome of the transfer advisory for one account."""
    TRANSFERABLE = "transferable"
    TIGHT = "tight"
    INSUFFICIENT = "insufficient"


# ---------------------------------------------------------------------------
# Catalog records
# ---------------------------------------------------------------------------

@dataclass
class Envelope:
    """
    Expense plan snapshot as seen by the engine.

    Attributes:
        id: Plan identifier
        name: Display name
        purpose: Sinking fund or spending budget
        target_amount: Amount the envelope is saving toward
        monthly_contribution: Planned monthly assignment
        current_balance: Money already set aside
        priority: Priority tier
        linked_account_id: Account the plan is paid from, if any
        status: Active or archived
        active_from: First month the plan applies to (inclusive), if bounded
        active_until: Last month the plan applies to (inclusive), if bounded
    """
    id: int
    name: str
    target_amount: float
    monthly_contribution: float
    priority: PriorityTier = PriorityTier.IMPORTANT
    purpose: EnvelopePurpose = EnvelopePurpose.SINKING_FUND
    current_balance: float = 0.0
    linked_account_id: Optional[int] = None
    status: EnvelopeStatus = EnvelopeStatus.ACTIVE
    active_from: Optional[date] = None
    active_until: Optional[date] = None

    @property
    def is_active(self) -> bool:
        return self.status == EnvelopeStatus.ACTIVE

    @property
    def remaining_need(self) -> float:
        """Amount still missing to reach the target (never negative)."""
        return max(0.0, self.target_amount - self.current_balance)

    def is_active_in(self, month: date) -> bool:
        """Return True when the envelope is active and its window covers the month."""
        if not self.is_active:
            return False
        first_day = month.replace(day=1)
        if self.active_from is not None and first_day < self.active_from.replace(day=1):
            return False
        if self.active_until is not None and first_day > self.active_until.replace(day=1):
            return False
        return True


@dataclass
class IncomeSource:
    """
    Income plan snapshot with its twelve monthly amounts.

    monthly_amounts is indexed 0 (January) to 11 (December).
    """
    id: int
    name: str
    monthly_amounts: Tuple[float, ...]
    reliability: Reliability = Reliability.EXPECTED
    linked_account_id: Optional[int] = None
    expected_day: Optional[int] = None
    status: IncomeSourceStatus = IncomeSourceStatus.ACTIVE

    def __post_init__(self) -> None:
        if len(self.monthly_amounts) != 12:
            raise ValidationError(
                "monthly_amounts must contain exactly 12 values",
                field="monthly_amounts"
            )
        self.monthly_amounts = tuple(float(amount or 0.0) for amount in self.monthly_amounts)

    @property
    def is_active(self) -> bool:
        return self.status == IncomeSourceStatus.ACTIVE

    def amount_for_month(self, month_number: int) -> float:
        """Return the planned amount for a 1-based month number."""
        return self.monthly_amounts[month_number - 1]


@dataclass
class IncomeTransaction:
    """A transaction as delivered by the transaction store."""
    id: int
    date: date
    description: str
    amount: float
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    transaction_type: TransactionType = TransactionType.INCOME


@dataclass
class DistributionRule:
    """
    User-defined matcher for incoming funds.

    Attributes:
        expected_amount: Amount the income is expected to be (None = any)
        amount_tolerance: Allowed deviation from expected_amount, in percent
        description_pattern: Case-insensitive substring of the description
        category_id: Exact category the transaction must carry
        account_id: Exact account the transaction must land on
        auto_distribute: Distribute automatically when this rule wins
        strategy: Strategy used when distributing
        is_active: Inactive rules are kept but never evaluated
    """
    id: int
    name: str
    expected_amount: Optional[float] = None
    amount_tolerance: float = 10.0
    description_pattern: Optional[str] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    auto_distribute: bool = True
    strategy: DistributionStrategy = DistributionStrategy.PRIORITY
    is_active: bool = True


# ---------------------------------------------------------------------------
# Allocation ledger results
# ---------------------------------------------------------------------------

@dataclass
class AllocationItem:
    """Amount assigned to one plan for a month."""
    plan_id: int
    amount: float


@dataclass
class PlanAllocation:
    """Per-plan line of the monthly allocation state."""
    plan_id: int
    plan_name: str
    purpose: EnvelopePurpose
    priority: PriorityTier
    suggested_amount: float
    allocated_amount: float
    linked_account_id: Optional[int] = None


@dataclass
class IncomeBreakdown:
    """How the month's effective income was determined."""
    auto_detected_income: float
    manual_override: Optional[float]
    effective_income: float
    income_transactions: List[IncomeTransaction] = field(default_factory=list)
    override_notes: Optional[str] = None


@dataclass
class AllocationState:
    """Zero-based allocation state for one calendar month."""
    month: str
    income: IncomeBreakdown
    total_assigned: float
    unassigned: float
    is_complete: bool
    status_color: AllocationStatusColor
    plans: List[PlanAllocation] = field(default_factory=list)
    notes: Optional[str] = None


@dataclass
class SaveAllocationsResult:
    success: bool
    state: AllocationState
    plans_updated: int


@dataclass
class AutoAllocateResult:
    plans_allocated: int
    total_allocated: float
    remaining: float
    allocations: List[AllocationItem] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Distribution results
# ---------------------------------------------------------------------------

@dataclass
class EnvelopeAllocation:
    """Money assigned to one envelope by a distribution."""
    envelope_id: int
    envelope_name: str
    amount: float


@dataclass
class DistributionResult:
    """
    Outcome of distributing an amount.

    Allocations plus the unassigned remainder always add up to amount,
    to the cent.
    """
    amount: float
    strategy: DistributionStrategy
    allocations: List[EnvelopeAllocation] = field(default_factory=list)
    unassigned: float = 0.0

    @property
    def total_allocated(self) -> float:
        return round(sum(item.amount for item in self.allocations), 2)

    def amount_for(self, envelope_id: int) -> float:
        """Return the amount allocated to an envelope (0.0 if none)."""
        for item in self.allocations:
            if item.envelope_id == envelope_id:
                return item.amount
        return 0.0


@dataclass
class RuleEvaluationResult:
    """Outcome of evaluating distribution rules against one transaction."""
    transaction_id: int
    matched_rule_ids: List[int] = field(default_factory=list)
    triggered_rule_id: Optional[int] = None
    pending_rule_ids: List[int] = field(default_factory=list)
    distribution: Optional[DistributionResult] = None


# ---------------------------------------------------------------------------
# Transfer advisory results
# ---------------------------------------------------------------------------

@dataclass
class IncomeSourceDetail:
    plan_id: int
    name: str
    amount_for_month: float
    reliability: Reliability


@dataclass
class ObligationDetail:
    """
    An obligation counted against an account.

    For shared obligations monthly_contribution is the full amount and
    account_share is the part charged to this account.
    """
    plan_id: int
    name: str
    monthly_contribution: float
    priority: PriorityTier
    is_directly_assigned: bool
    account_share: float


@dataclass
class AccountTransferSuggestion:
    account_id: int
    account_name: str
    total_income: float
    income_sources: List[IncomeSourceDetail]
    direct_obligations: float
    direct_obligation_details: List[ObligationDetail]
    shared_obligations: float
    shared_obligation_details: List[ObligationDetail]
    total_obligations: float
    surplus: float
    safety_margin: float
    suggested_transfer: float
    status: TransferStatus


@dataclass
class TransferSuggestionsResponse:
    year: int
    month: int
    accounts: List[AccountTransferSuggestion]
    unassigned_total: float
    distinct_income_account_count: int
    share_per_account: float
    note: Optional[str] = None


def to_payload(value: Any) -> Any:
    """
    Convert dataclasses, enums and dates into plain JSON-friendly values.

    Args:
        value: Any engine result

    Returns:
        Nested dicts/lists of primitives
    """
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_payload(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(item) for item in value]
    return value
