"""
Budgeting module for zero-based monthly allocation.

This module provides the allocation ledger: for each calendar month it
works out the effective income (manual override or auto-detected income
transactions), how much of it is already assigned to expense plans, and
the remainder still "to be assigned".
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from budget_types import (
    AllocationItem,
    AllocationState,
    AllocationStatusColor,
    AutoAllocateResult,
    Envelope,
    IncomeBreakdown,
    PlanAllocation,
    SaveAllocationsResult,
)
from distribution import priority_order
from exceptions import ValidationError
from obligation_catalog import ObligationCatalog
from utils import format_month, from_cents, parse_month, round_money, to_cents

# Configure logging
logger = logging.getLogger(__name__)

# Remainders smaller than one cent count as fully allocated
COMPLETENESS_TOLERANCE = 0.005


def is_allocation_complete(remainder: float) -> bool:
    """Return True when the remainder is within a cent of zero."""
    return abs(remainder) < COMPLETENESS_TOLERANCE


def allocation_status_color(remainder: float) -> AllocationStatusColor:
    """
    Map an unassigned remainder to the banner colour.

    Args:
        remainder: Income minus assigned amount

    Returns:
        GREEN when complete, YELLOW when money is left, RED when over-assigned
    """
    if is_allocation_complete(remainder):
        return AllocationStatusColor.GREEN
    if remainder > 0:
        return AllocationStatusColor.YELLOW
    return AllocationStatusColor.RED


class AllocationLedger:
    """
    Zero-based allocation ledger (YNAB-style "to be assigned").

    States are recomputed on every read from the catalog; only income
    overrides and per-month plan allocations are stored.
    """

    def __init__(self, catalog: ObligationCatalog):
        """
        Initialize the allocation ledger.

        Args:
            catalog: ObligationCatalog used for plans, transactions and overrides
        """
        self.catalog = catalog
        logger.info("Allocation ledger initialized")

    @staticmethod
    def calculate_unassigned(income: float, assigned: float) -> float:
        """Return unassigned funds (income minus assigned)."""
        return income - assigned

    def _active_envelopes(self, month: date) -> List[Envelope]:
        return [env for env in self.catalog.list_envelopes() if env.is_active_in(month)]

    def get_income_breakdown(self, month: str | date) -> IncomeBreakdown:
        """
        Determine the month's effective income.

        Args:
            month: "YYYY-MM" or a date within the month

        Returns:
            IncomeBreakdown with auto-detected, override and effective income
        """
        month_start = parse_month(month)
        transactions = self.catalog.list_income_transactions(month_start)
        auto_detected = round_money(sum(tx.amount for tx in transactions))

        override = self.catalog.get_income_override(month_start)
        manual_override = override[0] if override else None
        effective = manual_override if manual_override is not None else auto_detected

        return IncomeBreakdown(
            auto_detected_income=auto_detected,
            manual_override=manual_override,
            effective_income=effective,
            income_transactions=transactions,
            override_notes=override[1] if override else None
        )

    def get_allocation_state(self, month: str | date) -> AllocationState:
        """
        Build the allocation state for a month.

        Args:
            month: "YYYY-MM" or a date within the month

        Returns:
            AllocationState for the month

        Raises:
            UpstreamUnavailable: If the catalog cannot be read
        """
        month_start = parse_month(month)
        income = self.get_income_breakdown(month_start)
        saved = self.catalog.get_plan_allocations(month_start)

        plans: List[PlanAllocation] = []
        for envelope in self._active_envelopes(month_start):
            allocated = saved.get(envelope.id, envelope.monthly_contribution)
            plans.append(PlanAllocation(
                plan_id=envelope.id,
                plan_name=envelope.name,
                purpose=envelope.purpose,
                priority=envelope.priority,
                suggested_amount=envelope.monthly_contribution,
                allocated_amount=allocated,
                linked_account_id=envelope.linked_account_id
            ))

        total_assigned = round_money(sum(plan.allocated_amount for plan in plans))
        remainder = round_money(self.calculate_unassigned(income.effective_income, total_assigned))

        state = AllocationState(
            month=format_month(month_start),
            income=income,
            total_assigned=total_assigned,
            unassigned=remainder,
            is_complete=is_allocation_complete(remainder),
            status_color=allocation_status_color(remainder),
            plans=plans,
            notes=income.override_notes
        )
        logger.debug(
            "Allocation state %s: income=%s assigned=%s remainder=%s",
            state.month, income.effective_income, total_assigned, remainder
        )
        return state

    def set_income_override(
        self,
        month: str | date,
        amount: Optional[float],
        notes: Optional[str] = None
    ) -> AllocationState:
        """
        Set or clear the manual income override for a month.

        Args:
            month: "YYYY-MM" or a date within the month
            amount: Override amount, or None to revert to auto-detection
            notes: Optional free-text note stored with the override

        Returns:
            The recomputed AllocationState

        Raises:
            ValidationError: If amount is negative
        """
        month_start = parse_month(month)
        if amount is None:
            self.catalog.delete_income_override(month_start)
        else:
            if amount < 0:
                raise ValidationError("amount must not be negative", field="amount")
            self.catalog.upsert_income_override(month_start, round_money(amount), notes)
        return self.get_allocation_state(month_start)

    def save_allocations(self, month: str | date, allocations: List[AllocationItem]) -> SaveAllocationsResult:
        """
        Store per-plan amounts for a month.

        Args:
            month: "YYYY-MM" or a date within the month
            allocations: Plan amounts to store

        Returns:
            SaveAllocationsResult with the recomputed state

        Raises:
            ValidationError: If an amount is negative
            NotFoundError: If a plan id is unknown
        """
        month_start = parse_month(month)
        for item in allocations:
            if item.amount < 0:
                raise ValidationError(
                    "allocation amount must not be negative",
                    field="amount",
                    details={"plan_id": item.plan_id}
                )
        cleaned = [AllocationItem(plan_id=item.plan_id, amount=round_money(item.amount)) for item in allocations]
        updated = self.catalog.save_plan_allocations(month_start, cleaned)
        return SaveAllocationsResult(
            success=True,
            state=self.get_allocation_state(month_start),
            plans_updated=updated
        )

    def auto_allocate(self, month: str | date) -> AutoAllocateResult:
        """
        Assign effective income to plans by priority until it runs out.

        Each plan receives its monthly contribution in priority order; the
        plan reached when income runs short receives the remainder and later
        plans receive nothing.

        Args:
            month: "YYYY-MM" or a date within the month

        Returns:
            AutoAllocateResult describing what was stored
        """
        month_start = parse_month(month)
        income = self.get_income_breakdown(month_start)
        available_cents = max(0, to_cents(income.effective_income))

        items: List[AllocationItem] = []
        allocated_by_plan: Dict[int, int] = {}
        for envelope in priority_order(self._active_envelopes(month_start)):
            wanted = max(0, to_cents(envelope.monthly_contribution))
            given = min(wanted, available_cents)
            available_cents -= given
            allocated_by_plan[envelope.id] = given
            items.append(AllocationItem(plan_id=envelope.id, amount=from_cents(given)))

        if items:
            self.catalog.save_plan_allocations(month_start, items)

        total_cents = sum(allocated_by_plan.values())
        result = AutoAllocateResult(
            plans_allocated=sum(1 for cents in allocated_by_plan.values() if cents > 0),
            total_allocated=from_cents(total_cents),
            remaining=from_cents(to_cents(income.effective_income) - total_cents),
            allocations=items
        )
        logger.info(
            "Auto-allocated %s across %d plans for %s (remaining %s)",
            result.total_allocated, result.plans_allocated, format_month(month_start), result.remaining
        )
        return result
