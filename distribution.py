"""
Income distribution strategies.

Spreads a distributable amount across expense envelopes using one of
three strategies (priority, proportional, equal). All arithmetic is done
in whole cents: raw shares are floored to the cent and any residual cents
go to the first envelope in iteration order, so the allocations plus the
unassigned remainder always add up to the requested amount exactly.
"""

import logging
from typing import Dict, List, Optional, Tuple, assert_never

from budget_types import (
    DistributionResult,
    DistributionStrategy,
    Envelope,
    EnvelopeAllocation,
    RuleEvaluationResult,
)
from distribution_rules import match_rules, select_auto_distribution_rule
from exceptions import DistributionError, ValidationError
from obligation_catalog import ObligationCatalog
from utils import from_cents, to_cents

logger = logging.getLogger(__name__)


def priority_order(envelopes: List[Envelope]) -> List[Envelope]:
    """Sort envelopes by tier, then by remaining need (largest first); stable otherwise."""
    return sorted(envelopes, key=lambda env: (env.priority.rank, -env.remaining_need))


def _allocate_priority(cents: int, envelopes: List[Envelope]) -> Tuple[List[Envelope], Dict[int, int], int]:
    eligible = priority_order([env for env in envelopes if env.is_active])
    shares = {env.id: 0 for env in eligible}
    remaining = cents

    for env in eligible:
        if remaining <= 0:
            break
        given = min(max(0, to_cents(env.remaining_need)), remaining)
        shares[env.id] += given
        remaining -= given

    if remaining > 0:
        contributors = [env for env in eligible if env.monthly_contribution > 0]
        if contributors:
            shares[contributors[-1].id] += remaining
            remaining = 0
        else:
            logger.info("No envelope can absorb leftover of %s; leaving it unassigned", from_cents(remaining))

    return eligible, shares, remaining


def _allocate_equal(cents: int, envelopes: List[Envelope]) -> Tuple[List[Envelope], Dict[int, int], int]:
    eligible = [env for env in envelopes if env.is_active and env.monthly_contribution > 0]
    if not eligible:
        return [], {}, cents

    base = cents // len(eligible)
    shares = {env.id: base for env in eligible}
    shares[eligible[0].id] += cents - base * len(eligible)
    return eligible, shares, 0


def _allocate_proportional(cents: int, envelopes: List[Envelope]) -> Tuple[List[Envelope], Dict[int, int], int]:
    eligible = [env for env in envelopes if env.is_active]
    needs = {env.id: max(0, to_cents(env.remaining_need)) for env in eligible}
    total_need = sum(needs.values())
    if total_need == 0:
        logger.info("No envelope has a remaining need; falling back to an equal split")
        return _allocate_equal(cents, envelopes)

    shares = {env.id: cents * needs[env.id] // total_need for env in eligible}
    residual = cents - sum(shares.values())
    if residual:
        first_with_need = next(env for env in eligible if needs[env.id] > 0)
        shares[first_with_need.id] += residual
    return eligible, shares, 0


def distribute(amount: float, strategy: DistributionStrategy, envelopes: List[Envelope]) -> DistributionResult:
    """
    Allocate an amount across envelopes.

    Args:
        amount: Amount to distribute (>= 0)
        strategy: Distribution strategy
        envelopes: Candidate envelopes in configuration order

    Returns:
        DistributionResult; allocations are non-negative and, together with
        the unassigned remainder, sum exactly to amount

    Raises:
        ValidationError: If amount is negative or the strategy is unknown
    """
    strategy = DistributionStrategy.parse(strategy, "strategy")
    if amount < 0:
        raise ValidationError("amount must not be negative", field="amount")

    cents = to_cents(amount)
    if strategy is DistributionStrategy.PRIORITY:
        eligible, shares, unassigned = _allocate_priority(cents, envelopes)
    elif strategy is DistributionStrategy.PROPORTIONAL:
        eligible, shares, unassigned = _allocate_proportional(cents, envelopes)
    elif strategy is DistributionStrategy.EQUAL:
        eligible, shares, unassigned = _allocate_equal(cents, envelopes)
    else:
        assert_never(strategy)

    if sum(shares.get(env.id, 0) for env in eligible) + unassigned != cents:
        raise DistributionError(
            "Distribution does not account for the full amount",
            details={"strategy": strategy.value, "amount": from_cents(cents)}
        )

    result = DistributionResult(
        amount=from_cents(cents),
        strategy=strategy,
        allocations=[
            EnvelopeAllocation(envelope_id=env.id, envelope_name=env.name, amount=from_cents(shares[env.id]))
            for env in eligible
        ],
        unassigned=from_cents(unassigned)
    )
    logger.debug(
        "Distributed %s with %s strategy: %s (unassigned %s)",
        result.amount, strategy.value,
        {item.envelope_id: item.amount for item in result.allocations}, result.unassigned
    )
    return result


class DistributionService:
    """
    Runs distributions against the catalog's envelopes.

    Manual distributions bypass rule matching; automatic ones happen only
    when a matched rule has auto_distribute enabled.
    """

    def __init__(self, catalog: ObligationCatalog):
        """
        Initialize the distribution service.

        Args:
            catalog: ObligationCatalog providing envelopes, rules and transactions
        """
        self.catalog = catalog
        logger.info("Distribution service initialized")

    def _run(self, amount: float, strategy: DistributionStrategy, apply: bool) -> DistributionResult:
        envelopes = self.catalog.list_envelopes()
        result = distribute(amount, strategy, envelopes)
        if apply:
            self.catalog.apply_allocations(result.allocations)
        return result

    def distribute_manually(
        self,
        amount: float,
        strategy: DistributionStrategy | str = DistributionStrategy.PRIORITY,
        apply: bool = True
    ) -> DistributionResult:
        """
        Distribute a user-entered amount immediately.

        Args:
            amount: Amount to distribute (> 0)
            strategy: Strategy to use
            apply: When False, only preview the result

        Returns:
            DistributionResult

        Raises:
            ValidationError: If amount is not positive or strategy is unknown
        """
        if amount is None or amount <= 0:
            raise ValidationError("amount must be greater than 0", field="amount")
        strategy = DistributionStrategy.parse(strategy, "strategy")
        result = self._run(amount, strategy, apply)
        logger.info(
            "Manual distribution of %s (%s): %d envelopes, %s unassigned",
            result.amount, strategy.value, len(result.allocations), result.unassigned
        )
        return result

    def evaluate_transaction(self, transaction_id: int, apply: bool = True) -> RuleEvaluationResult:
        """
        Match active rules against a transaction and auto-distribute if allowed.

        Args:
            transaction_id: Transaction to evaluate
            apply: When False, compute the distribution without storing it

        Returns:
            RuleEvaluationResult with matched, triggered and pending rule ids

        Raises:
            NotFoundError: If the transaction does not exist
        """
        transaction = self.catalog.get_transaction(transaction_id)
        matches = match_rules(transaction, self.catalog.list_rules(active_only=True))
        triggered = select_auto_distribution_rule(matches)

        distribution: Optional[DistributionResult] = None
        if triggered is not None and transaction.amount > 0:
            distribution = self._run(transaction.amount, triggered.strategy, apply)
            logger.info(
                "Rule %s distributed transaction %s (%s)",
                triggered.id, transaction_id, transaction.amount
            )
        elif triggered is not None:
            logger.warning("Transaction %s is not positive; skipping automatic distribution", transaction_id)

        return RuleEvaluationResult(
            transaction_id=transaction_id,
            matched_rule_ids=[rule.id for rule in matches],
            triggered_rule_id=triggered.id if distribution is not None else None,
            pending_rule_ids=[
                rule.id for rule in matches
                if distribution is None or rule.id != triggered.id
            ],
            distribution=distribution
        )
