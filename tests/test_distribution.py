"""
Unit tests for the distribution strategies and the distribution service.
"""

from datetime import date

import pytest

from budget_types import DistributionStrategy, Envelope, EnvelopeStatus, PriorityTier
from distribution import DistributionService, distribute, priority_order
from distribution_rules import RuleManager
from exceptions import NotFoundError, ValidationError
from utils import to_cents


def _envelope(env_id, need, contribution=10.0, priority=PriorityTier.IMPORTANT, status=EnvelopeStatus.ACTIVE):
    return Envelope(
        id=env_id,
        name=f"Envelope {env_id}",
        target_amount=need,
        monthly_contribution=contribution,
        priority=priority,
        status=status,
    )


def _mixed_envelopes():
    return [
        _envelope(1, 120.0, contribution=40.0, priority=PriorityTier.DISCRETIONARY),
        _envelope(2, 75.5, contribution=25.0, priority=PriorityTier.ESSENTIAL),
        _envelope(3, 0.0, contribution=0.0),
        _envelope(4, 300.0, contribution=100.0, status=EnvelopeStatus.ARCHIVED),
        _envelope(5, 33.33, contribution=11.11, priority=PriorityTier.IMPORTANT),
    ]


class TestSumInvariant:
    """Allocations plus the unassigned remainder equal the amount, to the cent."""

    @pytest.mark.parametrize("strategy", list(DistributionStrategy))
    @pytest.mark.parametrize("amount", [0.01, 1.0, 99.99, 228.83, 1234.57, 10000.0])
    def test_allocations_add_up(self, strategy, amount):
        result = distribute(amount, strategy, _mixed_envelopes())

        total_cents = sum(to_cents(item.amount) for item in result.allocations) + to_cents(result.unassigned)
        assert total_cents == to_cents(amount)
        assert all(item.amount >= 0 for item in result.allocations)
        assert result.strategy is strategy

    def test_zero_amount_allocates_nothing(self):
        result = distribute(0.0, DistributionStrategy.PRIORITY, _mixed_envelopes())

        assert result.total_allocated == 0.0
        assert result.unassigned == 0.0

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError) as excinfo:
            distribute(-5.0, DistributionStrategy.EQUAL, _mixed_envelopes())
        assert excinfo.value.field == "amount"

    def test_strategy_given_as_string(self):
        result = distribute(10.0, "equal", [_envelope(1, 10.0)])
        assert result.strategy is DistributionStrategy.EQUAL


class TestPriorityStrategy:
    """Tests for the priority strategy."""

    def test_fills_higher_tiers_first(self):
        envelopes = [
            _envelope(1, 50.0, priority=PriorityTier.ESSENTIAL),
            _envelope(2, 200.0, priority=PriorityTier.DISCRETIONARY),
        ]

        result = distribute(100.0, DistributionStrategy.PRIORITY, envelopes)

        assert result.amount_for(1) == 50.0
        assert result.amount_for(2) == 50.0
        assert result.unassigned == 0.0

    def test_larger_need_first_within_tier(self):
        envelopes = [_envelope(1, 20.0), _envelope(2, 80.0)]

        result = distribute(50.0, DistributionStrategy.PRIORITY, envelopes)

        assert result.amount_for(2) == 50.0
        assert result.amount_for(1) == 0.0

    def test_leftover_goes_to_lowest_priority_contributor(self):
        envelopes = [
            _envelope(1, 10.0, contribution=5.0, priority=PriorityTier.ESSENTIAL),
            _envelope(2, 10.0, contribution=5.0, priority=PriorityTier.DISCRETIONARY),
            _envelope(3, 0.0, contribution=0.0, priority=PriorityTier.DISCRETIONARY),
        ]

        result = distribute(100.0, DistributionStrategy.PRIORITY, envelopes)

        assert result.amount_for(1) == 10.0
        assert result.amount_for(2) == 90.0
        assert result.amount_for(3) == 0.0
        assert result.unassigned == 0.0

    def test_leftover_unassigned_without_contributors(self):
        envelopes = [_envelope(1, 10.0, contribution=0.0)]

        result = distribute(25.0, DistributionStrategy.PRIORITY, envelopes)

        assert result.amount_for(1) == 10.0
        assert result.unassigned == 15.0

    def test_archived_envelopes_receive_nothing(self):
        envelopes = [_envelope(1, 100.0, status=EnvelopeStatus.ARCHIVED), _envelope(2, 100.0)]

        result = distribute(60.0, DistributionStrategy.PRIORITY, envelopes)

        assert [item.envelope_id for item in result.allocations] == [2]

    def test_priority_order_is_stable(self):
        envelopes = [_envelope(3, 10.0), _envelope(1, 10.0), _envelope(2, 10.0)]

        assert [env.id for env in priority_order(envelopes)] == [3, 1, 2]


class TestProportionalStrategy:
    """Tests for the proportional strategy."""

    def test_shares_follow_remaining_need(self):
        envelopes = [_envelope(1, 100.0), _envelope(2, 300.0)]

        result = distribute(40.0, DistributionStrategy.PROPORTIONAL, envelopes)

        assert result.amount_for(1) == 10.0
        assert result.amount_for(2) == 30.0

    def test_zero_need_receives_nothing(self):
        envelopes = [_envelope(1, 0.0), _envelope(2, 50.0)]

        result = distribute(20.0, DistributionStrategy.PROPORTIONAL, envelopes)

        assert result.amount_for(1) == 0.0
        assert result.amount_for(2) == 20.0

    def test_residual_cent_goes_to_first_envelope(self):
        envelopes = [_envelope(1, 1.0), _envelope(2, 1.0), _envelope(3, 1.0)]

        result = distribute(100.0, DistributionStrategy.PROPORTIONAL, envelopes)

        assert [item.amount for item in result.allocations] == [33.34, 33.33, 33.33]

    def test_balance_reduces_need(self):
        funded = _envelope(1, 100.0)
        funded.current_balance = 100.0
        envelopes = [funded, _envelope(2, 100.0)]

        result = distribute(30.0, DistributionStrategy.PROPORTIONAL, envelopes)

        assert result.amount_for(1) == 0.0
        assert result.amount_for(2) == 30.0

    def test_falls_back_to_equal_when_nothing_is_needed(self):
        envelopes = [_envelope(1, 0.0, contribution=5.0), _envelope(2, 0.0, contribution=5.0)]

        result = distribute(10.0, DistributionStrategy.PROPORTIONAL, envelopes)

        assert result.amount_for(1) == 5.0
        assert result.amount_for(2) == 5.0


class TestEqualStrategy:
    """Tests for the equal strategy."""

    def test_even_split_among_contributors(self):
        envelopes = [_envelope(1, 0.0, contribution=1.0), _envelope(2, 0.0, contribution=0.0),
                     _envelope(3, 0.0, contribution=2.0), _envelope(4, 0.0, contribution=3.0)]

        result = distribute(100.0, DistributionStrategy.EQUAL, envelopes)

        assert [item.envelope_id for item in result.allocations] == [1, 3, 4]
        assert [item.amount for item in result.allocations] == [33.34, 33.33, 33.33]

    def test_no_eligible_envelopes_leaves_amount_unassigned(self):
        result = distribute(50.0, DistributionStrategy.EQUAL, [_envelope(1, 10.0, contribution=0.0)])

        assert result.allocations == []
        assert result.unassigned == 50.0


class TestDistributionService:
    """Tests for manual and rule-triggered distributions against the catalog."""

    def test_manual_distribution_updates_balances(self, catalog, seed):
        rent = seed.plan("Rent", target_amount=50.0, monthly_contribution=50.0, priority=PriorityTier.ESSENTIAL)
        fun = seed.plan("Fun", target_amount=200.0, monthly_contribution=20.0, priority=PriorityTier.DISCRETIONARY)
        service = DistributionService(catalog)

        result = service.distribute_manually(100.0, "priority")

        assert result.amount_for(rent) == 50.0
        assert seed.balance_of(rent) == 50.0
        assert seed.balance_of(fun) == 50.0

    def test_dry_run_leaves_balances_untouched(self, catalog, seed):
        rent = seed.plan("Rent", target_amount=50.0, monthly_contribution=50.0)
        service = DistributionService(catalog)

        result = service.distribute_manually(40.0, DistributionStrategy.EQUAL, apply=False)

        assert result.amount_for(rent) == 40.0
        assert seed.balance_of(rent) == 0.0

    @pytest.mark.parametrize("amount", [0, -10.0, None])
    def test_manual_amount_must_be_positive(self, catalog, amount):
        with pytest.raises(ValidationError) as excinfo:
            DistributionService(catalog).distribute_manually(amount)
        assert excinfo.value.field == "amount"

    def test_auto_rule_triggers_distribution(self, catalog, seed):
        account = seed.account("Checking")
        rent = seed.plan("Rent", target_amount=500.0, monthly_contribution=500.0)
        tx = seed.transaction(date(2024, 5, 27), "ACME payroll", 2500.0, account_id=account)
        rule = RuleManager(catalog).create_rule(name="Salary", expected_amount=2400.0, description_pattern="acme")

        result = DistributionService(catalog).evaluate_transaction(tx)

        assert result.matched_rule_ids == [rule.id]
        assert result.triggered_rule_id == rule.id
        assert result.pending_rule_ids == []
        assert result.distribution.amount == 2500.0
        assert seed.balance_of(rent) == 2500.0

    def test_manual_rule_waits_for_confirmation(self, catalog, seed):
        rent = seed.plan("Rent", target_amount=500.0, monthly_contribution=500.0)
        tx = seed.transaction(date(2024, 5, 27), "ACME payroll", 2500.0)
        rule = RuleManager(catalog).create_rule(name="Salary", description_pattern="acme", auto_distribute=False)

        result = DistributionService(catalog).evaluate_transaction(tx)

        assert result.triggered_rule_id is None
        assert result.pending_rule_ids == [rule.id]
        assert result.distribution is None
        assert seed.balance_of(rent) == 0.0

    def test_inactive_rules_do_not_match(self, catalog, seed):
        tx = seed.transaction(date(2024, 5, 27), "ACME payroll", 2500.0)
        RuleManager(catalog).create_rule(name="Salary", description_pattern="acme", is_active=False)

        result = DistributionService(catalog).evaluate_transaction(tx)

        assert result.matched_rule_ids == []
        assert result.distribution is None

    def test_unknown_transaction(self, catalog):
        with pytest.raises(NotFoundError):
            DistributionService(catalog).evaluate_transaction(404)
