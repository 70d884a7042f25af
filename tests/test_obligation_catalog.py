"""
Tests for the catalog reader: record conversion, mutations and failure translation.
"""

from datetime import date

import pytest

from budget_types import (
    EnvelopeAllocation,
    EnvelopeStatus,
    IncomeSourceStatus,
    Reliability,
)
from database_ops import Base
from exceptions import NotFoundError, UpstreamUnavailable
from obligation_catalog import monthly_columns


def test_monthly_columns_maps_index_to_month_names():
    columns = monthly_columns(range(1, 13))

    assert columns["january"] == 1.0
    assert columns["december"] == 12.0
    assert len(columns) == 12


def test_monthly_columns_requires_twelve_values():
    with pytest.raises(ValueError):
        monthly_columns([100.0] * 11)


def test_income_source_amounts_become_indexed_tuple(catalog, seed):
    account = seed.account("Checking")
    seed.income_plan("Salary", [float(m * 100) for m in range(1, 13)], account_id=account,
                     reliability=Reliability.EXPECTED)

    source = catalog.list_income_sources()[0]

    assert source.monthly_amounts[0] == 100.0
    assert source.amount_for_month(12) == 1200.0
    assert source.linked_account_id == account
    assert source.reliability is Reliability.EXPECTED


def test_inactive_income_sources_hidden_by_default(catalog, seed):
    seed.income_plan("Salary", [1000.0] * 12)
    seed.income_plan("Paused gig", [200.0] * 12, status=IncomeSourceStatus.PAUSED)

    assert [s.name for s in catalog.list_income_sources()] == ["Salary"]
    assert len(catalog.list_income_sources(include_inactive=True)) == 2


def test_list_envelopes_in_configuration_order(catalog, seed):
    seed.plan("Rent", monthly_contribution=900)
    seed.plan("Archived", status=EnvelopeStatus.ARCHIVED)
    seed.plan("Fun", monthly_contribution=50)

    assert [env.name for env in catalog.list_envelopes()] == ["Rent", "Fun"]
    assert len(catalog.list_envelopes(include_archived=True)) == 3


def test_apply_allocations_increments_balances(catalog, seed):
    rent = seed.plan("Rent", current_balance=100.0)
    fun = seed.plan("Fun")

    updated = catalog.apply_allocations([
        EnvelopeAllocation(rent, "Rent", 50.25),
        EnvelopeAllocation(fun, "Fun", 0.0),
    ])

    assert updated == 1
    assert seed.balance_of(rent) == 150.25
    assert seed.balance_of(fun) == 0.0


def test_apply_allocations_unknown_envelope(catalog):
    with pytest.raises(NotFoundError):
        catalog.apply_allocations([EnvelopeAllocation(404, "Ghost", 10.0)])


def test_get_account_names(catalog, seed):
    checking = seed.account("Checking")

    assert catalog.get_account_names([checking, 999]) == {checking: "Checking"}
    assert catalog.get_account_names([]) == {}


def test_income_override_roundtrip(catalog):
    month = date(2024, 5, 1)
    assert catalog.get_income_override(month) is None

    catalog.upsert_income_override(month, 1200.0, "bonus")
    catalog.upsert_income_override(date(2024, 5, 15), 1300.0, None)

    assert catalog.get_income_override(month) == (1300.0, None)
    assert catalog.delete_income_override(month) is True
    assert catalog.delete_income_override(month) is False


def test_get_transaction_not_found(catalog):
    with pytest.raises(NotFoundError):
        catalog.get_transaction(12345)


def test_storage_failure_becomes_upstream_unavailable(catalog, db_manager):
    Base.metadata.drop_all(db_manager.engine)

    with pytest.raises(UpstreamUnavailable) as excinfo:
        catalog.list_envelopes()

    assert excinfo.value.details["operation"] == "list_envelopes"
    assert excinfo.value.original_error is not None
