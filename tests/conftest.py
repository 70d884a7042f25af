from datetime import date
from typing import Optional, Sequence

import pytest

from budget_types import (
    EnvelopePurpose,
    EnvelopeStatus,
    IncomeSourceStatus,
    PriorityTier,
    Reliability,
    TransactionType,
)
from database_ops import (
    Account,
    DatabaseManager,
    ExpensePlan,
    IncomePlan,
    Transaction,
)
from obligation_catalog import ObligationCatalog, monthly_columns


class CatalogSeeder:
    """Inserts catalog records straight into the test database."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def _add(self, record):
        session = self.db_manager.get_session()
        try:
            session.add(record)
            session.commit()
            return record.id
        finally:
            session.close()

    def account(self, name: str) -> int:
        return self._add(Account(name=name))

    def plan(
        self,
        name: str,
        monthly_contribution: float = 0.0,
        target_amount: float = 0.0,
        current_balance: float = 0.0,
        priority: PriorityTier = PriorityTier.IMPORTANT,
        purpose: EnvelopePurpose = EnvelopePurpose.SINKING_FUND,
        status: EnvelopeStatus = EnvelopeStatus.ACTIVE,
        account_id: Optional[int] = None,
        active_from: Optional[date] = None,
        active_until: Optional[date] = None,
    ) -> int:
        return self._add(ExpensePlan(
            name=name,
            monthly_contribution=monthly_contribution,
            target_amount=target_amount,
            current_balance=current_balance,
            priority=priority,
            purpose=purpose,
            status=status,
            payment_account_id=account_id,
            active_from=active_from,
            active_until=active_until,
        ))

    def income_plan(
        self,
        name: str,
        amounts: Sequence[float],
        account_id: Optional[int] = None,
        reliability: Reliability = Reliability.GUARANTEED,
        status: IncomeSourceStatus = IncomeSourceStatus.ACTIVE,
    ) -> int:
        return self._add(IncomePlan(
            name=name,
            reliability=reliability,
            status=status,
            payment_account_id=account_id,
            **monthly_columns(amounts),
        ))

    def transaction(
        self,
        when: date,
        description: str,
        amount: float,
        transaction_type: TransactionType = TransactionType.INCOME,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
    ) -> int:
        return self._add(Transaction(
            date=when,
            description=description,
            amount=amount,
            transaction_type=transaction_type,
            account_id=account_id,
            category_id=category_id,
        ))

    def balance_of(self, plan_id: int) -> float:
        session = self.db_manager.get_session()
        try:
            return session.get(ExpensePlan, plan_id).current_balance
        finally:
            session.close()


@pytest.fixture
def db_manager(tmp_path):
    """Provide a DatabaseManager backed by a temporary SQLite file."""
    manager = DatabaseManager(f"sqlite:///{(tmp_path / 'catalog.db').as_posix()}")
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def catalog(db_manager):
    return ObligationCatalog(db_manager)


@pytest.fixture
def seed(db_manager):
    return CatalogSeeder(db_manager)