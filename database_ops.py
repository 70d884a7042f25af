"""
Database operations module for the budget engine's catalog store.

This module defines the SQLAlchemy ORM schema for the records the engine
reads from the plan/transaction store (accounts, expense plans, income
plans, transactions, distribution rules, income overrides and per-month
plan allocations) and the DatabaseManager that owns engine and sessions.
Supports SQLite by default with easy migration to other databases.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from budget_types import (
    DistributionStrategy,
    EnvelopePurpose,
    EnvelopeStatus,
    IncomeSourceStatus,
    PriorityTier,
    Reliability,
    TransactionType,
)
from exceptions import DatabaseError

# Configure logging
logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    All timestamps in the database are stored in UTC.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


# Base class for declarative models
Base = declarative_base()


class Account(Base):
    """
    SQLAlchemy model representing a bank account.

    Attributes:
        id: Auto-incrementing primary key
        name: Account name (e.g., "Main Checking")
        created_at: Timestamp when account was created
        updated_at: Timestamp when account was last updated
    """

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(256), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self) -> str:
        """String representation of the account."""
        return f"<Account(id={self.id}, name='{self.name}')>"


class ExpensePlan(Base):
    """
    SQLAlchemy model representing an expense plan (envelope).

    Attributes:
        id: Auto-incrementing primary key
        name: Plan name
        purpose: Sinking fund or spending budget
        priority: Priority tier
        status: Active or archived
        target_amount: Amount the plan is saving toward
        monthly_contribution: Planned monthly assignment
        current_balance: Money already set aside in the envelope
        payment_account_id: Optional account the plan is paid from
        active_from: Optional first month the plan applies to
        active_until: Optional last month the plan applies to
    """

    __tablename__ = "expense_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    purpose = Column(Enum(EnvelopePurpose), nullable=False, default=EnvelopePurpose.SINKING_FUND)
    priority = Column(Enum(PriorityTier), nullable=False, default=PriorityTier.IMPORTANT, index=True)
    status = Column(Enum(EnvelopeStatus), nullable=False, default=EnvelopeStatus.ACTIVE, index=True)
    target_amount = Column(Float, nullable=False, default=0.0)
    monthly_contribution = Column(Float, nullable=False, default=0.0)
    current_balance = Column(Float, nullable=False, default=0.0)
    payment_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)
    active_from = Column(Date, nullable=True)
    active_until = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    payment_account = relationship("Account")

    def __repr__(self) -> str:
        """String representation of the expense plan."""
        return (
            f"<ExpensePlan(id={self.id}, name='{self.name}', "
            f"monthly={self.monthly_contribution}, balance={self.current_balance})>"
        )


class IncomePlan(Base):
    """
    SQLAlchemy model representing an income plan.

    The twelve month columns mirror the plan store's record layout; the
    engine converts them into an indexed tuple when reading.
    """

    __tablename__ = "income_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    reliability = Column(Enum(Reliability), nullable=False, default=Reliability.EXPECTED)
    status = Column(Enum(IncomeSourceStatus), nullable=False, default=IncomeSourceStatus.ACTIVE, index=True)
    january = Column(Float, nullable=False, default=0.0)
    february = Column(Float, nullable=False, default=0.0)
    march = Column(Float, nullable=False, default=0.0)
    april = Column(Float, nullable=False, default=0.0)
    may = Column(Float, nullable=False, default=0.0)
    june = Column(Float, nullable=False, default=0.0)
    july = Column(Float, nullable=False, default=0.0)
    august = Column(Float, nullable=False, default=0.0)
    september = Column(Float, nullable=False, default=0.0)
    october = Column(Float, nullable=False, default=0.0)
    november = Column(Float, nullable=False, default=0.0)
    december = Column(Float, nullable=False, default=0.0)
    payment_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)
    expected_day = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    payment_account = relationship("Account")

    def __repr__(self) -> str:
        """String representation of the income plan."""
        return f"<IncomePlan(id={self.id}, name='{self.name}', reliability={self.reliability.value})>"


class Transaction(Base):
    """
    SQLAlchemy model representing a transaction from the transaction store.

    Attributes:
        id: Auto-incrementing primary key
        date: Booking date
        description: Transaction description
        amount: Transaction amount
        category_id: Optional category identifier
        account_id: Optional account the transaction belongs to
        transaction_type: Income or expense classification
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False, index=True)
    description = Column(String(500), nullable=False)
    amount = Column(Float, nullable=False)
    category_id = Column(Integer, nullable=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)
    transaction_type = Column(Enum(TransactionType), nullable=False, default=TransactionType.EXPENSE)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    account_ref = relationship("Account")

    __table_args__ = (
        Index('idx_type_date', 'transaction_type', 'date'),
    )

    def __repr__(self) -> str:
        """String representation of the transaction."""
        return (
            f"<Transaction(id={self.id}, date={self.date}, "
            f"description='{self.description[:30]}...', amount={self.amount})>"
        )


class DistributionRuleRecord(Base):
    """SQLAlchemy model representing a user-defined income distribution rule."""

    __tablename__ = "distribution_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    expected_amount = Column(Float, nullable=True)
    amount_tolerance = Column(Float, nullable=False, default=10.0)
    description_pattern = Column(String(255), nullable=True)
    category_id = Column(Integer, nullable=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    auto_distribute = Column(Boolean, nullable=False, default=True)
    strategy = Column(Enum(DistributionStrategy), nullable=False, default=DistributionStrategy.PRIORITY)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<DistributionRuleRecord(id={self.id}, name='{self.name}', active={self.is_active})>"


class IncomeOverride(Base):
    """Optional monthly income override values."""

    __tablename__ = "income_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    period_start = Column(Date, nullable=False, unique=True, index=True)
    period_end = Column(Date, nullable=False)
    override_amount = Column(Float, nullable=False)
    notes = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<IncomeOverride(id={self.id}, period={self.period_start} to {self.period_end}, "
            f"amount={self.override_amount})>"
        )


class PlanAllocationRecord(Base):
    """Amount the user assigned to an expense plan for one month."""

    __tablename__ = "plan_allocations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_id = Column(Integer, ForeignKey("expense_plans.id"), nullable=False, index=True)
    period_start = Column(Date, nullable=False, index=True)
    amount = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    plan = relationship("ExpensePlan")

    __table_args__ = (
        UniqueConstraint('plan_id', 'period_start', name='uq_plan_period'),
    )

    def __repr__(self) -> str:
        return f"<PlanAllocationRecord(plan_id={self.plan_id}, period={self.period_start}, amount={self.amount})>"


class DatabaseManager:
    """
    Manages database connections for the catalog store.

    This class handles engine creation, schema creation and session
    management. Query logic lives in ObligationCatalog.
    """

    def __init__(self, connection_string: str):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/budget_engine.db')

        Raises:
            DatabaseError: If the engine cannot be created
        """
        try:
            self.engine = create_engine(connection_string, echo=False)
            self.SessionLocal = sessionmaker(bind=self.engine)
            logger.info(f"Database manager initialized with connection: {connection_string}")
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(
                "Failed to initialize database",
                details={"connection_string": connection_string},
                original_error=e
            ) from e

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError("Failed to create database tables", original_error=e) from e

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy session object

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    def close(self) -> None:
        """Close the database engine connection."""
        if hasattr(self, 'engine'):
            self.engine.dispose()
            logger.info("Database connection closed")
