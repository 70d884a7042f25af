"""
Obligation catalog reader.

Reads expense plans, income plans, income transactions, distribution
rules and per-month overrides/allocations from the catalog store and
converts them into engine records. Any storage failure surfaces as
UpstreamUnavailable so callers never mistake an outage for zero data.
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from budget_types import (
    AllocationItem,
    DistributionRule,
    Envelope,
    EnvelopeAllocation,
    EnvelopeStatus,
    IncomeSource,
    IncomeSourceStatus,
    IncomeTransaction,
    TransactionType,
)
from database_ops import (
    Account,
    DatabaseManager,
    DistributionRuleRecord,
    ExpensePlan,
    IncomeOverride,
    IncomePlan,
    PlanAllocationRecord,
    Transaction,
    utc_now,
)
from exceptions import NotFoundError, UpstreamUnavailable
from utils import MONTH_NAMES, format_month, get_month_period

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "name",
    "expected_amount",
    "amount_tolerance",
    "description_pattern",
    "category_id",
    "account_id",
    "auto_distribute",
    "strategy",
    "is_active",
)


def _to_envelope(record: ExpensePlan) -> Envelope:
    return Envelope(
        id=record.id,
        name=record.name,
        purpose=record.purpose,
        priority=record.priority,
        status=record.status,
        target_amount=float(record.target_amount or 0.0),
        monthly_contribution=float(record.monthly_contribution or 0.0),
        current_balance=float(record.current_balance or 0.0),
        linked_account_id=record.payment_account_id,
        active_from=record.active_from,
        active_until=record.active_until,
    )


def _to_income_source(record: IncomePlan) -> IncomeSource:
    return IncomeSource(
        id=record.id,
        name=record.name,
        reliability=record.reliability,
        status=record.status,
        monthly_amounts=tuple(getattr(record, name) or 0.0 for name in MONTH_NAMES),
        linked_account_id=record.payment_account_id,
        expected_day=record.expected_day,
    )


def monthly_columns(amounts: Iterable[float]) -> Dict[str, float]:
    """
    Expand an indexed sequence of twelve amounts into named month columns.

    Args:
        amounts: Twelve amounts, January first

    Returns:
        Mapping such as {"january": 1000.0, ...}
    """
    values = list(amounts)
    if len(values) != 12:
        raise ValueError("Exactly 12 monthly amounts are required")
    return dict(zip(MONTH_NAMES, (float(v) for v in values)))


def _to_transaction(record: Transaction) -> IncomeTransaction:
    return IncomeTransaction(
        id=record.id,
        date=record.date,
        description=record.description,
        amount=float(record.amount),
        category_id=record.category_id,
        account_id=record.account_id,
        transaction_type=record.transaction_type,
    )


def _to_rule(record: DistributionRuleRecord) -> DistributionRule:
    return DistributionRule(
        id=record.id,
        name=record.name,
        expected_amount=record.expected_amount,
        amount_tolerance=float(record.amount_tolerance),
        description_pattern=record.description_pattern,
        category_id=record.category_id,
        account_id=record.account_id,
        auto_distribute=bool(record.auto_distribute),
        strategy=record.strategy,
        is_active=bool(record.is_active),
    )


class ObligationCatalog:
    """
    Read/write access to the plan and transaction store.

    Every public method opens its own session, so the catalog can be shared
    by the ledger, the distribution service and the transfer advisor.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize the catalog.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db_manager = db_manager
        logger.info("Obligation catalog initialized")

    @contextmanager
    def _session_scope(self, operation: str) -> Iterator[Session]:
        """Yield a session, committing on success and translating store failures."""
        session = self.db_manager.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Catalog operation '%s' failed: %s", operation, exc)
            raise UpstreamUnavailable(
                "Catalog store is unavailable",
                details={"operation": operation},
                original_error=exc
            ) from exc
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Envelopes
    # ------------------------------------------------------------------

    def list_envelopes(self, include_archived: bool = False) -> List[Envelope]:
        """
        List expense plans in configuration (id) order.

        Args:
            include_archived: Include archived plans as well

        Returns:
            List of Envelope records
        """
        with self._session_scope("list_envelopes") as session:
            query = session.query(ExpensePlan)
            if not include_archived:
                query = query.filter(ExpensePlan.status == EnvelopeStatus.ACTIVE)
            envelopes = [_to_envelope(record) for record in query.order_by(ExpensePlan.id).all()]
        logger.debug("Loaded %d envelopes", len(envelopes))
        return envelopes

    def get_envelope(self, envelope_id: int) -> Envelope:
        """Return one envelope or raise NotFoundError."""
        with self._session_scope("get_envelope") as session:
            record = session.get(ExpensePlan, envelope_id)
            if record is None:
                raise NotFoundError("Expense plan not found", details={"plan_id": envelope_id})
            return _to_envelope(record)

    def apply_allocations(self, allocations: List[EnvelopeAllocation]) -> int:
        """
        Add distributed amounts to envelope balances in one unit of work.

        Concurrent callers are not serialized; the last write to a balance wins.

        Args:
            allocations: Output of a distribution

        Returns:
            Number of envelopes updated
        """
        updated = 0
        with self._session_scope("apply_allocations") as session:
            for item in allocations:
                if item.amount == 0:
                    continue
                record = session.get(ExpensePlan, item.envelope_id)
                if record is None:
                    raise NotFoundError("Expense plan not found", details={"plan_id": item.envelope_id})
                record.current_balance = round(float(record.current_balance or 0.0) + item.amount, 2)
                record.updated_at = utc_now()
                updated += 1
        logger.info("Applied distribution to %d envelopes", updated)
        return updated

    # ------------------------------------------------------------------
    # Income sources and accounts
    # ------------------------------------------------------------------

    def list_income_sources(self, include_inactive: bool = False) -> List[IncomeSource]:
        """List income plans, active ones only unless asked otherwise."""
        with self._session_scope("list_income_sources") as session:
            query = session.query(IncomePlan)
            if not include_inactive:
                query = query.filter(IncomePlan.status == IncomeSourceStatus.ACTIVE)
            sources = [_to_income_source(record) for record in query.order_by(IncomePlan.id).all()]
        logger.debug("Loaded %d income sources", len(sources))
        return sources

    def get_account_names(self, account_ids: Iterable[int]) -> Dict[int, str]:
        """Return a mapping of account id to name for the given ids."""
        ids = sorted(set(account_ids))
        if not ids:
            return {}
        with self._session_scope("get_account_names") as session:
            rows = session.query(Account.id, Account.name).filter(Account.id.in_(ids)).all()
            return {row[0]: row[1] for row in rows}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def list_income_transactions(self, month: date) -> List[IncomeTransaction]:
        """
        List transactions classified as income within a calendar month.

        Args:
            month: Any date within the month

        Returns:
            Income transactions ordered by date
        """
        period_start, period_end = get_month_period(month)
        with self._session_scope("list_income_transactions") as session:
            records = session.query(Transaction).filter(
                Transaction.transaction_type == TransactionType.INCOME,
                Transaction.date >= period_start,
                Transaction.date <= period_end,
            ).order_by(Transaction.date, Transaction.id).all()
            return [_to_transaction(record) for record in records]

    def get_transaction(self, transaction_id: int) -> IncomeTransaction:
        """Return one transaction or raise NotFoundError."""
        with self._session_scope("get_transaction") as session:
            record = session.get(Transaction, transaction_id)
            if record is None:
                raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
            return _to_transaction(record)

    # ------------------------------------------------------------------
    # Income overrides
    # ------------------------------------------------------------------

    def get_income_override(self, month: date) -> Optional[Tuple[float, Optional[str]]]:
        """Return (amount, notes) for the month's override, or None."""
        period_start, _ = get_month_period(month)
        with self._session_scope("get_income_override") as session:
            override = session.query(IncomeOverride).filter(
                IncomeOverride.period_start == period_start
            ).first()
            if override is None:
                return None
            return float(override.override_amount), override.notes

    def upsert_income_override(self, month: date, amount: float, notes: Optional[str] = None) -> None:
        """Create or update a monthly income override."""
        period_start, period_end = get_month_period(month)
        with self._session_scope("upsert_income_override") as session:
            override = session.query(IncomeOverride).filter(
                IncomeOverride.period_start == period_start
            ).first()
            if override:
                override.override_amount = amount
                override.period_end = period_end
                override.notes = notes
                override.updated_at = utc_now()
            else:
                session.add(IncomeOverride(
                    period_start=period_start,
                    period_end=period_end,
                    override_amount=amount,
                    notes=notes
                ))
        logger.info("Income override saved for %s: %s", format_month(period_start), amount)

    def delete_income_override(self, month: date) -> bool:
        """Delete the month's override; returns False when none existed."""
        period_start, _ = get_month_period(month)
        with self._session_scope("delete_income_override") as session:
            deleted = session.query(IncomeOverride).filter(
                IncomeOverride.period_start == period_start
            ).delete()
        if deleted:
            logger.info("Income override cleared for %s", format_month(period_start))
        return bool(deleted)

    # ------------------------------------------------------------------
    # Per-month plan allocations
    # ------------------------------------------------------------------

    def get_plan_allocations(self, month: date) -> Dict[int, float]:
        """Return saved plan allocations for the month keyed by plan id."""
        period_start, _ = get_month_period(month)
        with self._session_scope("get_plan_allocations") as session:
            rows = session.query(PlanAllocationRecord.plan_id, PlanAllocationRecord.amount).filter(
                PlanAllocationRecord.period_start == period_start
            ).all()
            return {row[0]: float(row[1]) for row in rows}

    def save_plan_allocations(self, month: date, items: List[AllocationItem]) -> int:
        """
        Upsert plan allocations for a month.

        Raises:
            NotFoundError: If any plan id is unknown (nothing is saved)
        """
        period_start, _ = get_month_period(month)
        with self._session_scope("save_plan_allocations") as session:
            for item in items:
                if session.get(ExpensePlan, item.plan_id) is None:
                    raise NotFoundError("Expense plan not found", details={"plan_id": item.plan_id})
                record = session.query(PlanAllocationRecord).filter(
                    PlanAllocationRecord.plan_id == item.plan_id,
                    PlanAllocationRecord.period_start == period_start
                ).first()
                if record:
                    record.amount = item.amount
                    record.updated_at = utc_now()
                else:
                    session.add(PlanAllocationRecord(
                        plan_id=item.plan_id,
                        period_start=period_start,
                        amount=item.amount
                    ))
        logger.info("Saved %d plan allocations for %s", len(items), format_month(period_start))
        return len(items)

    # ------------------------------------------------------------------
    # Distribution rules
    # ------------------------------------------------------------------

    def list_rules(self, active_only: bool = False) -> List[DistributionRule]:
        """List distribution rules in configuration (id) order."""
        with self._session_scope("list_rules") as session:
            query = session.query(DistributionRuleRecord)
            if active_only:
                query = query.filter(DistributionRuleRecord.is_active.is_(True))
            return [_to_rule(record) for record in query.order_by(DistributionRuleRecord.id).all()]

    def get_rule(self, rule_id: int) -> DistributionRule:
        """Return one rule or raise NotFoundError."""
        with self._session_scope("get_rule") as session:
            record = session.get(DistributionRuleRecord, rule_id)
            if record is None:
                raise NotFoundError("Distribution rule not found", details={"rule_id": rule_id})
            return _to_rule(record)

    def add_rule(self, values: Dict[str, Any]) -> DistributionRule:
        """Persist a new (already validated) rule."""
        with self._session_scope("add_rule") as session:
            record = DistributionRuleRecord(**{key: values[key] for key in RULE_FIELDS if key in values})
            session.add(record)
            session.flush()
            rule = _to_rule(record)
        logger.info("Created distribution rule %s ('%s')", rule.id, rule.name)
        return rule

    def update_rule(self, rule_id: int, values: Dict[str, Any]) -> DistributionRule:
        """Overwrite the given fields of a rule."""
        with self._session_scope("update_rule") as session:
            record = session.get(DistributionRuleRecord, rule_id)
            if record is None:
                raise NotFoundError("Distribution rule not found", details={"rule_id": rule_id})
            for key in RULE_FIELDS:
                if key in values:
                    setattr(record, key, values[key])
            record.updated_at = utc_now()
            session.flush()
            rule = _to_rule(record)
        logger.info("Updated distribution rule %s", rule_id)
        return rule

    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule or raise NotFoundError."""
        with self._session_scope("delete_rule") as session:
            record = session.get(DistributionRuleRecord, rule_id)
            if record is None:
                raise NotFoundError("Distribution rule not found", details={"rule_id": rule_id})
            session.delete(record)
        logger.info("Deleted distribution rule %s", rule_id)
