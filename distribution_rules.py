"""
Income distribution rule matching and management.

A distribution rule recognizes incoming funds by expected amount (with a
percentage tolerance), description substring, category and account. This
module validates rules, evaluates them against transactions and orders
the matches by specificity.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from budget_types import DistributionRule, DistributionStrategy, IncomeTransaction
from exceptions import ValidationError
from obligation_catalog import ObligationCatalog

logger = logging.getLogger(__name__)

DEFAULT_AMOUNT_TOLERANCE = 10.0

# Specificity tiers (higher wins)
SPECIFICITY_AMOUNT_AND_DESCRIPTION = 3
SPECIFICITY_AMOUNT_OR_DESCRIPTION = 2
SPECIFICITY_ACCOUNT_OR_CATEGORY = 1
SPECIFICITY_NONE = 0


def _has_amount(rule: DistributionRule) -> bool:
    return rule.expected_amount is not None


def _has_description(rule: DistributionRule) -> bool:
    return bool(rule.description_pattern and rule.description_pattern.strip())


def rule_specificity(rule: DistributionRule) -> int:
    """
    Rank how specific a rule's criteria are.

    Amount and description together outrank either alone, which outranks
    rules with only account/category criteria.
    """
    has_amount = _has_amount(rule)
    has_description = _has_description(rule)
    if has_amount and has_description:
        return SPECIFICITY_AMOUNT_AND_DESCRIPTION
    if has_amount or has_description:
        return SPECIFICITY_AMOUNT_OR_DESCRIPTION
    if rule.account_id is not None or rule.category_id is not None:
        return SPECIFICITY_ACCOUNT_OR_CATEGORY
    return SPECIFICITY_NONE


def amount_matches(amount: float, expected_amount: Optional[float], tolerance: float) -> bool:
    """
    Check an amount against an expected amount with a percentage tolerance.

    A missing expected amount is satisfied by any amount.
    """
    if expected_amount is None:
        return True
    if expected_amount <= 0:
        return False
    deviation_pct = abs(amount - expected_amount) / expected_amount * 100
    return deviation_pct <= tolerance


def description_matches(description: str, pattern: Optional[str]) -> bool:
    """Case-insensitive substring test; a missing pattern always matches."""
    if not pattern or not pattern.strip():
        return True
    return pattern.strip().lower() in (description or "").lower()


def rule_matches(rule: DistributionRule, transaction: IncomeTransaction) -> bool:
    """
    Return True when every criterion the rule defines is satisfied.

    Rules without any criterion never match.
    """
    if rule_specificity(rule) == SPECIFICITY_NONE:
        return False
    if not amount_matches(transaction.amount, rule.expected_amount, rule.amount_tolerance):
        return False
    if not description_matches(transaction.description, rule.description_pattern):
        return False
    if rule.category_id is not None and transaction.category_id != rule.category_id:
        return False
    if rule.account_id is not None and transaction.account_id != rule.account_id:
        return False
    return True


def match_rules(transaction: IncomeTransaction, active_rules: List[DistributionRule]) -> List[DistributionRule]:
    """
    Evaluate rules against a transaction.

    Args:
        transaction: Incoming transaction
        active_rules: Rules in configuration order; inactive ones are skipped

    Returns:
        Matching rules, most specific first. Rules of equal specificity keep
        their configuration order.
    """
    matches = [
        rule for rule in active_rules
        if rule.is_active and rule_matches(rule, transaction)
    ]
    matches.sort(key=rule_specificity, reverse=True)
    logger.debug(
        "Transaction %s matched %d rule(s): %s",
        transaction.id, len(matches), [rule.id for rule in matches]
    )
    return matches


def select_auto_distribution_rule(matches: List[DistributionRule]) -> Optional[DistributionRule]:
    """Return the first matching rule that distributes automatically, if any."""
    for rule in matches:
        if rule.auto_distribute:
            return rule
    return None


def _as_number(value: Any, message: str, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(message, field=field, original_error=exc) from exc
    if not math.isfinite(number):
        raise ValidationError(message, field=field)
    return number


def validate_rule(values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize rule fields.

    Args:
        values: Complete set of rule fields (after merging any update)

    Returns:
        Normalized copy of the fields

    Raises:
        ValidationError: Naming the first failing field
    """
    cleaned = dict(values)

    name = (cleaned.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")
    cleaned["name"] = name

    expected_amount = cleaned.get("expected_amount")
    if expected_amount is not None:
        expected_amount = _as_number(expected_amount, "expected amount must be a number", "expected_amount")
        if expected_amount <= 0:
            raise ValidationError("expected amount must be greater than 0", field="expected_amount")
    cleaned["expected_amount"] = expected_amount

    pattern = cleaned.get("description_pattern")
    pattern = pattern.strip() if isinstance(pattern, str) else None
    cleaned["description_pattern"] = pattern or None

    if cleaned["expected_amount"] is None and cleaned["description_pattern"] is None:
        raise ValidationError(
            "enter an expected amount or a description pattern",
            field="expected_amount"
        )

    tolerance = cleaned.get("amount_tolerance")
    if tolerance is None:
        tolerance = DEFAULT_AMOUNT_TOLERANCE
    else:
        tolerance = _as_number(tolerance, "tolerance must be 0-100", "amount_tolerance")
    if not 0 <= tolerance <= 100:
        raise ValidationError("tolerance must be 0-100", field="amount_tolerance")
    cleaned["amount_tolerance"] = tolerance

    cleaned["strategy"] = DistributionStrategy.parse(
        cleaned.get("strategy") or DistributionStrategy.PRIORITY, "strategy"
    )
    cleaned["auto_distribute"] = bool(cleaned.get("auto_distribute", True))
    cleaned["is_active"] = bool(cleaned.get("is_active", True))
    return cleaned


class RuleManager:
    """
    CRUD for distribution rules with validation.

    Invalid rules are rejected before they reach the store.
    """

    def __init__(self, catalog: ObligationCatalog):
        """
        Initialize the rule manager.

        Args:
            catalog: ObligationCatalog used as the rule store
        """
        self.catalog = catalog
        logger.info("Rule manager initialized")

    def list_rules(self, active_only: bool = False) -> List[DistributionRule]:
        return self.catalog.list_rules(active_only=active_only)

    def get_rule(self, rule_id: int) -> DistributionRule:
        return self.catalog.get_rule(rule_id)

    def create_rule(self, **values: Any) -> DistributionRule:
        """
        Validate and persist a new rule.

        Raises:
            ValidationError: If the rule is invalid (nothing is stored)
        """
        cleaned = validate_rule(values)
        return self.catalog.add_rule(cleaned)

    def update_rule(self, rule_id: int, **changes: Any) -> DistributionRule:
        """
        Apply changes to a rule after validating the merged result.

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If the merged rule is invalid
        """
        current = self.catalog.get_rule(rule_id)
        merged = {
            "name": current.name,
            "expected_amount": current.expected_amount,
            "amount_tolerance": current.amount_tolerance,
            "description_pattern": current.description_pattern,
            "category_id": current.category_id,
            "account_id": current.account_id,
            "auto_distribute": current.auto_distribute,
            "strategy": current.strategy,
            "is_active": current.is_active,
        }
        merged.update(changes)
        cleaned = validate_rule(merged)
        return self.catalog.update_rule(rule_id, cleaned)

    def delete_rule(self, rule_id: int) -> None:
        self.catalog.delete_rule(rule_id)
