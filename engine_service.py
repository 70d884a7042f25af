"""
Service facade exposing the budget engine operations.

Each public method runs one engine operation and returns a plain dict
payload, translating engine exceptions into a status the caller can
render: "ok", "invalid" (with the failing field), "not_found" or
"unavailable" (generic retry prompt, no internal detail).
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from budget_types import AllocationItem, DistributionStrategy, to_payload
from budgeting import AllocationLedger
from config_manager import get_setting
from database_ops import DatabaseManager
from distribution import DistributionService
from distribution_rules import RuleManager
from exceptions import DatabaseError, NotFoundError, UpstreamUnavailable, ValidationError
from notifications import (
    DEFAULT_DISMISSAL_TTL_DAYS,
    BankConnectionAlert,
    DismissalRegistry,
    JsonFileStore,
    LinkSuggestion,
    Notification,
    allocation_alerts,
    bank_connection_alerts,
    build_notifications,
    duplicate_alerts,
    link_suggestion_alerts,
    transfer_alerts,
)
from obligation_catalog import ObligationCatalog
from transfer_advisory import TransferAdvisor
from utils import format_month, parse_month, resolve_data_file

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Budget data is temporarily unavailable. Please try again."

Payload = Dict[str, Any]


def ok(data: Any) -> Payload:
    return {"status": "ok", "data": to_payload(data)}


def invalid(error: ValidationError) -> Payload:
    return {"status": "invalid", "field": error.field, "message": error.message}


def not_found(error: NotFoundError) -> Payload:
    return {"status": "not_found", "message": error.message}


def unavailable() -> Payload:
    return {"status": "unavailable", "message": UNAVAILABLE_MESSAGE}


class BudgetEngineService:
    """
    Entry point used by the CLI (and any other front end).

    Wires the ledger, rule manager, distribution service, transfer advisor
    and dismissal registry around one catalog.
    """

    def __init__(
        self,
        catalog: ObligationCatalog,
        dismissals: DismissalRegistry,
        default_strategy: DistributionStrategy | str = DistributionStrategy.PRIORITY,
        budget_safe_only: bool = False,
        today: Callable[[], date] = date.today
    ):
        """
        Initialize the service.

        Args:
            catalog: ObligationCatalog shared by all components
            dismissals: DismissalRegistry for client-local notification dismissals
            default_strategy: Strategy used when a distribution request names none
            budget_safe_only: Default for transfer advice
            today: Clock used to pick the current month for notifications
        """
        self.catalog = catalog
        self.ledger = AllocationLedger(catalog)
        self.rules = RuleManager(catalog)
        self.distribution = DistributionService(catalog)
        self.advisor = TransferAdvisor(catalog, budget_safe_only=budget_safe_only)
        self.dismissals = dismissals
        self.default_strategy = DistributionStrategy.parse(default_strategy, "distribution.default_strategy")
        self.today = today

    @classmethod
    def from_config(cls, config: Dict[str, Any], db_manager: DatabaseManager) -> "BudgetEngineService":
        """
        Build a service from configuration.

        Args:
            config: Configuration dictionary (see config.yaml)
            db_manager: Initialized DatabaseManager

        Returns:
            BudgetEngineService
        """
        store_path = resolve_data_file(
            get_setting(config, "notifications.dismissal_store", "dismissed_notifications.json"),
            config
        )
        dismissals = DismissalRegistry(
            JsonFileStore(store_path),
            ttl_days=int(get_setting(config, "notifications.dismissal_ttl_days", DEFAULT_DISMISSAL_TTL_DAYS))
        )
        return cls(
            ObligationCatalog(db_manager),
            dismissals,
            default_strategy=get_setting(config, "distribution.default_strategy", "priority"),
            budget_safe_only=bool(get_setting(config, "transfer_advisory.budget_safe_only", False))
        )

    def _respond(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Payload:
        try:
            return ok(func(*args, **kwargs))
        except ValidationError as exc:
            logger.info("%s rejected: %s", operation, exc)
            return invalid(exc)
        except NotFoundError as exc:
            logger.info("%s: %s", operation, exc)
            return not_found(exc)
        except (UpstreamUnavailable, DatabaseError) as exc:
            logger.error("%s failed, catalog unavailable: %s", operation, exc)
            return unavailable()

    # ------------------------------------------------------------------
    # Allocation ledger
    # ------------------------------------------------------------------

    def allocation_state(self, month: str) -> Payload:
        return self._respond("allocation_state", self.ledger.get_allocation_state, month)

    def income_override(self, month: str, amount: Optional[float], notes: Optional[str] = None) -> Payload:
        """Set (or with amount None, clear) the month's income override."""
        return self._respond("income_override", self.ledger.set_income_override, month, amount, notes)

    def save_allocations(self, month: str, allocations: Iterable[Dict[str, Any]]) -> Payload:
        """
        Store per-plan amounts, given as {"plan_id": ..., "amount": ...} mappings.
        """
        def run():
            items = []
            for entry in allocations:
                try:
                    items.append(AllocationItem(plan_id=int(entry["plan_id"]), amount=float(entry["amount"])))
                except (KeyError, TypeError, ValueError) as exc:
                    raise ValidationError(
                        "each allocation needs a numeric plan_id and amount",
                        field="allocations",
                        original_error=exc
                    ) from exc
            return self.ledger.save_allocations(month, items)

        return self._respond("save_allocations", run)

    def auto_allocate(self, month: str) -> Payload:
        return self._respond("auto_allocate", self.ledger.auto_allocate, month)

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    def distribute(self, amount: float, strategy: Optional[str] = None, apply: bool = True) -> Payload:
        return self._respond(
            "distribute",
            self.distribution.distribute_manually,
            amount,
            strategy or self.default_strategy,
            apply
        )

    def evaluate_rules(self, transaction_id: int, apply: bool = True) -> Payload:
        return self._respond("evaluate_rules", self.distribution.evaluate_transaction, transaction_id, apply)

    def list_rules(self, active_only: bool = False) -> Payload:
        return self._respond("list_rules", self.rules.list_rules, active_only)

    def create_rule(self, **values: Any) -> Payload:
        return self._respond("create_rule", self.rules.create_rule, **values)

    def update_rule(self, rule_id: int, **changes: Any) -> Payload:
        return self._respond("update_rule", self.rules.update_rule, rule_id, **changes)

    def delete_rule(self, rule_id: int) -> Payload:
        def run():
            self.rules.delete_rule(rule_id)
            return {"deleted": rule_id}

        return self._respond("delete_rule", run)

    # ------------------------------------------------------------------
    # Transfer advice
    # ------------------------------------------------------------------

    def transfer_suggestions(self, year: int, month: int, budget_safe_only: Optional[bool] = None) -> Payload:
        return self._respond(
            "transfer_suggestions",
            self.advisor.compute_transfer_suggestions,
            year,
            month,
            budget_safe_only
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _collect_notifications(
        self,
        month: Optional[str],
        bank_alerts: Optional[List[BankConnectionAlert]],
        pending_duplicates: int,
        link_suggestions: Optional[List[LinkSuggestion]]
    ) -> List[Notification]:
        month_start = parse_month(month) if month else self.today().replace(day=1)
        state = self.ledger.get_allocation_state(month_start)
        transfers = self.advisor.compute_transfer_suggestions(month_start.year, month_start.month)
        sources = [
            allocation_alerts(state),
            transfer_alerts(transfers),
            bank_connection_alerts(bank_alerts or []),
            duplicate_alerts(pending_duplicates),
            link_suggestion_alerts(link_suggestions or []),
        ]
        notifications = build_notifications(sources, self.dismissals.active_ids())
        logger.debug("Built %d notification(s) for %s", len(notifications), format_month(month_start))
        return notifications

    def notifications(
        self,
        month: Optional[str] = None,
        bank_alerts: Optional[List[BankConnectionAlert]] = None,
        pending_duplicates: int = 0,
        link_suggestions: Optional[List[LinkSuggestion]] = None
    ) -> Payload:
        """
        Ranked notifications for a month (default: the current month).

        Bank connection alerts, the pending duplicate count and link
        suggestions come from external services and are passed in.
        """
        return self._respond(
            "notifications",
            self._collect_notifications,
            month,
            bank_alerts,
            pending_duplicates,
            link_suggestions
        )

    def dismiss_notification(self, notification_id: str) -> Payload:
        def run():
            self.dismissals.dismiss(notification_id)
            return {"dismissed": notification_id}

        return self._respond("dismiss_notification", run)
