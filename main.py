"""
Command-line interface for the budget allocation and income distribution engine.

Subcommands:
1. allocation     - monthly "to be assigned" state, income overrides, plan allocations
2. distribute     - spread an amount across envelopes with a strategy
3. rules          - manage and evaluate income distribution rules
4. transfers      - per-account transfer advice for a month
5. notifications  - ranked alerts and local dismissals
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from tabulate import tabulate

import config_manager
from database_ops import DatabaseManager
from engine_service import BudgetEngineService
from exceptions import BudgetEngineError, ConfigError
from utils import ensure_data_dir, resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging", {}) or {}
    level_name = str(log_config.get("level", "INFO")).upper()
    log_level = getattr(logging, level_name, None)
    invalid_level = not isinstance(log_level, int)
    if invalid_level:
        log_level = logging.INFO
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = log_config.get("file")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise RuntimeError(f"Unable to prepare log file path '{log_file}': {exc}") from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers,
        force=True
    )
    if invalid_level:
        logger.warning("Unknown log level '%s'; using INFO", level_name)


def load_config(config_path: Path) -> dict:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config.yaml file

    Returns:
        Configuration dictionary merged over the defaults

    Raises:
        ConfigError: If config file is missing or is invalid YAML
    """
    if not config_path.exists():
        raise ConfigError("Config file not found", details={"config_path": str(config_path)})
    return config_manager.load_config(config_path)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Budget allocation and income distribution engine",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Allocation ledger
    allocation_parser = subparsers.add_parser(
        "allocation",
        aliases=["alloc"],
        help="Monthly allocation state and income overrides"
    )
    allocation_subparsers = allocation_parser.add_subparsers(dest="allocation_action", help="Allocation actions")

    alloc_show = allocation_subparsers.add_parser("show", help="Show the allocation state for a month")
    alloc_show.add_argument("--month", type=str, required=True, help="Month (YYYY-MM)")

    alloc_override = allocation_subparsers.add_parser("override", help="Set or clear the income override")
    alloc_override.add_argument("--month", type=str, required=True, help="Month (YYYY-MM)")
    override_group = alloc_override.add_mutually_exclusive_group(required=True)
    override_group.add_argument("--amount", type=float, help="Override amount")
    override_group.add_argument("--clear", action="store_true", help="Revert to auto-detected income")
    alloc_override.add_argument("--notes", type=str, help="Optional notes")

    alloc_save = allocation_subparsers.add_parser("save", help="Save per-plan amounts for a month")
    alloc_save.add_argument("--month", type=str, required=True, help="Month (YYYY-MM)")
    alloc_save.add_argument(
        "--plan",
        action="append",
        required=True,
        metavar="PLAN_ID=AMOUNT",
        help="Plan allocation, repeatable (e.g. --plan 3=150.00)"
    )

    alloc_auto = allocation_subparsers.add_parser("auto", help="Assign income to plans by priority")
    alloc_auto.add_argument("--month", type=str, required=True, help="Month (YYYY-MM)")

    # Manual distribution
    distribute_parser = subparsers.add_parser(
        "distribute",
        aliases=["dist"],
        help="Distribute an amount across envelopes"
    )
    distribute_parser.add_argument("--amount", type=float, required=True, help="Amount to distribute")
    distribute_parser.add_argument(
        "--strategy",
        type=str,
        choices=["priority", "proportional", "equal"],
        help="Distribution strategy (default from config)"
    )
    distribute_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the distribution without updating envelope balances"
    )

    # Distribution rules
    rules_parser = subparsers.add_parser("rules", help="Manage income distribution rules")
    rules_subparsers = rules_parser.add_subparsers(dest="rules_action", help="Rule actions")

    rules_list = rules_subparsers.add_parser("list", help="List rules")
    rules_list.add_argument("--active-only", action="store_true", help="Only active rules")

    for action, help_text in (("create", "Create a rule"), ("update", "Update a rule")):
        rule_parser = rules_subparsers.add_parser(action, help=help_text)
        if action == "update":
            rule_parser.add_argument("--id", type=int, required=True, help="Rule ID")
        rule_parser.add_argument("--name", type=str, required=(action == "create"), help="Rule name")
        rule_parser.add_argument("--expected-amount", type=float, help="Expected amount")
        rule_parser.add_argument("--tolerance", type=float, help="Amount tolerance in percent (0-100)")
        rule_parser.add_argument("--pattern", type=str, help="Description substring")
        rule_parser.add_argument("--category-id", type=int, help="Category ID")
        rule_parser.add_argument("--account-id", type=int, help="Account ID")
        rule_parser.add_argument(
            "--strategy",
            type=str,
            choices=["priority", "proportional", "equal"],
            help="Distribution strategy"
        )
        rule_parser.add_argument(
            "--auto",
            dest="auto_distribute",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Distribute automatically when matched"
        )
        rule_parser.add_argument(
            "--active",
            dest="is_active",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Whether the rule is evaluated"
        )

    rules_delete = rules_subparsers.add_parser("delete", help="Delete a rule")
    rules_delete.add_argument("--id", type=int, required=True, help="Rule ID")

    rules_evaluate = rules_subparsers.add_parser("evaluate", help="Evaluate rules against a transaction")
    rules_evaluate.add_argument("--transaction-id", type=int, required=True, help="Transaction ID")
    rules_evaluate.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the distribution without updating envelope balances"
    )

    # Transfer advice
    transfers_parser = subparsers.add_parser(
        "transfers",
        aliases=["transfer"],
        help="Per-account transfer suggestions"
    )
    transfers_parser.add_argument("--year", type=int, required=True, help="Year")
    transfers_parser.add_argument("--month", type=int, required=True, help="Month number (1-12)")
    transfers_parser.add_argument(
        "--budget-safe-only",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Only count guaranteed and expected income (default from config)"
    )

    # Notifications
    notifications_parser = subparsers.add_parser(
        "notifications",
        aliases=["notify"],
        help="Ranked alerts"
    )
    notifications_subparsers = notifications_parser.add_subparsers(
        dest="notifications_action",
        help="Notification actions"
    )
    notif_list = notifications_subparsers.add_parser("list", help="List visible notifications")
    notif_list.add_argument("--month", type=str, help="Month (YYYY-MM, default: current month)")
    notif_list.add_argument(
        "--pending-duplicates",
        type=int,
        default=0,
        help="Number of duplicate transactions awaiting review"
    )
    notif_dismiss = notifications_subparsers.add_parser("dismiss", help="Dismiss a notification")
    notif_dismiss.add_argument("--id", type=str, required=True, help="Notification ID")

    return parser


def _report_failure(payload: Dict[str, Any]) -> int:
    """Print a non-ok payload to stderr and return the exit code."""
    status = payload.get("status")
    if status == "invalid":
        field = payload.get("field")
        prefix = f"Invalid {field}: " if field else "Invalid input: "
        print(prefix + payload["message"], file=sys.stderr)
    else:
        print(payload.get("message", "Request failed"), file=sys.stderr)
    return 1


def _print_allocation_state(state: Dict[str, Any]) -> None:
    income = state["income"]
    print("\n" + "=" * 80)
    print(f"ALLOCATION STATE: {state['month']}")
    print("=" * 80)
    print(f"Auto-detected income: ${income['auto_detected_income']:,.2f}")
    if income["manual_override"] is not None:
        print(f"Manual override:      ${income['manual_override']:,.2f}")
        if state.get("notes"):
            print(f"Notes:                {state['notes']}")
    print(f"Effective income:     ${income['effective_income']:,.2f}")
    print(f"Total assigned:       ${state['total_assigned']:,.2f}")
    print(f"To be assigned:       ${state['unassigned']:,.2f} ({state['status_color']})")
    if state["plans"]:
        rows = [
            [plan["plan_id"], plan["plan_name"], plan["priority"], plan["purpose"],
             f"{plan['suggested_amount']:,.2f}", f"{plan['allocated_amount']:,.2f}"]
            for plan in state["plans"]
        ]
        print(tabulate(
            rows,
            headers=["ID", "Plan", "Priority", "Purpose", "Suggested", "Allocated"],
            tablefmt="grid"
        ))
    print("=" * 80)


def _print_distribution(result: Dict[str, Any], applied: bool) -> None:
    print("\n" + "=" * 60)
    print(f"DISTRIBUTION ({result['strategy']}): ${result['amount']:,.2f}")
    print("=" * 60)
    rows = [
        [item["envelope_id"], item["envelope_name"], f"{item['amount']:,.2f}"]
        for item in result["allocations"]
    ]
    if rows:
        print(tabulate(rows, headers=["ID", "Envelope", "Amount"], tablefmt="grid"))
    else:
        print("No eligible envelopes.")
    print(f"Unassigned: ${result['unassigned']:,.2f}")
    if not applied:
        print("(dry run: envelope balances were not changed)")
    print("=" * 60)


def handle_allocation_command(args: argparse.Namespace, service: BudgetEngineService) -> int:
    """
    Handle allocation ledger commands.

    Args:
        args: Parsed command-line arguments
        service: BudgetEngineService instance

    Returns:
        Process exit code
    """
    action = args.allocation_action
    if action == "show":
        payload = service.allocation_state(args.month)
    elif action == "override":
        payload = service.income_override(args.month, None if args.clear else args.amount, args.notes)
    elif action == "save":
        allocations = []
        for entry in args.plan:
            plan_id, _, amount = entry.partition("=")
            allocations.append({"plan_id": plan_id.strip(), "amount": amount.strip()})
        payload = service.save_allocations(args.month, allocations)
    elif action == "auto":
        payload = service.auto_allocate(args.month)
    else:
        print("Specify an allocation action: show, override, save or auto", file=sys.stderr)
        return 1

    if payload["status"] != "ok":
        return _report_failure(payload)

    data = payload["data"]
    if action == "save":
        print(f"Saved {data['plans_updated']} plan allocation(s).")
        _print_allocation_state(data["state"])
    elif action == "auto":
        print(
            f"Allocated ${data['total_allocated']:,.2f} across {data['plans_allocated']} plan(s); "
            f"${data['remaining']:,.2f} remaining."
        )
    else:
        _print_allocation_state(data)
    return 0


def handle_distribute_command(args: argparse.Namespace, service: BudgetEngineService) -> int:
    payload = service.distribute(args.amount, args.strategy, apply=not args.dry_run)
    if payload["status"] != "ok":
        return _report_failure(payload)
    _print_distribution(payload["data"], applied=not args.dry_run)
    return 0


def _rule_values(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect the rule fields given on the command line."""
    values = {
        "name": args.name,
        "expected_amount": args.expected_amount,
        "amount_tolerance": args.tolerance,
        "description_pattern": args.pattern,
        "category_id": args.category_id,
        "account_id": args.account_id,
        "strategy": args.strategy,
        "auto_distribute": args.auto_distribute,
        "is_active": args.is_active,
    }
    return {key: value for key, value in values.items() if value is not None}


def handle_rules_command(args: argparse.Namespace, service: BudgetEngineService) -> int:
    """
    Handle distribution rule commands.

    Args:
        args: Parsed command-line arguments
        service: BudgetEngineService instance

    Returns:
        Process exit code
    """
    action = args.rules_action
    if action == "list":
        payload = service.list_rules(active_only=args.active_only)
    elif action == "create":
        payload = service.create_rule(**_rule_values(args))
    elif action == "update":
        payload = service.update_rule(args.id, **_rule_values(args))
    elif action == "delete":
        payload = service.delete_rule(args.id)
    elif action == "evaluate":
        payload = service.evaluate_rules(args.transaction_id, apply=not args.dry_run)
    else:
        print("Specify a rules action: list, create, update, delete or evaluate", file=sys.stderr)
        return 1

    if payload["status"] != "ok":
        return _report_failure(payload)

    data = payload["data"]
    if action == "list":
        if not data:
            print("No distribution rules found.")
            return 0
        rows = [
            [rule["id"], rule["name"],
             "" if rule["expected_amount"] is None else f"{rule['expected_amount']:,.2f}",
             f"{rule['amount_tolerance']:g}%", rule["description_pattern"] or "",
             rule["strategy"], "yes" if rule["auto_distribute"] else "no",
             "yes" if rule["is_active"] else "no"]
            for rule in data
        ]
        print(tabulate(
            rows,
            headers=["ID", "Name", "Expected", "Tolerance", "Pattern", "Strategy", "Auto", "Active"],
            tablefmt="grid"
        ))
    elif action in ("create", "update"):
        verb = "Created" if action == "create" else "Updated"
        print(f"{verb} rule {data['id']} ('{data['name']}')")
    elif action == "delete":
        print(f"Deleted rule {data['deleted']}")
    else:
        print(f"Matched rules: {data['matched_rule_ids'] or 'none'}")
        if data["distribution"] is not None:
            print(f"Rule {data['triggered_rule_id']} distributed the transaction automatically.")
            _print_distribution(data["distribution"], applied=not args.dry_run)
        elif data["pending_rule_ids"]:
            print(f"Rules awaiting confirmation: {data['pending_rule_ids']}")
    return 0


def handle_transfers_command(args: argparse.Namespace, service: BudgetEngineService) -> int:
    """
    Handle the transfers command.

    Args:
        args: Parsed command-line arguments
        service: BudgetEngineService instance

    Returns:
        Process exit code
    """
    payload = service.transfer_suggestions(args.year, args.month, args.budget_safe_only)
    if payload["status"] != "ok":
        return _report_failure(payload)

    data = payload["data"]
    print("\n" + "=" * 100)
    print(f"TRANSFER SUGGESTIONS: {data['year']:04d}-{data['month']:02d}")
    print("=" * 100)
    if not data["accounts"]:
        print("No account receives income this month.")
        print("=" * 100)
        return 0

    rows = [
        [account["account_name"], f"{account['total_income']:,.2f}",
         f"{account['direct_obligations']:,.2f}", f"{account['shared_obligations']:,.2f}",
         f"{account['surplus']:,.2f}", f"{account['safety_margin']:,.2f}",
         f"{account['suggested_transfer']:,.2f}", account["status"]]
        for account in data["accounts"]
    ]
    print(tabulate(
        rows,
        headers=["Account", "Income", "Direct", "Shared", "Surplus", "Margin", "Transfer", "Status"],
        tablefmt="grid"
    ))
    print(f"Shared obligations: ${data['unassigned_total']:,.2f} "
          f"(${data['share_per_account']:,.2f} per account)")
    if data.get("note"):
        print(f"Note: {data['note']}")
    print("=" * 100)
    return 0


def handle_notifications_command(args: argparse.Namespace, service: BudgetEngineService) -> int:
    action = args.notifications_action
    if action == "dismiss":
        payload = service.dismiss_notification(args.id)
        if payload["status"] != "ok":
            return _report_failure(payload)
        print(f"Dismissed {args.id}")
        return 0
    if action != "list":
        print("Specify a notifications action: list or dismiss", file=sys.stderr)
        return 1

    payload = service.notifications(month=args.month, pending_duplicates=args.pending_duplicates)
    if payload["status"] != "ok":
        return _report_failure(payload)
    if not payload["data"]:
        print("All clear! No active alerts.")
        return 0
    rows = [
        [item["severity"], item["source"], item["title"], item["message"], item["id"]]
        for item in payload["data"]
    ]
    print(tabulate(rows, headers=["Severity", "Source", "Title", "Message", "ID"], tablefmt="grid"))
    return 0


HANDLERS = {
    "allocation": handle_allocation_command,
    "alloc": handle_allocation_command,
    "distribute": handle_distribute_command,
    "dist": handle_distribute_command,
    "rules": handle_rules_command,
    "transfers": handle_transfers_command,
    "transfer": handle_transfers_command,
    "notifications": handle_notifications_command,
    "notify": handle_notifications_command,
}


def main(argv: List[str] | None = None) -> int:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Handle case where no command is provided
    if not args.command:
        parser.print_help()
        return 1

    # Load configuration
    config_path = Path(args.config)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    # Ensure data directory exists before logging/database work
    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        return 1

    # Setup logging
    setup_logging(config)

    try:
        db_manager = DatabaseManager(resolve_connection_string(config))
        db_manager.create_tables()
    except BudgetEngineError as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    try:
        service = BudgetEngineService.from_config(config, db_manager)
        return HANDLERS[args.command](args, service)
    except BudgetEngineError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    finally:
        db_manager.close()


if __name__ == "__main__":
    sys.exit(main())
