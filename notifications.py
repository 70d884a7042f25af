"""
Notification aggregation with a locally persisted dismissal list.

Alert builders turn engine results (allocation state, transfer advice)
and externally supplied findings (bank connections, pending duplicates,
link suggestions) into Notification records. build_notifications merges
them, hides locally dismissed ones and ranks them by severity.

Dismissals are kept in an injected key-value store and expire after a
fixed number of days, after which the alert can surface again.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from budget_types import (
    AllocationState,
    AllocationStatusColor,
    TransferStatus,
    TransferSuggestionsResponse,
    _ParseableEnum,
)
from exceptions import ValidationError

logger = logging.getLogger(__name__)

DISMISSAL_KEY = "dismissed-notifications"
DEFAULT_DISMISSAL_TTL_DAYS = 7

# More than this many pending duplicates raises the alert to medium
DUPLICATE_ESCALATION_THRESHOLD = 10


class Severity(_ParseableEnum):
    """Notification severity, most urgent first."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.HIGH: 0,
    Severity.MEDIUM: 1,
    Severity.LOW: 2,
}


class NotificationSource(_ParseableEnum):
    """Where a notification comes from."""
    SMART = "smart"
    BANK = "bank"
    LINK = "link"


@dataclass
class Notification:
    """A single advisory alert."""
    id: str
    source: NotificationSource
    severity: Severity
    title: str
    message: str
    action_label: Optional[str] = None
    action_href: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class BankConnectionAlert:
    """Bank connection that has expired or is about to."""
    connection_id: int
    institution_name: str
    status: str
    days_until_expiration: int


@dataclass
class LinkSuggestion:
    """Pending suggestion to link a transaction to an expense plan."""
    id: int
    transaction_description: str
    transaction_amount: float
    transaction_date: date
    expense_plan_name: str
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------

class KeyValueStore(ABC):
    """Minimal persistence interface for client-local state."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value."""


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store, used in tests and one-off runs."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStore(KeyValueStore):
    """
    Store backed by a single JSON object on disk.

    The file is read on every access and rewritten on every set, so
    separate processes see each other's dismissals.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable dismissal file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Any:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DismissalRegistry:
    """
    Tracks which notifications the user has dismissed.

    A dismissal stays in force while it is at most ttl_days old; older
    entries are purged the next time the registry is read.
    """

    def __init__(
        self,
        store: KeyValueStore,
        now: Callable[[], datetime] = _utc_now,
        ttl_days: int = DEFAULT_DISMISSAL_TTL_DAYS
    ):
        """
        Initialize the registry.

        Args:
            store: Key-value store holding the dismissal entries
            now: Clock returning a timezone-aware datetime
            ttl_days: Days a dismissal remains in force
        """
        self.store = store
        self.now = now
        self.ttl = timedelta(days=ttl_days)

    def _entries(self) -> List[Dict[str, str]]:
        raw = self.store.get(DISMISSAL_KEY) or []
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed dismissal list of type %s", type(raw).__name__)
            return []
        return [entry for entry in raw if isinstance(entry, dict) and "id" in entry and "dismissed_at" in entry]

    def _is_current(self, entry: Dict[str, str], now: datetime) -> bool:
        try:
            return now - datetime.fromisoformat(entry["dismissed_at"]) <= self.ttl
        except (TypeError, ValueError):
            # Unparseable or timezone-naive timestamps count as expired
            logger.warning("Discarding dismissal of %s with bad timestamp %r", entry["id"], entry["dismissed_at"])
            return False

    def _current_entries(self) -> List[Dict[str, str]]:
        """Return entries still in force, writing back the list when any were dropped."""
        entries = self._entries()
        now = self.now()
        valid = [entry for entry in entries if self._is_current(entry, now)]
        if len(valid) != len(entries):
            logger.info("Purged %d expired dismissal(s)", len(entries) - len(valid))
            try:
                self.store.set(DISMISSAL_KEY, valid)
            except OSError as exc:
                logger.warning("Could not save purged dismissals: %s", exc)
        return valid

    def active_ids(self) -> Set[str]:
        """
        Return ids whose dismissal has not expired, purging the rest.
        """
        return {entry["id"] for entry in self._current_entries()}

    def dismiss(self, notification_id: str) -> None:
        """
        Record a dismissal; dismissing an id that is still in force keeps its original time.

        Raises:
            ValidationError: If the id is empty
        """
        if not notification_id or not str(notification_id).strip():
            raise ValidationError("notification id is required", field="id")
        entries = self._current_entries()
        if any(entry["id"] == notification_id for entry in entries):
            return
        entries.append({"id": notification_id, "dismissed_at": self.now().isoformat()})
        self.store.set(DISMISSAL_KEY, entries)
        logger.debug("Dismissed notification %s", notification_id)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def build_notifications(
    sources: Iterable[List[Notification]],
    dismissed_ids: Set[str]
) -> List[Notification]:
    """
    Merge alert lists into one ranked list.

    Args:
        sources: Independently computed alert lists
        dismissed_ids: Ids dismissed locally; link suggestions ignore these

    Returns:
        Visible notifications sorted high, medium, low (stable within a severity)
    """
    merged = [notification for source in sources for notification in source]
    visible = [
        notification for notification in merged
        if notification.source is NotificationSource.LINK or notification.id not in dismissed_ids
    ]
    visible.sort(key=lambda notification: notification.severity.rank)
    return visible


def allocation_alerts(state: AllocationState) -> List[Notification]:
    """Alert when a month's income is over-assigned or still has money to assign."""
    if state.status_color is AllocationStatusColor.RED:
        return [Notification(
            id=f"smart-allocation_over-{state.month}",
            source=NotificationSource.SMART,
            severity=Severity.HIGH,
            title="Over-assigned budget",
            message=f"{abs(state.unassigned):,.2f} more assigned than the income for {state.month}",
            action_label="Review allocations",
            action_href="/budget-management"
        )]
    if state.status_color is AllocationStatusColor.YELLOW:
        return [Notification(
            id=f"smart-allocation_unassigned-{state.month}",
            source=NotificationSource.SMART,
            severity=Severity.MEDIUM,
            title="Income to assign",
            message=f"{state.unassigned:,.2f} of income for {state.month} is not assigned yet",
            action_label="Assign income",
            action_href="/budget-management"
        )]
    return []


def transfer_alerts(response: TransferSuggestionsResponse) -> List[Notification]:
    """Alert for accounts whose obligations exceed, or nearly exceed, their income."""
    notifications: List[Notification] = []
    period = f"{response.year:04d}-{response.month:02d}"
    for account in response.accounts:
        if account.status is TransferStatus.INSUFFICIENT:
            notifications.append(Notification(
                id=f"smart-transfer_insufficient-{period}-{account.account_id}",
                source=NotificationSource.SMART,
                severity=Severity.HIGH,
                title=account.account_name,
                message=f"Obligations exceed income by {abs(account.surplus):,.2f} in {period}",
                action_label="Review income plans",
                action_href="/income-plans"
            ))
        elif account.status is TransferStatus.TIGHT:
            notifications.append(Notification(
                id=f"smart-transfer_tight-{period}-{account.account_id}",
                source=NotificationSource.SMART,
                severity=Severity.LOW,
                title=account.account_name,
                message=f"Only {account.surplus:,.2f} left after obligations in {period}, below the safety margin",
                action_label="Review income plans",
                action_href="/income-plans"
            ))
    return notifications


def format_expiration_message(days_until_expiration: int) -> str:
    """Human-readable expiry text for a bank connection."""
    if days_until_expiration < 0:
        days_ago = abs(days_until_expiration)
        return f"Expired {days_ago} day{'' if days_ago == 1 else 's'} ago"
    if days_until_expiration == 0:
        return "Expires today"
    if days_until_expiration == 1:
        return "Expires tomorrow"
    return f"Expires in {days_until_expiration} days"


def bank_connection_alerts(alerts: List[BankConnectionAlert]) -> List[Notification]:
    """Expired connections are high severity, expiring ones medium."""
    notifications = []
    for alert in alerts:
        expired = alert.status == "expired"
        notifications.append(Notification(
            id=f"bank-{alert.status}-{alert.connection_id}",
            source=NotificationSource.BANK,
            severity=Severity.HIGH if expired else Severity.MEDIUM,
            title=alert.institution_name or "Bank Connection",
            message=format_expiration_message(alert.days_until_expiration),
            action_label="Reconnect bank",
            action_href=f"/bank-accounts?reconnect={alert.connection_id}"
        ))
    return notifications


def duplicate_alerts(pending_count: int) -> List[Notification]:
    if pending_count <= 0:
        return []
    return [Notification(
        id=f"smart-pending_duplicates-{pending_count}",
        source=NotificationSource.SMART,
        severity=Severity.MEDIUM if pending_count > DUPLICATE_ESCALATION_THRESHOLD else Severity.LOW,
        title="Duplicates to review",
        message=f"{pending_count} duplicate transactions to review",
        action_label="Review duplicates",
        action_href="/pending-duplicates"
    )]


def link_suggestion_alerts(suggestions: List[LinkSuggestion]) -> List[Notification]:
    # Approval and rejection happen remotely, so these are never dismissed locally
    return [
        Notification(
            id=f"link-suggestion-{suggestion.id}",
            source=NotificationSource.LINK,
            severity=Severity.LOW,
            title=f'"{suggestion.transaction_description}" {suggestion.transaction_amount:,.2f}',
            message=f"{suggestion.transaction_date.isoformat()} -> Link to: {suggestion.expense_plan_name}",
            action_label="Link",
            timestamp=suggestion.created_at
        )
        for suggestion in suggestions
    ]
