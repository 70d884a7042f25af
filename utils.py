"""
Utility helpers for paths, connection strings, months and money.

Centralizes logic for resolving the project data directory and database
connection strings, plus the month and cent arithmetic shared by the
ledger, the distribution engine and the transfer advisory calculator.
"""

from __future__ import annotations

import logging
import math
import os
import re
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.engine import make_url

from exceptions import ValidationError

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent
_DEFAULT_DATA_DIR_NAME = "data"
_DEFAULT_DB_FILENAME = "budget_engine.db"

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

MONTH_NAMES = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)


def get_project_root() -> Path:
    """Return the repository root directory."""
    return _PROJECT_ROOT


def _coerce_path(path_value: str | Path, *, allow_relative: bool = True) -> Path:
    """
    Convert a string/Path into an absolute project-root based Path.

    Args:
        path_value: Candidate filesystem path.
        allow_relative: If False, value must already be absolute.

    Returns:
        Absolute Path instance.
    """
    path = Path(path_value)
    if path.is_absolute() or not allow_relative:
        return path
    return get_project_root() / path


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Resolve the data directory path without creating it.

    Args:
        config: Optional configuration dictionary.

    Returns:
        Path to the data directory (may not exist yet).
    """
    db_config = (config or {}).get("database", {})
    data_dir_raw = db_config.get("data_dir", _DEFAULT_DATA_DIR_NAME)
    return _coerce_path(data_dir_raw)


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Ensure the data directory exists and return its Path.

    Args:
        config: Optional configuration dictionary.

    Returns:
        Absolute Path to the ensured data directory.
    """
    data_dir = get_data_dir(config)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create data directory '%s': %s", data_dir, exc)
        raise
    return data_dir


def _ensure_sqlite_parent_dir(connection_string: str) -> None:
    """
    Ensure the parent directory for a SQLite database exists.

    Args:
        connection_string: SQLAlchemy connection string.
    """
    try:
        url = make_url(connection_string)
    except Exception as exc:  # pragma: no cover - logging only
        logger.debug("Unable to parse connection string '%s': %s", connection_string, exc)
        return

    if not url.drivername.startswith("sqlite"):
        return

    database = url.database
    if not database or database == ":memory:":
        return

    db_path = Path(database)
    if not db_path.is_absolute():
        db_path = get_project_root() / db_path

    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create SQLite parent directory '%s': %s", db_path.parent, exc)
        raise


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Resolve the database connection string using env var, config, or defaults.

    Order of precedence:
        1. DB_CONNECTION_STRING environment variable
        2. config['database']['connection_string']
        3. Constructed from data_dir/path defaults

    Args:
        config: Optional configuration dictionary.

    Returns:
        SQLAlchemy connection string.
    """
    config = config or {}
    env_conn = os.environ.get("DB_CONNECTION_STRING")
    if env_conn:
        _ensure_sqlite_parent_dir(env_conn)
        return env_conn

    db_config = config.get("database", {})
    config_conn = db_config.get("connection_string")
    if config_conn:
        _ensure_sqlite_parent_dir(config_conn)
        return config_conn

    data_dir = ensure_data_dir(config)
    db_filename = db_config.get("path", _DEFAULT_DB_FILENAME)
    db_path = Path(db_filename)
    if not db_path.is_absolute():
        db_path = data_dir / db_path
    else:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    connection_string = f"sqlite:///{db_path.as_posix()}"
    _ensure_sqlite_parent_dir(connection_string)
    return connection_string


def resolve_log_path(log_path: str) -> Path:
    """
    Convert a log file path to an absolute path under the project root when needed.

    Args:
        log_path: Configured log file path (relative or absolute).

    Returns:
        Absolute Path for logging output.
    """
    resolved = _coerce_path(log_path)
    if resolved.parent != resolved:
        resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def resolve_data_file(file_path: str, config: Optional[Dict[str, Any]] = None) -> Path:
    """Resolve a relative file name under the data directory."""
    path = Path(file_path)
    if path.is_absolute():
        return path
    return ensure_data_dir(config) / path


# ---------------------------------------------------------------------------
# Months
# ---------------------------------------------------------------------------

def parse_month(value: str | date) -> date:
    """
    Parse a year-month identifier into the first day of that month.

    Args:
        value: "YYYY-MM" string or a date within the month.

    Returns:
        Date for the first day of the month.

    Raises:
        ValidationError: If the value is not a valid year-month.
    """
    if isinstance(value, date):
        return value.replace(day=1)

    match = _MONTH_PATTERN.match(str(value).strip())
    if not match:
        raise ValidationError("month must use the YYYY-MM format", field="month")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 01 and 12", field="month")
    return date(year, month, 1)


def format_month(month: date) -> str:
    """Return the YYYY-MM identifier for a month."""
    return f"{month.year:04d}-{month.month:02d}"


def month_from_parts(year: int, month: int) -> date:
    """Build a month date from a year and a 1-based month number."""
    if not 1 <= int(month) <= 12:
        raise ValidationError("month must be between 1 and 12", field="month")
    return date(int(year), int(month), 1)


def get_month_period(month: date) -> Tuple[date, date]:
    """
    Get the first and last day for the provided month.

    Args:
        month: Date within the desired month (only month/year are used).

    Returns:
        Tuple of (period_start, period_end).
    """
    period_start = month.replace(day=1)
    if period_start.month == 12:
        period_end = period_start.replace(year=period_start.year + 1, month=1, day=1) - timedelta(days=1)
    else:
        period_end = period_start.replace(month=period_start.month + 1, day=1) - timedelta(days=1)
    return period_start, period_end


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

def to_cents(amount: float) -> int:
    """Convert an amount to whole cents, rounding half away from zero."""
    scaled = abs(amount) * 100
    cents = int(math.floor(scaled + 0.5))
    return cents if amount >= 0 else -cents


def from_cents(cents: int) -> float:
    """Convert whole cents back to a float amount."""
    return round(cents / 100.0, 2)


def round_money(amount: float) -> float:
    """Round an amount to the cent."""
    return from_cents(to_cents(amount))
