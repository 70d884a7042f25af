"""
Tests for utility helpers: data directory and connection resolution, months and money.
"""

from datetime import date
from pathlib import Path

import pytest
from sqlalchemy.engine import make_url

from exceptions import ValidationError
from utils import (
    ensure_data_dir,
    format_month,
    from_cents,
    get_month_period,
    month_from_parts,
    parse_month,
    resolve_connection_string,
    resolve_data_file,
    round_money,
    to_cents,
)


def test_ensure_data_dir_creates_directory(tmp_path):
    """ensure_data_dir should create the configured directory when missing."""
    config = {"database": {"data_dir": str(tmp_path / "engine_data")}}
    data_dir = ensure_data_dir(config)

    assert data_dir.exists()
    assert data_dir.is_dir()
    assert data_dir == Path(tmp_path / "engine_data")


def test_resolve_connection_string_default(monkeypatch, tmp_path):
    """resolve_connection_string should build a sqlite URL under the data dir."""
    monkeypatch.delenv("DB_CONNECTION_STRING", raising=False)
    data_dir = tmp_path / "app_data"
    config = {"database": {"data_dir": str(data_dir), "path": "budget.db"}}

    connection_string = resolve_connection_string(config)
    url = make_url(connection_string)

    assert url.drivername.startswith("sqlite")
    assert Path(url.database) == data_dir / "budget.db"
    assert data_dir.exists()


def test_resolve_connection_string_env_override(monkeypatch, tmp_path):
    """Environment variable should take precedence over config/defaults."""
    db_path = tmp_path / "env_override" / "engine.db"
    env_connection = f"sqlite:///{db_path.as_posix()}"
    monkeypatch.setenv("DB_CONNECTION_STRING", env_connection)

    connection_string = resolve_connection_string({"database": {"connection_string": "sqlite:///ignored.db"}})

    assert connection_string == env_connection
    assert db_path.parent.exists()


def test_resolve_connection_string_from_config(monkeypatch):
    monkeypatch.delenv("DB_CONNECTION_STRING", raising=False)
    config = {"database": {"connection_string": "sqlite:///:memory:"}}

    assert resolve_connection_string(config) == "sqlite:///:memory:"


def test_resolve_data_file_relative_and_absolute(tmp_path):
    config = {"database": {"data_dir": str(tmp_path / "data")}}

    assert resolve_data_file("dismissed.json", config) == tmp_path / "data" / "dismissed.json"
    absolute = tmp_path / "elsewhere.json"
    assert resolve_data_file(str(absolute), config) == absolute


class TestMonths:
    """Month parsing and period helpers."""

    def test_parse_month_string(self):
        assert parse_month("2024-03") == date(2024, 3, 1)

    def test_parse_month_date_normalizes_to_first_day(self):
        assert parse_month(date(2024, 3, 17)) == date(2024, 3, 1)

    @pytest.mark.parametrize("value", ["2024-13", "2024-3", "March 2024", ""])
    def test_parse_month_rejects_invalid(self, value):
        with pytest.raises(ValidationError) as excinfo:
            parse_month(value)
        assert excinfo.value.field == "month"

    def test_format_month(self):
        assert format_month(date(2024, 1, 31)) == "2024-01"

    def test_month_from_parts_validates_range(self):
        assert month_from_parts(2024, 12) == date(2024, 12, 1)
        with pytest.raises(ValidationError):
            month_from_parts(2024, 0)

    def test_get_month_period_handles_december_and_leap_years(self):
        assert get_month_period(date(2024, 12, 5)) == (date(2024, 12, 1), date(2024, 12, 31))
        assert get_month_period(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))


class TestMoney:
    """Cent conversion helpers."""

    def test_to_cents_rounds_half_away_from_zero(self):
        assert to_cents(0.125) == 13
        assert to_cents(-0.125) == -13
        assert to_cents(100) == 10000

    def test_from_cents(self):
        assert from_cents(12345) == 123.45

    def test_round_money(self):
        assert round_money(0.1 + 0.2) == 0.3
        assert round_money(10.004) == 10.0
