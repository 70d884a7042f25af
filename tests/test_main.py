"""
End-to-end tests for the command-line interface.
"""

import logging

import pytest
import yaml

from main import build_parser, main


@pytest.fixture(autouse=True)
def restore_root_handlers(monkeypatch):
    monkeypatch.delenv("DB_CONNECTION_STRING", raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "database": {"data_dir": str(tmp_path / "data"), "path": "cli.db"},
        "logging": {"level": "WARNING"},
    }))
    return str(path)


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_missing_config(tmp_path, capsys):
    code = main(["--config", str(tmp_path / "absent.yaml"), "transfers", "--year", "2024", "--month", "5"])

    assert code == 1
    assert "Error loading config" in capsys.readouterr().err


def test_transfers_without_income(config_path, capsys):
    code = main(["--config", config_path, "transfers", "--year", "2024", "--month", "5"])

    assert code == 0
    assert "No account receives income this month." in capsys.readouterr().out


def test_invalid_input_exit_code(config_path, capsys):
    code = main(["--config", config_path, "distribute", "--amount", "0"])

    assert code == 1
    assert "Invalid amount:" in capsys.readouterr().err


def test_rule_create_and_list(config_path, capsys):
    assert main(["--config", config_path, "rules", "create", "--name", "Salary",
                 "--expected-amount", "2500", "--no-auto"]) == 0
    assert "Created rule 1 ('Salary')" in capsys.readouterr().out

    assert main(["--config", config_path, "rules", "list"]) == 0
    output = capsys.readouterr().out
    assert "Salary" in output
    assert "2,500.00" in output


def test_allocation_show_and_notifications(config_path, capsys):
    assert main(["--config", config_path, "allocation", "show", "--month", "2024-05"]) == 0
    assert "ALLOCATION STATE: 2024-05" in capsys.readouterr().out

    assert main(["--config", config_path, "notifications", "list", "--month", "2024-05",
                 "--pending-duplicates", "12"]) == 0
    assert "smart-pending_duplicates-12" in capsys.readouterr().out

    assert main(["--config", config_path, "notify", "dismiss", "--id", "smart-pending_duplicates-12"]) == 0
    capsys.readouterr()

    assert main(["--config", config_path, "notifications", "list", "--month", "2024-05",
                 "--pending-duplicates", "12"]) == 0
    assert "All clear! No active alerts." in capsys.readouterr().out


def test_override_requires_amount_or_clear():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["allocation", "override", "--month", "2024-05"])
