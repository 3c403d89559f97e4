"""
Tests for the command-line interface.
"""

import logging

import pytest
import yaml

from notifier.cli import build_parser, main


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.setenv("NOTIFIER_DATA_DIR", str(tmp_path / "data"))
    return tmp_path / "notifier.yaml"


@pytest.fixture(autouse=True)
def restore_root_handlers():
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    root_logger.handlers = handlers
    root_logger.setLevel(level)


def run(config_path, *args):
    main(["-c", str(config_path), *args])


def saved_labels(config_path):
    data = yaml.safe_load(config_path.read_text())
    return [n['label'] for n in data['notifications']]


def test_validate_accepts(config_path, capsys):
    run(config_path, "validate", "0 0 12 * * * *")
    out = capsys.readouterr().out
    assert "is valid" in out
    assert "hour:" in out


def test_validate_accepts_sunday_as_seven(config_path, capsys):
    run(config_path, "validate", "0 0 9 * * 5-7 *")
    assert "is valid" in capsys.readouterr().out


def test_validate_rejects_field_count(config_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        run(config_path, "validate", "0 0 12 * *")
    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "got 5" in out
    assert "{day of week}" in out


def test_next_previews_fire_times(config_path, capsys):
    run(config_path, "next", "*/10 * * * * * *", "-n", "3")
    out = capsys.readouterr().out
    lines = [line for line in out.splitlines() if line.startswith("  20")]
    assert len(lines) == 3
    assert all(line.strip().endswith("0") for line in lines)


def test_add_list_remove(config_path, capsys):
    run(config_path, "add", "Stretch", "--cron", "0 0 * * * * *")
    run(config_path, "add", "Lunch", "--cron", "0 30 12 * * mon-fri *", "--level", "Warning")
    assert saved_labels(config_path) == ["Stretch", "Lunch"]

    capsys.readouterr()
    run(config_path, "list")
    out = capsys.readouterr().out
    assert "Notifications (2)" in out
    assert "Next notification at" in out

    run(config_path, "remove", "Stretch")
    assert saved_labels(config_path) == ["Lunch"]


def test_add_rejects_invalid_cron(config_path):
    with pytest.raises(SystemExit) as exc_info:
        run(config_path, "add", "Bad", "--cron", "0 0 12 * *")
    assert exc_info.value.code == 1
    assert not config_path.exists()


def test_remove_unknown_label(config_path):
    run(config_path, "init")
    with pytest.raises(SystemExit) as exc_info:
        run(config_path, "remove", "Nothing")
    assert exc_info.value.code == 1


def test_update(config_path):
    run(config_path, "add", "Lunch", "--cron", "0 30 12 * * * *")
    run(config_path, "update", "Lunch", "--new-label", "Late lunch", "--cron", "0 0 13 * * * *")

    data = yaml.safe_load(config_path.read_text())
    assert data['notifications'] == [
        {'label': "Late lunch", 'cron': "0 0 13 * * * *", 'level': "Info"}
    ]


def test_update_level_only(config_path):
    run(config_path, "add", "Lunch", "--cron", "0 30 12 * * * *")
    run(config_path, "update", "Lunch", "--level", "Warning")

    data = yaml.safe_load(config_path.read_text())
    assert data['notifications'] == [
        {'label': "Lunch", 'cron': "0 30 12 * * * *", 'level': "Warning"}
    ]


def test_update_unknown_label(config_path):
    run(config_path, "init")
    with pytest.raises(SystemExit) as exc_info:
        run(config_path, "update", "Dinner", "--level", "Warning")
    assert exc_info.value.code == 1


def test_list_marks_invalid_entries(config_path, capsys):
    config_path.write_text(
        "notifications:\n"
        "- {label: Short, cron: '0 0 12 * *'}\n"
    )
    run(config_path, "list")
    out = capsys.readouterr().out
    assert "✗ Short" in out
    assert "got 5" in out


def test_init_and_show_config(config_path, capsys):
    run(config_path, "init")
    assert config_path.exists()

    run(config_path, "show-config")
    out = capsys.readouterr().out
    assert str(config_path) in out
    assert "Poll interval: 0.5s" in out
    assert "Notifications: 0 (0 valid)" in out
    assert "0 and 7 are Sunday" in out


def test_init_force_resets_file(config_path):
    config_path.write_text("notifications: [\n")
    run(config_path, "init")
    assert config_path.read_text() == "notifications: [\n"

    run(config_path, "init", "--force")
    data = yaml.safe_load(config_path.read_text())
    assert data['notifications'] == []

    run(config_path, "add", "Tea", "--cron", "0 0 16 * * * *")
    run(config_path, "init", "--force")
    assert yaml.safe_load(config_path.read_text())['notifications'] == []


def test_status_when_not_running(config_path, capsys):
    run(config_path, "status")
    assert "Not Running" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit):
        main([])
    assert "usage" in capsys.readouterr().out


def test_parser_defaults():
    args = build_parser().parse_args(["add", "Tea", "--cron", "0 0 16 * * * *"])
    assert args.level == "Info"
    assert args.func.__name__ == "cmd_add"
