"""Tests for the session logging setup."""

import logging

from ebb_control.logging_config import setup_logging


def test_setup_logging_writes_session_file(tmp_path, monkeypatch, capsys):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    log_file = tmp_path / "session.txt"

    setup_logging(str(log_file))
    added = list(root.handlers)
    try:
        assert len(added) == 2
        logging.getLogger("ebb_control.driver").debug("TX > b'V\\r'")
        text = log_file.read_text()
        assert "Logging configured" in text
        assert "TX > b'V\\r'" in text
        # The console handler only takes INFO and above
        assert "TX >" not in capsys.readouterr().out
    finally:
        for handler in added:
            handler.close()


def test_setup_logging_keeps_existing_handlers(monkeypatch):
    root = logging.getLogger()
    existing = logging.NullHandler()
    monkeypatch.setattr(root, "handlers", [existing])
    monkeypatch.setattr(root, "level", root.level)
    setup_logging("unused.txt")
    assert root.handlers == [existing]
