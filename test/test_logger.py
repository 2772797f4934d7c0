import logging
from logging.handlers import RotatingFileHandler

import config
from core.logger import setup_logger


def test_rotation_follows_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "LOG_LEVEL", "WARNING")
    monkeypatch.setattr(config, "LOG_MAX_BYTES", 2048)
    monkeypatch.setattr(config, "LOG_BACKUP_COUNT", 2)
    log_file = tmp_path / "logs" / "erp.log"

    log = setup_logger("college_erp.test_rotation", log_file)
    file_handler = next(h for h in log.handlers if isinstance(h, RotatingFileHandler))
    assert file_handler.maxBytes == 2048
    assert file_handler.backupCount == 2
    assert log.level == logging.WARNING

    log.info("enrollment opened")
    log.warning("fee overdue")
    file_handler.flush()
    written = log_file.read_text(encoding="utf-8")
    assert "fee overdue" in written
    assert "enrollment opened" not in written


def test_unknown_level_falls_back_to_info(monkeypatch):
    monkeypatch.setattr(config, "LOG_LEVEL", "CHATTY")
    log = setup_logger("college_erp.test_level")
    assert log.level == logging.INFO
    assert len(log.handlers) == 1


def test_setup_replaces_handlers(tmp_path):
    log = setup_logger("college_erp.test_repeat", tmp_path / "a.log")
    log = setup_logger("college_erp.test_repeat", tmp_path / "a.log")
    assert len(log.handlers) == 2
