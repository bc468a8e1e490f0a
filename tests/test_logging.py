import logging
from logging.handlers import RotatingFileHandler

from dotenv import dotenv_values

from app.core.logging import OFF, TRACE, log_entry, parse_level, set_log_level, setup_logging
from app.utils.env_file import update_env_file


def test_parse_level():
    assert parse_level("warn") == logging.WARNING
    assert parse_level("DEBUG") == logging.DEBUG
    assert parse_level("trace") == TRACE
    assert parse_level("off") == OFF
    assert parse_level(logging.ERROR) == logging.ERROR
    assert parse_level("bavard") is None
    assert parse_level(None) is None
    assert parse_level(True) is None


def test_setup_logging_writes_to_file(tmp_path):
    log_file = tmp_path / "logs" / "logs.txt"
    logger = setup_logging("debug", log_file)
    assert logger.level == logging.DEBUG
    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)

    log_entry("message du client", "error")
    for handler in logger.handlers:
        handler.flush()
    assert "message du client" in log_file.read_text(encoding="utf-8")

    # un second appel remplace les handlers
    logger = setup_logging("info")
    assert not any(isinstance(h, RotatingFileHandler) for h in logger.handlers)


def test_set_log_level():
    setup_logging("info")
    assert set_log_level("off") is True
    assert logging.getLogger("app").level == OFF
    assert set_log_level("nope") is False
    assert logging.getLogger("app").level == OFF
    setup_logging("info")


def test_update_env_file(tmp_path):
    env = tmp_path / "conf" / ".env"
    assert update_env_file(env, "PORT", "8080")
    assert update_env_file(env, "LOG_LEVEL", "debug")
    assert update_env_file(env, "PORT", "9090")
    assert dotenv_values(env) == {"PORT": "9090", "LOG_LEVEL": "debug"}
    assert update_env_file(env, "PORT", 9090) is False
