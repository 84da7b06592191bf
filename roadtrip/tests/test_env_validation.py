import json
import logging

import pytest

from roadtrip.core.config import Settings, validate_config
from roadtrip.core.logging import JsonFormatter, PrettyFormatter, bind_request_id, configure_logging


@pytest.fixture(autouse=True)
def restore_roadtrip_logger():
    logger = logging.getLogger("roadtrip")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)


def test_production_without_database_warns(caplog):
    cfg = Settings(ENV="production", DATABASE_URL=None)
    with caplog.at_level(logging.WARNING, logger="roadtrip"):
        assert validate_config(strict=False, settings_obj=cfg) is False
    assert "DATABASE_URL" in caplog.text


def test_production_without_database_strict_raises():
    cfg = Settings(ENV="production", DATABASE_URL=None)
    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=cfg)


def test_production_rejects_sqlite():
    cfg = Settings(ENV="production", DATABASE_URL="sqlite:///roadtrip.db")
    with pytest.raises(RuntimeError, match="sqlite"):
        validate_config(strict=True, settings_obj=cfg)


def test_development_needs_nothing():
    assert validate_config(strict=True, settings_obj=Settings(ENV="development", DATABASE_URL=None)) is True


def test_term_settings_from_env(monkeypatch):
    monkeypatch.setenv("PAID_TERM_MONTHS", "6")
    monkeypatch.setenv("AI_CONSULTATION_WINDOW_HOURS", "12")
    cfg = Settings()
    assert cfg.PAID_TERM_MONTHS == 6
    assert cfg.AI_CONSULTATION_WINDOW_HOURS == 12


def _record(**extra):
    record = logging.LogRecord("roadtrip.test", logging.INFO, __file__, 1, "[quota] DENY", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extras():
    with bind_request_id("rid-9"):
        logger = configure_logging(env="production")
        record = _record(user_id="u1", feature="maxTrips")
        for f in logger.handlers[0].filters:
            f.filter(record)
        payload = json.loads(logger.handlers[0].formatter.format(record))

    assert isinstance(logger.handlers[0].formatter, JsonFormatter)
    assert payload["message"] == "[quota] DENY"
    assert payload["request_id"] == "rid-9"
    assert payload["user_id"] == "u1"
    assert payload["feature"] == "maxTrips"


def test_pretty_formatter_in_development():
    logger = configure_logging(env="development", level="debug")
    line = PrettyFormatter().format(_record(plan="free"))

    assert isinstance(logger.handlers[0].formatter, PrettyFormatter)
    assert logger.level == logging.DEBUG
    assert "[roadtrip]" in line
    assert "plan=free" in line
