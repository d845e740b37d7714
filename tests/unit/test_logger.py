import pytest
import structlog
import logging
from unittest.mock import patch

from review_insights.utils.logger import (
    LogContext,
    get_logger,
    setup_logging,
    setup_logging_from_settings,
)


def test_setup_logging():
    # Calling it shouldn't crash
    setup_logging(level="DEBUG", json_format=False)
    setup_logging(level="INFO", json_format=True)


def test_setup_logging_quiets_third_party_loggers():
    setup_logging(level="DEBUG", json_format=False)
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("qdrant_client").level == logging.WARNING


def test_setup_logging_with_file(tmp_path):
    log_file = tmp_path / "app.log"
    root = logging.getLogger()
    before = list(root.handlers)

    setup_logging(level="INFO", json_format=True, log_file=str(log_file))

    added = [h for h in root.handlers if h not in before]
    try:
        assert any(isinstance(h, logging.FileHandler) for h in added)
    finally:
        for handler in added:
            root.removeHandler(handler)
            handler.close()


def test_setup_logging_invalid_level():
    with pytest.raises(AttributeError):
        setup_logging(level="LOUD")


@pytest.mark.parametrize("env,json_format", [("development", False), ("production", True)])
def test_setup_logging_from_settings(mock_settings, env, json_format):
    mock_settings.app_env = env
    with patch("review_insights.utils.logger.setup_logging") as mock_setup:
        setup_logging_from_settings(mock_settings)
    mock_setup.assert_called_once_with(level="INFO", json_format=json_format)


def test_get_logger():
    logger = get_logger("test_module")
    assert logger is not None
    logger.info("test message", key="value")


def test_log_context_binds_and_resets():
    structlog.contextvars.clear_contextvars()

    with LogContext(product_id="prod-1", run_id="abc"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["product_id"] == "prod-1"
        assert bound["run_id"] == "abc"

    assert "product_id" not in structlog.contextvars.get_contextvars()


def test_log_context_nested_restores_outer():
    structlog.contextvars.clear_contextvars()

    with LogContext(product_id="outer"):
        with LogContext(product_id="inner"):
            assert structlog.contextvars.get_contextvars()["product_id"] == "inner"
        assert structlog.contextvars.get_contextvars()["product_id"] == "outer"
