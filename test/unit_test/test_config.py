"""
Test Config Module

Tests for environment-driven configuration in tx_relay.config.
"""

import logging
import os
from unittest.mock import patch

from tx_relay.config import (
    Config,
    LoggingConfig,
    MonitorConfig,
    OutboxConfig,
    RpcConfig,
    setup_logging,
)


def test_rpc_endpoints_in_tier_order():
    """Endpoints come out primary, secondary, tertiary"""
    env = {
        "RPC_PRIMARY": "https://one.example.com",
        "RPC_SECONDARY": "https://two.example.com",
        "RPC_TERTIARY": "https://three.example.com",
    }
    with patch.dict(os.environ, env):
        cfg = RpcConfig()

    assert cfg.endpoints == [
        "https://one.example.com",
        "https://two.example.com",
        "https://three.example.com",
    ]


def test_rpc_endpoints_skip_blank_tiers():
    env = {"RPC_PRIMARY": "https://one.example.com", "RPC_SECONDARY": "  ", "RPC_TERTIARY": "https://three.example.com"}
    with patch.dict(os.environ, env):
        cfg = RpcConfig()

    assert cfg.endpoints == ["https://one.example.com", "https://three.example.com"]


def test_outbox_defaults():
    """Retry cap and inter-run interval defaults"""
    keys = ["OUTBOX_RETRY_CAP", "OUTBOX_RUN_INTERVAL", "OUTBOX_BACKOFF", "OUTBOX_CONCURRENCY"]
    with patch.dict(os.environ, {}, clear=False):
        for key in keys:
            os.environ.pop(key, None)
        cfg = OutboxConfig()

    assert cfg.retry_cap == 5
    assert cfg.run_interval == 30.0
    assert cfg.backoff == "exponential"
    assert cfg.concurrency == 4


def test_outbox_overrides():
    env = {"OUTBOX_RETRY_CAP": "3", "OUTBOX_BACKOFF": "linear", "OUTBOX_RUN_INTERVAL": "12.5"}
    with patch.dict(os.environ, env):
        cfg = OutboxConfig()

    assert cfg.retry_cap == 3
    assert cfg.backoff == "linear"
    assert cfg.run_interval == 12.5


def test_invalid_number_falls_back_to_default():
    with patch.dict(os.environ, {"OUTBOX_RETRY_CAP": "many"}):
        cfg = OutboxConfig()

    assert cfg.retry_cap == 5


def test_monitor_defaults():
    keys = ["MONITOR_POLL_INTERVAL", "MONITOR_TIMEOUT", "MONITOR_MAX_POLLS"]
    with patch.dict(os.environ, {}, clear=False):
        for key in keys:
            os.environ.pop(key, None)
        cfg = MonitorConfig()

    assert cfg.poll_interval == 2.0
    assert cfg.timeout == 60.0
    assert cfg.max_polls == 0


def test_config_container():
    cfg = Config()
    assert isinstance(cfg.rpc, RpcConfig)
    assert isinstance(cfg.outbox, OutboxConfig)
    assert isinstance(cfg.monitor, MonitorConfig)


def test_setup_logging_console_only():
    """No file handler when LOG_FILE is empty"""
    log_config = LoggingConfig(log_file="", log_level="DEBUG", console_output=True)
    logger = setup_logging(log_config, logger_name="tx_relay_test")

    try:
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)
        assert logging.getLogger("tx_relay_test.outbox").level == logging.DEBUG
    finally:
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)


def test_setup_logging_file(tmp_path):
    log_file = tmp_path / "logs" / "relay.log"
    log_config = LoggingConfig(log_file=str(log_file), log_level="INFO", console_output=False)
    logger = setup_logging(log_config, logger_name="tx_relay_file_test")

    try:
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert log_file.exists()
        assert "hello" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)


def test_log_lines_carry_correlation_id(tmp_path):
    from tx_relay.infra.retry import CorrelationContext

    log_file = tmp_path / "relay.log"
    log_config = LoggingConfig(log_file=str(log_file), log_level="INFO", console_output=False)
    logger = setup_logging(log_config, logger_name="tx_relay_cid_test")

    try:
        logger.info("outside")
        with CorrelationContext("outbox") as cid:
            logger.info("inside")
        for handler in logger.handlers:
            handler.flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert "[-] outside" in lines[0]
        assert f"[{cid}] inside" in lines[1]
    finally:
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
