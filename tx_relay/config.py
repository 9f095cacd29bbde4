"""
Configuration for TX Relay

Every setting comes from the environment (a .env file next to the package
is loaded first). Defaults are resolved when a config object is created,
so reload_config() picks up changed variables.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, List, TypeVar

from dotenv import load_dotenv

_T = TypeVar("_T")


def _load_env_file():
    """Load .env from the directory above the package, if present"""
    env_file = Path(__file__).resolve().parent.parent / ".env"
    if env_file.exists():
        load_dotenv(env_file)


_load_env_file()


def _get_env(key: str, default: Optional[str] = "") -> Optional[str]:
    value = os.getenv(key)
    return default if value is None else value


def _get_env_typed(key: str, default: _T, cast: Callable[[str], _T]) -> _T:
    """Parse a variable, logging and falling back to default when malformed"""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return cast(value.strip())
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring {key}={value!r}, using default {default}")
        return default


def _get_env_float(key: str, default: float) -> float:
    return _get_env_typed(key, default, float)


def _get_env_int(key: str, default: int) -> int:
    return _get_env_typed(key, default, int)


def _get_env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


@dataclass
class RpcConfig:
    """
    RPC endpoint tier configuration

    Endpoints are tried strictly in order (primary, secondary, tertiary).
    A blank slot is skipped.
    """
    primary: str = field(default_factory=lambda: _get_env("RPC_PRIMARY", ""))
    secondary: str = field(default_factory=lambda: _get_env("RPC_SECONDARY", ""))
    tertiary: str = field(default_factory=lambda: _get_env("RPC_TERTIARY", ""))
    # Per-attempt timeout, not a ceiling on the whole failover sequence
    timeout_seconds: float = field(default_factory=lambda: _get_env_float("RPC_TIMEOUT_SECONDS", 10.0))
    commitment: str = field(default_factory=lambda: _get_env("RPC_COMMITMENT", "confirmed"))

    @property
    def endpoints(self) -> List[str]:
        """Configured endpoints in failover order, blanks dropped"""
        return [url.strip() for url in (self.primary, self.secondary, self.tertiary) if url and url.strip()]


@dataclass
class SignerConfig:
    """Signing authority configuration"""
    # Hex encoded 32/64 byte seed used for derivation-path signing
    seed_hex: str = field(default_factory=lambda: _get_env("SIGNER_SEED_HEX", ""))
    keypair_path: str = field(default_factory=lambda: _get_env("SOLANA_KEYPAIR_PATH", ""))
    derivation_path: str = field(default_factory=lambda: _get_env("SIGNER_DERIVATION_PATH", "m/44'/501'/0'/0'"))


@dataclass
class TxConfig:
    """Transaction submission configuration"""
    skip_preflight: bool = field(default_factory=lambda: _get_env_bool("TX_SKIP_PREFLIGHT", False))
    preflight_commitment: str = field(default_factory=lambda: _get_env("TX_PREFLIGHT_COMMITMENT", "confirmed"))


@dataclass
class OutboxConfig:
    """
    Outbox store and worker configuration

    The retry cap is authoritative. The delay between worker runs follows
    the backoff policy ("fixed", "linear" or "exponential") and only grows
    while runs keep hitting transient failures.
    """
    db_url: str = field(default_factory=lambda: _get_env("OUTBOX_DB_URL", "sqlite+aiosqlite:///tx_outbox.db"))
    retry_cap: int = field(default_factory=lambda: _get_env_int("OUTBOX_RETRY_CAP", 5))
    concurrency: int = field(default_factory=lambda: _get_env_int("OUTBOX_CONCURRENCY", 4))
    run_interval: float = field(default_factory=lambda: _get_env_float("OUTBOX_RUN_INTERVAL", 30.0))
    backoff: str = field(default_factory=lambda: _get_env("OUTBOX_BACKOFF", "exponential"))
    max_run_interval: float = field(default_factory=lambda: _get_env_float("OUTBOX_MAX_RUN_INTERVAL", 600.0))


@dataclass
class MonitorConfig:
    """Confirmation monitor configuration"""
    poll_interval: float = field(default_factory=lambda: _get_env_float("MONITOR_POLL_INTERVAL", 2.0))
    # 1.0 = fixed cadence
    poll_backoff: float = field(default_factory=lambda: _get_env_float("MONITOR_POLL_BACKOFF", 1.0))
    max_poll_interval: float = field(default_factory=lambda: _get_env_float("MONITOR_MAX_POLL_INTERVAL", 10.0))
    # Wall-clock ceiling across all polls of one watch
    timeout: float = field(default_factory=lambda: _get_env_float("MONITOR_TIMEOUT", 60.0))
    # 0 = bounded by timeout only
    max_polls: int = field(default_factory=lambda: _get_env_int("MONITOR_MAX_POLLS", 0))


@dataclass
class LoggingConfig:
    """
    Logging configuration

    Environment variables:
        LOG_FILE: Rotating log file path (empty: console only)
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
        LOG_FORMAT: Format string; %(correlation_id)s is always available
        LOG_CONSOLE: Enable console output (default: true)
        LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
        LOG_BACKUP_COUNT: Number of rotated files to keep (default: 5)
    """
    log_file: str = field(default_factory=lambda: _get_env("LOG_FILE", ""))
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: _get_env(
        "LOG_FORMAT",
        "%(asctime)s %(levelname)-7s %(name)s [%(correlation_id)s] %(message)s"
    ))
    console_output: bool = field(default_factory=lambda: _get_env_bool("LOG_CONSOLE", True))
    max_bytes: int = field(default_factory=lambda: _get_env_int("LOG_MAX_BYTES", 10 * 1024 * 1024))
    backup_count: int = field(default_factory=lambda: _get_env_int("LOG_BACKUP_COUNT", 5))

    @property
    def level(self) -> int:
        """Numeric log level, INFO for unknown names"""
        return getattr(logging, self.log_level.upper(), logging.INFO)


@dataclass
class Config:
    """
    Main configuration container

    Loads all settings from environment variables and .env file.

    Usage:
        from tx_relay.config import config

        print(config.rpc.endpoints)
        print(config.outbox.retry_cap)
    """
    rpc: RpcConfig = field(default_factory=RpcConfig)
    signer: SignerConfig = field(default_factory=SignerConfig)
    tx: TxConfig = field(default_factory=TxConfig)
    outbox: OutboxConfig = field(default_factory=OutboxConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def reload(cls) -> "Config":
        """Reload configuration from environment"""
        _load_env_file()
        return cls()


# Global config instance
config = Config()


def get_config() -> Config:
    """Get global configuration instance"""
    return config


def reload_config() -> Config:
    """Reload and return new configuration"""
    global config
    config = Config.reload()
    return config


def setup_logging(
    log_config: Optional[LoggingConfig] = None,
    logger_name: str = "tx_relay",
) -> logging.Logger:
    """
    Attach console and/or rotating file handlers to the package logger

    Every handler stamps records with the active correlation ID, so outbox
    attempts can be followed across the rpc, builder and store log lines.
    Calling it again replaces the previous handlers.

    Args:
        log_config: Logging configuration (global config if None)
        logger_name: Logger to configure (default: tx_relay)

    Returns:
        The configured logger
    """
    from logging.handlers import RotatingFileHandler

    from .infra.retry import CorrelationIdFilter

    if log_config is None:
        log_config = config.logging

    logger = logging.getLogger(logger_name)
    logger.setLevel(log_config.level)

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    handlers: List[logging.Handler] = []
    if log_config.log_file:
        log_path = Path(log_config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path,
            maxBytes=log_config.max_bytes,
            backupCount=log_config.backup_count,
            encoding="utf-8",
        ))
    if log_config.console_output:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(log_config.log_format)
    correlation = CorrelationIdFilter()
    for handler in handlers:
        handler.setLevel(log_config.level)
        handler.setFormatter(formatter)
        handler.addFilter(correlation)
        logger.addHandler(handler)

    logger.debug(f"Logging configured: level={log_config.log_level}, file={log_config.log_file or 'none'}")
    return logger
