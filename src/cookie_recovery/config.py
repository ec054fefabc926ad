# src/cookie_recovery/config.py
import configparser
import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "COOKIE_RECOVERY_CONFIG"
DEFAULT_CONFIG_FILE = "config.conf"

DEFAULTS = {
    "Browser": {"name": "chrome", "profile": "Default"},
    "CDP": {
        "port": "9222",
        "probe_timeout": "0.1",
        "request_timeout": "5",
        "max_attempts": "4",
        "retry_base_delay": "0.5",
        "method": "storage",
    },
    "Launch": {
        "headless": "true",
        "startup_timeout": "15",
        "readiness_interval": "0.5",
        "settle_delay": "5",
        "restart_warning_delay": "3",
        "release_timeout": "3",
        "release_interval": "0.2",
        "terminate_grace": "2",
    },
    "Logging": {"debug": "false"},
}

_CONFIG: Optional[configparser.ConfigParser] = None


def save_config(config: configparser.ConfigParser, config_file: str = DEFAULT_CONFIG_FILE) -> None:
    """Persist the current in-memory configuration to disk."""
    try:
        with open(config_file, "w", encoding="utf-8") as config_file_handle:
            config.write(config_file_handle)
    except Exception as exc:
        logger.error(f"Error writing to config file: {exc}")


def load_config(config_file: Optional[str] = None) -> configparser.ConfigParser:
    config_file = config_file or os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)
    config = configparser.ConfigParser()
    try:
        # UTF-8 explicitly, the platform default on Windows is not.
        read = config.read(config_file, encoding="utf-8")
        if not read:
            logger.warning(f"Config file '{config_file}' not found. Creating a default one.")
    except Exception as e:
        logger.error(f"Error reading config file: {e}")

    for section, values in DEFAULTS.items():
        if section not in config:
            config[section] = {}
        for key, value in values.items():
            config[section].setdefault(key, value)

    save_config(config, config_file)

    return config


def get_config() -> configparser.ConfigParser:
    """Return the process-wide configuration, loading it on first use."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def is_debug_mode(config: Optional[configparser.ConfigParser] = None) -> bool:
    """Return whether debug logging mode is enabled in the configuration."""
    if config is None:
        config = get_config()
    return config.getboolean("Logging", "debug", fallback=False)


@dataclass(frozen=True)
class ExtractionSettings:
    """Tunables for one extraction attempt."""

    browser: str = "chrome"
    profile: str = "Default"
    port: int = 9222
    probe_timeout: float = 0.1
    request_timeout: float = 5.0
    max_attempts: int = 4
    retry_base_delay: float = 0.5
    method: str = "storage"
    headless: bool = True
    startup_timeout: float = 15.0
    readiness_interval: float = 0.5
    settle_delay: float = 5.0
    restart_warning_delay: float = 3.0
    release_timeout: float = 3.0
    release_interval: float = 0.2
    terminate_grace: float = 2.0

    @classmethod
    def from_config(cls, config: Optional[configparser.ConfigParser] = None) -> "ExtractionSettings":
        if config is None:
            config = get_config()
        return cls(
            browser=config.get("Browser", "name", fallback=cls.browser).lower(),
            profile=config.get("Browser", "profile", fallback=cls.profile),
            port=config.getint("CDP", "port", fallback=cls.port),
            probe_timeout=config.getfloat("CDP", "probe_timeout", fallback=cls.probe_timeout),
            request_timeout=config.getfloat("CDP", "request_timeout", fallback=cls.request_timeout),
            max_attempts=config.getint("CDP", "max_attempts", fallback=cls.max_attempts),
            retry_base_delay=config.getfloat("CDP", "retry_base_delay", fallback=cls.retry_base_delay),
            method=config.get("CDP", "method", fallback=cls.method).lower(),
            headless=config.getboolean("Launch", "headless", fallback=cls.headless),
            startup_timeout=config.getfloat("Launch", "startup_timeout", fallback=cls.startup_timeout),
            readiness_interval=config.getfloat("Launch", "readiness_interval", fallback=cls.readiness_interval),
            settle_delay=config.getfloat("Launch", "settle_delay", fallback=cls.settle_delay),
            restart_warning_delay=config.getfloat(
                "Launch", "restart_warning_delay", fallback=cls.restart_warning_delay
            ),
            release_timeout=config.getfloat("Launch", "release_timeout", fallback=cls.release_timeout),
            release_interval=config.getfloat("Launch", "release_interval", fallback=cls.release_interval),
            terminate_grace=config.getfloat("Launch", "terminate_grace", fallback=cls.terminate_grace),
        )
