# src/cookie_recovery/logger.py
import logging
import datetime
from pathlib import Path
from typing import Optional

from cookie_recovery.config import is_debug_mode


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("cookie_recovery")


def setup_logging_file(log_dir: str = "logs") -> Path:
    """Adds a timestamped debug log file to the root logger."""
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file_path = Path(log_dir) / f"{timestamp}.log"
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.getLogger().addHandler(file_handler)

    logger.debug(f"Debug logging enabled; writing extraction diagnostics to {log_file_path}.")
    return log_file_path


def setup_logging(debug: Optional[bool] = None) -> logging.Logger:
    """Configure logging for an application embedding the core. Call once at startup."""
    debug_mode = is_debug_mode() if debug is None else debug
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    logging.basicConfig(
        level=logging.DEBUG if debug_mode else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # httpx and the websocket client are noisy at DEBUG.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websocket").setLevel(logging.WARNING)

    if debug_mode:
        setup_logging_file()

    logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)
    return logger
