"""
Logging for the partner metrics engine.

Rank walks and metrics sweeps log per partner, so the engine's own loggers
(everything under "mlm") can be tuned separately from the host application
with MLM_LOG_LEVEL. LOG_LEVEL still sets the root level.

Usage:
    from mlm.logging import get_logger, sanitize_id_for_logging
    logger = get_logger(__name__)

    logger.info("Rank updated for %s", sanitize_id_for_logging(partner_id))

    with log_elapsed(logger, "Metrics sweep"):
        ...
"""

import logging
import os
import sys
import time
from contextlib import contextmanager
from functools import cache

ENGINE_LOGGER = "mlm"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
# Vercel prefixes every line with its own timestamp and request id
LOG_FORMAT_SERVERLESS = "%(levelname)s - %(name)s - %(message)s"


def _level_from_env(var: str, default: int = logging.INFO) -> int:
    level_name = os.environ.get(var, "").strip().upper()
    if not level_name:
        return default
    return getattr(logging, level_name, default)


def _configure_logging() -> None:
    """Attach one stdout handler to the root logger and set engine levels."""
    root_level = _level_from_env("LOG_LEVEL")
    logging.getLogger(ENGINE_LOGGER).setLevel(_level_from_env("MLM_LOG_LEVEL", root_level))

    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(root_level)

    handler = logging.StreamHandler(sys.stdout)
    serverless = os.environ.get("VERCEL") == "1"
    handler.setFormatter(logging.Formatter(LOG_FORMAT_SERVERLESS if serverless else LOG_FORMAT))
    root.addHandler(handler)

    # supabase-py and upstash-redis go through httpx; one line per KV call otherwise
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


_configure_logging()


@cache
def get_logger(name: str) -> logging.Logger:
    """Logger for a module of the engine (pass __name__)."""
    return logging.getLogger(name)


@contextmanager
def log_elapsed(logger: logging.Logger, label: str, level: int = logging.INFO):
    """Log how long the wrapped block took, in milliseconds."""
    started = time.perf_counter()
    try:
        yield
    finally:
        logger.log(level, "%s took %.0fms", label, (time.perf_counter() - started) * 1000)


def _escape_log_injection(value: str) -> str:
    """Escape control characters that could forge log entries (CWE-117)."""
    return (
        value.replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "")
    )


def sanitize_id_for_logging(id_value: str | None, max_length: int = 16) -> str:
    """
    Make a partner id or store key safe to log.

    Ids reach the log straight from team lists and sponsor pointers, which
    nothing validates, so they are escaped and cut to max_length.

    Returns:
        Sanitized value, or "N/A" if empty
    """
    if id_value is None or id_value == "":
        return "N/A"
    safe_value = _escape_log_injection(str(id_value))
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."


__all__ = [
    "ENGINE_LOGGER",
    "get_logger",
    "log_elapsed",
    "sanitize_id_for_logging",
]
