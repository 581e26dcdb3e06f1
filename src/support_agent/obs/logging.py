"""Process-wide logging configuration."""

from __future__ import annotations

import logging
import sys

_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "urllib3")


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout handler with ISO timestamps on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
