"""Logging configuration for sftpbridge."""

from __future__ import annotations

import logging
import os
from typing import List, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_LEVEL_ENV_VAR = "SFTPBRIDGE_LOG_LEVEL"


def resolve_level(level: int) -> int:
    """Return ``level`` unless the environment overrides it."""
    override = os.environ.get(LOG_LEVEL_ENV_VAR)
    if not override:
        return level
    if override.isdigit():
        return int(override)
    resolved = logging.getLevelName(override.upper())
    return resolved if isinstance(resolved, int) else level


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """Setup logging configuration for sftpbridge.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional path of a log file written next to stderr output
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # paramiko's transport logging is chatty at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)
