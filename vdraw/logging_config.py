"""Logging configuration."""

from __future__ import annotations

import logging


def configure_logging(level: str = "INFO") -> None:
    """Configure process-wide log output for scripts and workers."""

    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # SQL echo is far too chatty for audit logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
