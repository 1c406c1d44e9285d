"""Centralized Loguru configuration for codebase-qa.

The stderr sink is set up at import from the same ``CQA_LOG_LEVEL`` and
``CQA_LOG_SERIALIZE`` variables that ``Settings`` reads, so lines emitted while
the config file is still loading already honour them. The CLI reconfigures
the sink once settings are resolved.
"""

import os
import sys
from collections.abc import Mapping
from typing import TextIO

# Suppress Hugging Face progress bars and telemetry globally
os.environ["HF_HUB_DISABLE_PROGRESS_BARS"] = "1"
os.environ["HF_HUB_DISABLE_TELEMETRY"] = "1"
os.environ["TOKENIZERS_PARALLELISM"] = "false"

from loguru import logger

_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

_TRUTHY = {"1", "true", "yes", "on"}

# Id of the sink owned by this module; other sinks are left alone
_sink_id: int | None = None


def configure_logger(
    level: str = "INFO", serialize: bool = False, sink: TextIO | None = None
) -> None:
    """Replace the codebase-qa sink (called from CLI or config).

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
        serialize: If True, output JSON lines instead of human-readable text.
        sink: Stream to write to, stderr by default.
    """
    global _sink_id
    if _sink_id is not None:
        logger.remove(_sink_id)
    _sink_id = logger.add(
        sink or sys.stderr,
        level=level.upper(),
        format="{message}" if serialize else _FORMAT,
        serialize=serialize,
        colorize=not serialize and sink is None,
    )


def configure_from_env(environ: Mapping[str, str] = os.environ, sink: TextIO | None = None) -> None:
    level = environ.get("CQA_LOG_LEVEL") or "INFO"
    serialize = environ.get("CQA_LOG_SERIALIZE", "").strip().lower() in _TRUTHY
    configure_logger(level, serialize, sink)


def preview(text: str, limit: int = 80) -> str:
    """Single-line, truncated rendition of user text for log messages."""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else f"{flat[:limit]}..."


# Drop loguru's default handler before installing ours
logger.remove()
configure_from_env()
