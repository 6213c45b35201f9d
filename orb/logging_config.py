"""
Logging for the Orb engine (structlog over stdlib)

Library modules only ever call ``logging.getLogger(__name__)``. Entry points
(the CLI, a host service) call setup_logging() once; every record is then
rendered by structlog, as JSON lines or as coloured console output.

Decision context:
    Inside ``with decision_context(user_id=..., action_id=...)`` every log
    line carries those identifiers, so a denial can be traced back to the
    request that caused it. Contexts nest; leaving one restores the outer
    values.

Environment:
    ORB_LOG_LEVEL   DEBUG | INFO | WARNING | ERROR (default INFO)
    ORB_LOG_FORMAT  "json" for JSON lines, anything else for console

Usage:
    from orb.logging_config import decision_context, setup_logging

    setup_logging(level="DEBUG")
    with decision_context(user_id="u1", action_id="a1"):
        engine.evaluate_action(ctx)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

LEVEL_ENV = "ORB_LOG_LEVEL"
FORMAT_ENV = "ORB_LOG_FORMAT"

# Applied to structlog events and to records from plain stdlib loggers alike
_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=False),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get(LEVEL_ENV) or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _wants_json(json_output: bool | None) -> bool:
    if json_output is not None:
        return json_output
    return os.environ.get(FORMAT_ENV, "").lower() == "json"


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Route all logging through structlog.

    Args:
        level: Level name; falls back to ORB_LOG_LEVEL, then INFO
        json_output: Force JSON (True) or console (False) rendering;
            None reads ORB_LOG_FORMAT
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if _wants_json(json_output) else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stderr keeps stdout free for command output
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_PRE_CHAIN,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level(level))


@contextmanager
def decision_context(**values: object) -> Iterator[None]:
    """Bind identifiers (None values skipped) to every log line emitted inside the block."""
    bound = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


__all__ = ["LEVEL_ENV", "FORMAT_ENV", "decision_context", "setup_logging"]
