"""structlog configuration for the sync process.

structlog events and plain stdlib records (uvicorn, elastic_transport,
imapclient) go through the same ``ProcessorFormatter``, so every line
on stdout has one format: JSON in production, coloured key/values in a
terminal.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# One line per HTTP request or IMAP command at INFO.
_NOISY_LOGGERS = ("elastic_transport", "httpx", "httpcore", "imapclient")

# Subjects and bodies end up in log context; keep lines bounded.
MAX_VALUE_LENGTH = 300


def _truncate_long_values(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            event_dict[key] = value[:MAX_VALUE_LENGTH] + "..."
    return event_dict


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _truncate_long_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to a single stdout handler.

    *json* selects ``JSONRenderer`` over ``ConsoleRenderer``; *level* is
    a level name in any case.  Safe to call more than once: the root
    handlers are replaced each time.
    """
    pre_chain = _pre_chain()
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())

    floor = max(logging.WARNING, root.level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)
