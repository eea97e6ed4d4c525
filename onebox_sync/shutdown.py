"""SIGTERM / SIGINT handling for a graceful stop.

The first signal sets the shared stop event: the mailbox session leaves
IDLE after its current wait and the pipeline drains what it already
dispatched.  Further signals only report how much work is left.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable

import structlog

logger = structlog.get_logger()

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_signal_handlers(
    stop_event: asyncio.Event,
    in_flight: Callable[[], int] | None = None,
) -> None:
    """Set *stop_event* on the first stop signal. Must run inside the loop.

    *in_flight* reports the number of records still being processed and
    is only used for logging.
    """
    loop = asyncio.get_running_loop()

    def _on_signal(sig: signal.Signals) -> None:
        pending = in_flight() if in_flight is not None else None
        if stop_event.is_set():
            logger.warning("shutdown_already_in_progress", signal=sig.name, in_flight=pending)
            return
        logger.info("shutdown_requested", signal=sig.name, in_flight=pending)
        stop_event.set()

    for sig in STOP_SIGNALS:
        loop.add_signal_handler(sig, _on_signal, sig)
