"""
Critical sections: defer SIGINT/SIGTERM while disk state is being committed.

Interrupting a download or staging step is always safe (only temp files
exist). Interrupting the rename + record-write step is not, so signals
that arrive inside ``critical_section()`` are held and re-raised once
the block has finished.

Signal handlers can only be installed from the main thread; elsewhere
the block runs unguarded (worker threads don't receive signals anyway).
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

_DEFERRED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def critical_section(label: str) -> Iterator[None]:
    """Run a block that must not be cut short by SIGINT/SIGTERM."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    received: list[int] = []

    def _hold(signum, frame):
        logger.warning("Signal %d received during %s; finishing first", signum, label)
        received.append(signum)

    previous = {sig: signal.signal(sig, _hold) for sig in _DEFERRED_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        for signum in dict.fromkeys(received):
            signal.raise_signal(signum)
