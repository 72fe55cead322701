"""Opt-in timing lines for scan ticks and snapshot flushes.

Enable by setting `ENABLE_TIMING_LOGS=1`. The block may add result fields
(card counts, bytes written) to the yielded dict; they are logged with the
duration once the block exits.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator


_TIMING_LOGGER = logging.getLogger("saldo.timing")


def timing_enabled() -> bool:
    return os.getenv("ENABLE_TIMING_LOGS", "0").strip().lower() not in {"", "0", "false", "off", "no"}


@contextmanager
def timed(event: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    start = time.perf_counter()
    try:
        yield fields
    finally:
        if timing_enabled():
            elapsed_ms = round((time.perf_counter() - start) * 1000.0, 2)
            extra = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
            _TIMING_LOGGER.info("timing %s ms=%s %s", event, elapsed_ms, extra)
