"""Context manager for latency instrumentation."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Generator

from dedup_window.observability.logging import get_logger

logger = get_logger(__name__)


@contextlib.contextmanager
def timed(component: str) -> Generator[None, None, None]:
    """Log how long a window drain (snapshot + release) took.

    The aggregator wraps each drain so slow store enumerations show up as
    `component_latency` entries next to the published count:

        with timed("drain"):
            window = await asyncio.to_thread(self.drain)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "component_latency",
            extra={
                "component": component,
                "elapsed_ms": round(elapsed_ms, 2),
            },
        )
