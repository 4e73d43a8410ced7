"""
jsonapi_graph/reports/activity.py — Progress/activity reporting around long phases.

The sync engine wraps each phase in ``reporter.activity(name)``. The default
ActivityReporter logs start and end with the elapsed wall time; any object with
the same ``activity`` and ``log`` methods can be passed instead.
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class ActivityReporter:
    """Logging-backed progress sink."""

    def __init__(self, name: str = "jsonapi_graph.activity") -> None:
        self._logger = logging.getLogger(name)
        self.completed: list[tuple[str, float]] = []

    @contextmanager
    def activity(self, name: str) -> Iterator[None]:
        self._logger.info("%s — started", name)
        t0 = time.monotonic()
        try:
            yield
        except Exception:
            self._logger.info("%s — failed after %.2fs", name, time.monotonic() - t0)
            raise
        elapsed = time.monotonic() - t0
        self.completed.append((name, elapsed))
        self._logger.info("%s — finished in %.2fs", name, elapsed)

    def log(self, message: str) -> None:
        self._logger.info("%s", message)
