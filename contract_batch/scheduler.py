"""
SweepScheduler -- in-process polling scheduler for the periodic sweeps.

Contract:
    ``tick()`` runs one SweepRunner pass.  ``start()`` / ``stop()`` run
    ticks on a daemon thread every ``interval_seconds``; stop is honoured
    between passes and the current pass is allowed to finish.
"""

from __future__ import annotations

import threading

from contract_batch.runner import SweepRunner, TenantSweepReport
from contract_kernel.logging_config import get_logger

logger = get_logger("batch.scheduler")


class SweepScheduler:
    def __init__(self, runner: SweepRunner, interval_seconds: int = 3600):
        self._runner = runner
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._ticks = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> list[TenantSweepReport]:
        """Run one pass (public for testing)."""
        try:
            reports = self._runner.run_once()
        except Exception:
            logger.exception("scheduler_tick_failed")
            return []
        self._ticks += 1
        return reports

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="contract-sweep-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current pass to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped", extra={"tick_count": self._ticks})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._ticks

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
