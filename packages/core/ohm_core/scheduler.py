"""Fixed-interval cycle scheduler with cooperative cancellation."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable


logger = logging.getLogger("ohmgraphite.scheduler")


@dataclass
class SchedulerStats:
    cycles: int = 0
    failures: int = 0
    skipped: int = 0


class Scheduler:
    """Runs ``callback`` once per ``interval_s`` on a single background thread.

    Cycles run inline on that thread, so they never overlap. Ticks that elapse
    while a slow cycle is still running are skipped rather than queued.
    An exception from one cycle is logged and does not affect later cycles.
    """

    def __init__(
        self,
        callback: Callable[[], object],
        interval_s: float = 5.0,
        name: str = "ohmgraphite-scheduler",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.interval_s = float(interval_s)
        self.name = name
        self._callback = callback
        self._clock = clock
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._in_cycle = False
        self._stats = SchedulerStats()

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    @property
    def in_cycle(self) -> bool:
        return self._in_cycle

    def start(self) -> None:
        with self._lock:
            if self._stop.is_set():
                raise RuntimeError("scheduler was stopped and cannot be restarted")
            if self._thread is not None:
                raise RuntimeError("scheduler already started")
            self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
            self._thread.start()
        logger.info(
            "scheduler started, interval %.1fs",
            self.interval_s,
            extra={"event": "scheduler_started"},
        )

    def stop(self) -> None:
        with self._lock:
            if self._stop.is_set():
                return
            self._stop.set()
        logger.info("scheduler stopped", extra={"event": "scheduler_stopped"})

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the scheduler thread to exit; returns False on timeout."""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _begin_cycle(self) -> bool:
        with self._lock:
            if self._stop.is_set():
                return False
            self._in_cycle = True
            return True

    def _loop(self) -> None:
        next_fire = self._clock() + self.interval_s
        while not self._stop.wait(max(0.0, next_fire - self._clock())):
            if not self._begin_cycle():
                break
            self._stats.cycles += 1
            try:
                self._callback()
            except Exception:
                self._stats.failures += 1
                logger.exception("collection cycle failed", extra={"event": "cycle_failed"})
            finally:
                self._in_cycle = False

            next_fire += self.interval_s
            now = self._clock()
            if next_fire <= now:
                missed = int((now - next_fire) // self.interval_s) + 1
                self._stats.skipped += missed
                next_fire += missed * self.interval_s
                logger.warning(
                    "cycle overran the interval, skipped %d tick(s)",
                    missed,
                    extra={"event": "cycle_overrun"},
                )
