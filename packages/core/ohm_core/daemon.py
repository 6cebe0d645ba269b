"""Sampling daemon: hardware snapshot -> metric lines -> Graphite, once per interval."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, TextIO

from ohm_graphite import DEFAULT_PREFIX, MetricLine, TransportError, encode_line, encode_reading
from ohm_sensors import HardwareTree, refresh

from .forwarder import Forwarder, ForwarderError
from .scheduler import Scheduler


logger = logging.getLogger("ohmgraphite.daemon")


class StartupError(RuntimeError):
    """The hardware tree or the collector connection could not be acquired."""


class Daemon:
    def __init__(
        self,
        tree: HardwareTree,
        forwarder: Forwarder,
        interval_s: float = 5.0,
        prefix: str = DEFAULT_PREFIX,
        clock: Callable[[], float] = time.time,
        echo: TextIO | None = None,
    ) -> None:
        self.tree = tree
        self.forwarder = forwarder
        self.interval_s = interval_s
        self.prefix = prefix
        self._clock = clock
        self._echo = echo
        self._scheduler = Scheduler(self._cycle, interval_s=interval_s)
        self._stop_event = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False
        self._fatal: ForwarderError | None = None
        self._tree_lock = threading.Lock()
        self._cycling = False
        self._tree_closed = False
        self._tree_close_pending = False

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    @property
    def fatal_error(self) -> ForwarderError | None:
        return self._fatal

    def start(self) -> None:
        try:
            self.tree.open()
        except Exception as exc:
            raise StartupError(f"cannot open hardware tree: {exc}") from exc

        try:
            self.forwarder.connect()
        except (TransportError, ForwarderError) as exc:
            self._release()
            raise StartupError(f"cannot connect to graphite: {exc}") from exc

        self._scheduler.start()
        logger.info("daemon started", extra={"event": "daemon_started"})

    def collect(self, timestamp: int | None = None) -> list[MetricLine]:
        # One timestamp for the whole cycle, taken before any sensor is touched.
        ts = int(self._clock()) if timestamp is None else int(timestamp)
        return [encode_reading(reading, ts, self.prefix) for reading in refresh(self.tree)]

    def run_cycle(self) -> list[MetricLine]:
        lines = self.collect()
        encoded = [encode_line(line) for line in lines]
        self.forwarder.send(encoded)
        self._echo_lines(encoded)
        logger.debug("cycle sent %d metrics", len(encoded), extra={"event": "cycle_sent"})
        return lines

    def _cycle(self) -> None:
        with self._tree_lock:
            if self._tree_closed:
                return
            self._cycling = True
        try:
            self.run_cycle()
        except ForwarderError as exc:
            if self._stop_event.is_set():
                logger.info("write aborted by shutdown: %s", exc, extra={"event": "cycle_aborted"})
                return
            self._fatal = exc
            logger.error("stopping after unrecoverable write failure", extra={"event": "daemon_fatal"})
            self._scheduler.stop()
            self.stop()
        finally:
            with self._tree_lock:
                self._cycling = False
                if self._tree_close_pending:
                    self._close_tree()

    def _echo_lines(self, encoded: list[str]) -> None:
        if self._echo is None:
            return
        self._echo.write("".join(encoded))
        self._echo.write(f"{datetime.now().isoformat(timespec='seconds')}\n")
        self._echo.flush()

    def stop(self) -> None:
        """Request cancellation; safe from signal handlers and any thread."""
        self._stop_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._stop_event.wait(timeout)

    def shutdown(self) -> None:
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

        self._stop_event.set()
        self._scheduler.stop()
        self.forwarder.interrupt()
        if not self._scheduler.join(timeout=self.interval_s):
            logger.warning("cycle still running at shutdown", extra={"event": "shutdown_cycle_running"})
        self._release()
        logger.info("daemon stopped", extra={"event": "daemon_stopped"})

    def _release(self) -> None:
        try:
            self.forwarder.close()
        finally:
            self._scheduler.join(timeout=self.interval_s)
            with self._tree_lock:
                if self._cycling:
                    # The running cycle still reads sensors; it closes the tree when it ends.
                    self._tree_close_pending = True
                    logger.warning("hardware tree close deferred to running cycle", extra={"event": "tree_close_deferred"})
                else:
                    self._close_tree()

    def _close_tree(self) -> None:
        if self._tree_closed:
            return
        self._tree_closed = True
        self.tree.close()

    def run(self) -> None:
        """Start, block until :meth:`stop`, then release everything.

        Raises :class:`StartupError` if startup fails and :class:`ForwarderError`
        if the daemon stopped because the collector connection was lost.
        """
        self.start()
        try:
            # Short waits keep the main thread responsive to signals on every platform.
            while not self._stop_event.wait(1.0):
                pass
        finally:
            self.shutdown()
        if self._fatal is not None:
            raise self._fatal
