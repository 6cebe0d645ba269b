"""Graphite forwarder owning the collector connection, with bounded reconnect handling."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from ohm_graphite import ConnectionState, Endpoint, GraphiteTransport, TransportError


logger = logging.getLogger("ohmgraphite.forwarder")


class ForwarderError(RuntimeError):
    """The collector connection is broken and could not be recovered."""


@dataclass
class ForwarderStatus:
    connected: bool = False
    endpoint: str | None = None
    state: ConnectionState = ConnectionState.DISCONNECTED
    lines_sent: int = 0
    batches_sent: int = 0
    last_error: str | None = None
    backoff_seconds: float = 0.0
    recovery_attempts: int = 0


class Forwarder:
    def __init__(
        self,
        endpoint: Endpoint,
        connect_timeout_s: float = 5.0,
        write_timeout_s: float | None = 10.0,
        reconnect_attempts: int = 3,
        backoff_base_s: float = 0.5,
        backoff_cap_s: float = 8.0,
        transport: GraphiteTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.connect_timeout_s = connect_timeout_s
        self.write_timeout_s = write_timeout_s

        self._transport = transport or GraphiteTransport()
        self._status = ForwarderStatus(endpoint=f"{endpoint.host}:{endpoint.port}")
        self._lock = threading.RLock()
        self._closing = threading.Event()
        self._events: list[dict[str, Any]] = []

        self._max_recover_attempts = max(0, int(reconnect_attempts))
        self._backoff_base = backoff_base_s
        self._backoff_cap = backoff_cap_s

    @property
    def status(self) -> ForwarderStatus:
        return self._status

    def recent_events(self, limit: int = 200) -> list[dict[str, Any]]:
        return self._events[-limit:]

    def _log_event(self, event: str, **fields: Any) -> None:
        row = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "state": self._status.state.value,
        }
        row.update(fields)
        self._events.append(row)
        if len(self._events) > 1000:
            self._events = self._events[-1000:]

    def connect(self) -> None:
        with self._lock:
            if self._closing.is_set():
                raise ForwarderError("forwarder is closed")
            self._status.state = ConnectionState.CONNECTING
            self._log_event("connect_start", endpoint=self._status.endpoint)
            try:
                self._transport.open(
                    host=self.endpoint.host,
                    port=self.endpoint.port,
                    connect_timeout_s=self.connect_timeout_s,
                    write_timeout_s=self.write_timeout_s,
                )
            except TransportError as exc:
                self._status.state = ConnectionState.DISCONNECTED
                self._status.last_error = str(exc)
                self._log_event("connect_error", error=str(exc))
                raise
            self._status.connected = True
            self._status.state = ConnectionState.CONNECTED
            self._status.last_error = None
            self._log_event("connect_ok")
            logger.info(
                "connected to graphite at %s",
                self._status.endpoint,
                extra={"event": "forwarder_connected"},
            )

    def interrupt(self) -> None:
        """Wake a pending backoff wait without taking the send lock; later sends fail fast."""
        self._closing.set()

    def close(self) -> None:
        self._closing.set()
        with self._lock:
            if self._status.state is ConnectionState.CLOSED:
                return
            self._transport.close()
            self._status.connected = False
            self._status.state = ConnectionState.CLOSED
            self._log_event("close")
            logger.info("graphite connection closed", extra={"event": "forwarder_closed"})

    def send(self, lines: Iterable[str]) -> int:
        """Write one cycle's encoded lines in order and flush once.

        Returns the number of lines written. Raises :class:`ForwarderError`
        when the connection fails and cannot be recovered.
        """
        batch = list(lines)
        with self._lock:
            if self._status.state is ConnectionState.FAILED:
                raise ForwarderError(f"connection failed: {self._status.last_error}")
            if self._closing.is_set() or not self._transport.is_open:
                raise ForwarderError("graphite connection is not open")

            try:
                self._send_once(batch)
            except TransportError as exc:
                self._status.last_error = str(exc)
                self._status.state = ConnectionState.RECOVERING
                self._log_event("send_error", error=str(exc))
                logger.warning("graphite write failed: %s", exc, extra={"event": "forwarder_write_failed"})
                self._recover_with_backoff()
                try:
                    self._send_once(batch)
                except TransportError as retry_exc:
                    self._fail(retry_exc)
                    raise ForwarderError(f"write failed after reconnect: {retry_exc}") from retry_exc

            self._status.state = ConnectionState.CONNECTED
            self._status.lines_sent += len(batch)
            self._status.batches_sent += 1
            self._status.backoff_seconds = 0.0
            self._status.recovery_attempts = 0
            self._log_event("send_ok", lines=len(batch))
            return len(batch)

    def _send_once(self, batch: list[str]) -> None:
        for line in batch:
            self._transport.write(line.encode("utf-8"))
        self._transport.flush()

    def _fail(self, exc: BaseException) -> None:
        self._transport.close()
        self._status.connected = False
        self._status.state = ConnectionState.FAILED
        self._status.last_error = str(exc)
        self._log_event("failed", error=str(exc))
        logger.error("graphite connection lost: %s", exc, extra={"event": "forwarder_failed"})

    def _recover_with_backoff(self) -> None:
        last_error: Exception | None = None
        for attempt in range(1, self._max_recover_attempts + 1):
            delay = min(self._backoff_cap, self._backoff_base * (2 ** (attempt - 1)))
            jitter = random.uniform(0.0, 0.15)
            wait_for = delay + jitter

            self._status.state = ConnectionState.BACKOFF_WAIT
            self._status.backoff_seconds = wait_for
            self._status.recovery_attempts = attempt
            self._log_event("recover_wait", attempt=attempt, wait_s=wait_for)
            logger.info(
                "reconnecting in %.2fs (attempt %d/%d)",
                wait_for,
                attempt,
                self._max_recover_attempts,
                extra={"event": "forwarder_recover_wait"},
            )
            if self._closing.wait(wait_for):
                break

            try:
                self._status.state = ConnectionState.RECOVERING
                self._transport.close()
                self._transport.open(
                    host=self.endpoint.host,
                    port=self.endpoint.port,
                    connect_timeout_s=self.connect_timeout_s,
                    write_timeout_s=self.write_timeout_s,
                )
                self._status.connected = True
                self._log_event("recover_ok", attempt=attempt)
                logger.info("reconnected to graphite", extra={"event": "forwarder_recovered"})
                return
            except TransportError as exc:
                last_error = exc
                self._status.last_error = str(exc)
                self._log_event("recover_error", attempt=attempt, error=str(exc))

        error = last_error or TransportError(self._status.last_error or "connection lost")
        self._fail(error)
        raise ForwarderError(f"recover failed after {self._max_recover_attempts} attempts: {error}") from last_error
