"""TCP transport for the Graphite plaintext protocol."""

from __future__ import annotations

import socket
from typing import Any, BinaryIO


class TransportError(RuntimeError):
    """Raised when the collector connection cannot be opened or written."""


class GraphiteTransport:
    """Thin wrapper over a buffered TCP stream to a Graphite collector."""

    def __init__(self) -> None:
        self._socket: socket.socket | None = None
        self._stream: BinaryIO | Any | None = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(
        self,
        host: str,
        port: int = 2003,
        connect_timeout_s: float = 5.0,
        write_timeout_s: float | None = 10.0,
    ) -> None:
        if self.is_open:
            return
        try:
            sock = socket.create_connection((host, port), timeout=max(connect_timeout_s, 0.001))
        except OSError as exc:
            raise TransportError(f"cannot connect to {host}:{port}: {exc}") from exc
        sock.settimeout(write_timeout_s)
        self._socket = sock
        self._stream = sock.makefile("wb")

    def close(self) -> None:
        stream, sock = self._stream, self._socket
        self._stream = None
        self._socket = None
        if stream is not None:
            try:
                stream.close()
            except OSError:
                # Unflushed bytes on a dead socket; the socket is closed below regardless.
                pass
        if sock is not None:
            sock.close()

    def write(self, payload: bytes) -> int:
        if self._stream is None:
            raise TransportError("Graphite connection is not open")
        try:
            return int(self._stream.write(payload))
        except OSError as exc:
            raise TransportError(f"write failed: {exc}") from exc

    def flush(self) -> None:
        if self._stream is None:
            raise TransportError("Graphite connection is not open")
        try:
            self._stream.flush()
        except OSError as exc:
            raise TransportError(f"flush failed: {exc}") from exc
