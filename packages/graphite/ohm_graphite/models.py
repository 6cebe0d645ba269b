"""Typed models for the Graphite wire format and connection state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConnectionState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    BACKOFF_WAIT = "BackoffWait"
    RECOVERING = "Recovering"
    FAILED = "Failed"
    CLOSED = "Closed"


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int = 2003


@dataclass(frozen=True)
class MetricLine:
    name: str
    value: float | None
    timestamp: int
