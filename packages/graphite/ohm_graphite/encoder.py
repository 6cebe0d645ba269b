"""Graphite plaintext line encoding."""

from __future__ import annotations

from .models import MetricLine
from .naming import DEFAULT_PREFIX, metric_name


def format_value(value: float | None) -> str:
    if value is None:
        return "0.0"
    return repr(float(value))


def encode_line(line: MetricLine) -> str:
    return f"{line.name} {format_value(line.value)} {int(line.timestamp):d}\n"


def encode_reading(reading, timestamp: int, prefix: str = DEFAULT_PREFIX) -> MetricLine:
    """Build the wire record for one sensor reading at the cycle timestamp."""
    return MetricLine(
        name=metric_name(reading.identifier, reading.display_name, prefix),
        value=reading.value,
        timestamp=int(timestamp),
    )
