"""Graphite plaintext protocol: metric naming, line encoding and TCP transport."""

from .encoder import encode_line, encode_reading, format_value
from .models import ConnectionState, Endpoint, MetricLine
from .naming import DEFAULT_PREFIX, metric_name
from .transport import GraphiteTransport, TransportError

__all__ = [
    "ConnectionState",
    "DEFAULT_PREFIX",
    "Endpoint",
    "GraphiteTransport",
    "MetricLine",
    "TransportError",
    "encode_line",
    "encode_reading",
    "format_value",
    "metric_name",
]
