"""Sensor identity to Graphite metric name mapping."""

from __future__ import annotations


DEFAULT_PREFIX = "ohm"


def sensor_path(identifier: str) -> str:
    """``/nvidiagpu/0/load/0`` -> ``nvidiagpu.0.load`` (the trailing sensor index is dropped)."""
    path = identifier.replace("/", ".")[1:]
    cut = path.rfind(".")
    if cut >= 0:
        path = path[:cut]
    return path


def sensor_leaf(display_name: str) -> str:
    """``CPU Core #2`` -> ``cpucore.2``."""
    return display_name.lower().replace(" ", "").replace("#", ".")


def metric_name(identifier: str, display_name: str, prefix: str = DEFAULT_PREFIX) -> str:
    return f"{prefix}.{sensor_path(identifier)}.{sensor_leaf(display_name)}"
