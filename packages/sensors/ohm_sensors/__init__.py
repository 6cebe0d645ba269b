"""Hardware sensor tree and point-in-time snapshots."""

from .models import HardwareNode, HardwareTree, Sensor, SensorReading, SensorType
from .provider import Computer, Hardware, HardwareConfig, LiveSensor
from .snapshot import iter_sensors, refresh

__all__ = [
    "Computer",
    "Hardware",
    "HardwareConfig",
    "HardwareNode",
    "HardwareTree",
    "LiveSensor",
    "Sensor",
    "SensorReading",
    "SensorType",
    "iter_sensors",
    "refresh",
]
