"""Point-in-time sensor snapshots over a hardware tree."""

from __future__ import annotations

from typing import Iterator

from .models import HardwareNode, HardwareTree, Sensor, SensorReading


def _walk(nodes, update: bool) -> Iterator[Sensor]:
    for node in nodes:
        if update:
            node.update()
        yield from node.sensors
        yield from _walk(getattr(node, "sub_hardware", ()), update)


def _reading(sensor: Sensor) -> SensorReading:
    value = sensor.value
    return SensorReading(
        identifier=str(sensor.identifier),
        display_name=str(sensor.name),
        value=(float(value) if value is not None else None),
    )


def refresh(tree: HardwareTree) -> list[SensorReading]:
    """Update every node depth first and read all of its sensors.

    Nothing is filtered: sensors without a value are returned with ``value=None``.
    Errors raised by a node or sensor propagate to the caller.
    """
    return [_reading(sensor) for sensor in _walk(tree.hardware, update=True)]


def iter_sensors(tree: HardwareTree) -> Iterator[tuple[HardwareNode, Sensor]]:
    """Walk the tree in snapshot order without updating any node."""

    def _nodes(nodes) -> Iterator[tuple[HardwareNode, Sensor]]:
        for node in nodes:
            for sensor in node.sensors:
                yield node, sensor
            yield from _nodes(getattr(node, "sub_hardware", ()))

    yield from _nodes(tree.hardware)
