"""Typed sensor models and the hardware tree interfaces."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence


class SensorType(str, Enum):
    LOAD = "load"
    TEMPERATURE = "temperature"
    CLOCK = "clock"
    FAN = "fan"
    CONTROL = "control"
    POWER = "power"
    DATA = "data"
    SMALL_DATA = "smalldata"


@dataclass(frozen=True)
class SensorReading:
    identifier: str
    display_name: str
    value: float | None


class Sensor(Protocol):
    @property
    def identifier(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def value(self) -> float | None: ...


class HardwareNode(Protocol):
    @property
    def identifier(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def sensors(self) -> Sequence[Sensor]: ...

    @property
    def sub_hardware(self) -> Sequence["HardwareNode"]: ...

    def update(self) -> None: ...


class HardwareTree(Protocol):
    @property
    def hardware(self) -> Sequence[HardwareNode]: ...

    def open(self) -> None: ...

    def close(self) -> None: ...
