"""Local hardware tree backed by psutil with an optional NVML GPU adapter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import psutil

from .models import SensorType


logger = logging.getLogger("ohmgraphite.sensors")

_CPU_CHIPS = ("coretemp", "k10temp", "cpu_thermal", "cpu-thermal", "zenpower")

_GB = float(1024**3)
_MB = float(1024**2)


@dataclass
class HardwareConfig:
    cpu: bool = True
    gpu: bool = True
    mainboard: bool = True
    ram: bool = True
    fan_controller: bool = True
    hdd: bool = True


@dataclass
class LiveSensor:
    identifier: str
    name: str
    sensor_type: SensorType
    value: float | None = None


class Hardware:
    """A node in the hardware tree; subclasses register sensor readers with ``_add``."""

    def __init__(self, identifier: str, name: str) -> None:
        self.identifier = identifier
        self.name = name
        self.sensors: list[LiveSensor] = []
        self.sub_hardware: list[Hardware] = []
        self._readers: list[Callable[[], float | None]] = []
        self._counters: dict[SensorType, int] = {}

    def _add(self, sensor_type: SensorType, name: str, reader: Callable[[], float | None]) -> LiveSensor:
        index = self._counters.get(sensor_type, 0)
        self._counters[sensor_type] = index + 1
        sensor = LiveSensor(
            identifier=f"{self.identifier}/{sensor_type.value}/{index}",
            name=name,
            sensor_type=sensor_type,
        )
        self.sensors.append(sensor)
        self._readers.append(reader)
        return sensor

    def update(self) -> None:
        for sensor, reader in zip(self.sensors, self._readers):
            try:
                value = reader()
            except Exception:
                value = None
            sensor.value = float(value) if value is not None else None


def _temperatures() -> dict[str, list[Any]]:
    read = getattr(psutil, "sensors_temperatures", None)
    if read is None:
        return {}
    try:
        return read() or {}
    except Exception:
        return {}


def _fans() -> dict[str, list[Any]]:
    read = getattr(psutil, "sensors_fans", None)
    if read is None:
        return {}
    try:
        return read() or {}
    except Exception:
        return {}


def _chip_reader(scan: Callable[[], dict[str, list[Any]]], chip: str, index: int) -> Callable[[], float | None]:
    def read() -> float | None:
        entries = scan().get(chip) or []
        if index >= len(entries):
            return None
        return entries[index].current

    return read


def _cpu_core_name(label: str, index: int) -> str:
    if label.lower().startswith("package"):
        return "CPU Package"
    if label.lower().startswith("core"):
        digits = "".join(ch for ch in label if ch.isdigit())
        if digits:
            return f"CPU Core #{int(digits) + 1}"
    return label or f"CPU Core #{index + 1}"


class CpuHardware(Hardware):
    def __init__(self) -> None:
        super().__init__("/cpu/0", "CPU")
        self._loads: list[float] = []
        self._temp_scan: dict[str, list[Any]] = {}
        # Prime non-blocking CPU measurement.
        psutil.cpu_percent(interval=None, percpu=True)

        self._add(SensorType.LOAD, "CPU Total", self._total_load)
        for core in range(psutil.cpu_count(logical=True) or 0):
            self._add(SensorType.LOAD, f"CPU Core #{core + 1}", self._core_load(core))

        temps = _temperatures()
        chip = next((name for name in _CPU_CHIPS if temps.get(name)), None)
        if chip is not None:
            for idx, entry in enumerate(temps[chip]):
                self._add(SensorType.TEMPERATURE, _cpu_core_name(entry.label, idx), _chip_reader(lambda: self._temp_scan, chip, idx))
        self.thermal_chip = chip

        self._add(SensorType.CLOCK, "CPU Core", self._clock)

    def update(self) -> None:
        self._loads = [float(v) for v in psutil.cpu_percent(interval=None, percpu=True)]
        if self.thermal_chip is not None:
            self._temp_scan = _temperatures()
        super().update()

    def _total_load(self) -> float | None:
        if not self._loads:
            return None
        return sum(self._loads) / len(self._loads)

    def _core_load(self, core: int) -> Callable[[], float | None]:
        def read() -> float | None:
            return self._loads[core] if core < len(self._loads) else None

        return read

    @staticmethod
    def _clock() -> float | None:
        freq = psutil.cpu_freq()
        return float(freq.current) if freq else None


class RamHardware(Hardware):
    def __init__(self) -> None:
        super().__init__("/ram", "Generic Memory")
        self._add(SensorType.LOAD, "Memory", lambda: float(psutil.virtual_memory().percent))
        self._add(SensorType.DATA, "Used Memory", lambda: psutil.virtual_memory().used / _GB)
        self._add(SensorType.DATA, "Available Memory", lambda: psutil.virtual_memory().available / _GB)


class NvidiaGpuHardware(Hardware):
    def __init__(self, nvml: Any, index: int) -> None:
        handle = nvml.nvmlDeviceGetHandleByIndex(index)
        name = nvml.nvmlDeviceGetName(handle)
        if isinstance(name, bytes):
            name = name.decode("utf-8", "replace")
        super().__init__(f"/nvidiagpu/{index}", str(name))
        self._nvml = nvml
        self._handle = handle

        self._add(SensorType.TEMPERATURE, "GPU Core", self._temperature)
        self._add(SensorType.LOAD, "GPU Core", lambda: float(self._utilization().gpu))
        self._add(SensorType.LOAD, "GPU Memory Controller", lambda: float(self._utilization().memory))
        self._add(SensorType.CONTROL, "GPU Fan", lambda: float(nvml.nvmlDeviceGetFanSpeed(handle)))
        self._add(SensorType.POWER, "GPU Power", lambda: nvml.nvmlDeviceGetPowerUsage(handle) / 1000.0)
        self._add(SensorType.SMALL_DATA, "GPU Memory Used", lambda: nvml.nvmlDeviceGetMemoryInfo(handle).used / _MB)
        self._add(SensorType.SMALL_DATA, "GPU Memory Total", lambda: nvml.nvmlDeviceGetMemoryInfo(handle).total / _MB)

    def _temperature(self) -> float:
        return float(self._nvml.nvmlDeviceGetTemperature(self._handle, self._nvml.NVML_TEMPERATURE_GPU))

    def _utilization(self) -> Any:
        return self._nvml.nvmlDeviceGetUtilizationRates(self._handle)


class ChipHardware(Hardware):
    """Super I/O style chip reported by the kernel (hwmon on Linux)."""

    def __init__(self, chip: str, temperatures: bool, fans: bool) -> None:
        super().__init__(f"/lpc/{chip}", chip)
        self._read_temps = temperatures
        self._read_fans = fans
        self._temp_scan: dict[str, list[Any]] = {}
        self._fan_scan: dict[str, list[Any]] = {}
        if temperatures:
            for idx, entry in enumerate(_temperatures().get(chip) or []):
                label = entry.label or f"Temperature #{idx + 1}"
                self._add(SensorType.TEMPERATURE, label, _chip_reader(lambda: self._temp_scan, chip, idx))
        if fans:
            for idx, entry in enumerate(_fans().get(chip) or []):
                label = entry.label or f"Fan #{idx + 1}"
                self._add(SensorType.FAN, label, _chip_reader(lambda: self._fan_scan, chip, idx))

    def update(self) -> None:
        # One hwmon scan per kind, shared by every sensor on the chip.
        self._temp_scan = _temperatures() if self._read_temps else {}
        self._fan_scan = _fans() if self._read_fans else {}
        super().update()


class MainboardHardware(Hardware):
    def __init__(self, exclude_chip: str | None, temperatures: bool, fans: bool) -> None:
        super().__init__("/mainboard", "Mainboard")
        temp_chips = [chip for chip in _temperatures() if chip != exclude_chip] if temperatures else []
        fan_chips = list(_fans()) if fans else []
        for chip in sorted(set(temp_chips) | set(fan_chips)):
            self.sub_hardware.append(ChipHardware(chip, temperatures=chip in temp_chips, fans=chip in fan_chips))


class HddHardware(Hardware):
    def __init__(self, index: int, mountpoint: str) -> None:
        super().__init__(f"/hdd/{index}", mountpoint)
        self.mountpoint = mountpoint
        self._add(SensorType.LOAD, "Used Space", lambda: float(psutil.disk_usage(mountpoint).percent))


def _open_nvml() -> Any | None:
    try:
        import pynvml  # type: ignore

        pynvml.nvmlInit()
        return pynvml
    except Exception as exc:
        logger.info("nvml unavailable, gpu sensors disabled: %s", exc, extra={"event": "nvml_unavailable"})
        return None


@dataclass
class Computer:
    """Hardware tree for the local machine, discovered on :meth:`open`."""

    config: HardwareConfig = field(default_factory=HardwareConfig)
    hardware: list[Hardware] = field(default_factory=list, init=False)
    _nvml: Any | None = field(default=None, init=False, repr=False)
    _opened: bool = field(default=False, init=False, repr=False)

    def open(self) -> None:
        if self._opened:
            return
        try:
            nodes = self._discover()
        except Exception:
            self._shutdown_nvml()
            raise
        self.hardware = nodes
        self._opened = True
        logger.info("hardware tree opened", extra={"event": "hardware_opened", "nodes": len(nodes)})

    def close(self) -> None:
        if not self._opened:
            return
        self._opened = False
        self.hardware = []
        self._shutdown_nvml()
        logger.info("hardware tree closed", extra={"event": "hardware_closed"})

    def _discover(self) -> list[Hardware]:
        cfg = self.config
        nodes: list[Hardware] = []
        thermal_chip = None

        if cfg.cpu:
            cpu = CpuHardware()
            thermal_chip = cpu.thermal_chip
            nodes.append(cpu)
        if cfg.ram:
            nodes.append(RamHardware())
        if cfg.gpu:
            nodes.extend(self._open_gpus())
        if cfg.mainboard or cfg.fan_controller:
            nodes.append(MainboardHardware(exclude_chip=thermal_chip, temperatures=cfg.mainboard, fans=cfg.fan_controller))
        if cfg.hdd:
            partitions = psutil.disk_partitions(all=False)
            for index, part in enumerate(partitions):
                nodes.append(HddHardware(index, part.mountpoint))
        return nodes

    def _open_gpus(self) -> list[Hardware]:
        self._nvml = _open_nvml()
        if self._nvml is None:
            return []
        try:
            return [NvidiaGpuHardware(self._nvml, index) for index in range(self._nvml.nvmlDeviceGetCount())]
        except Exception as exc:
            # A device that cannot be enumerated drops every GPU, not the whole tree.
            logger.info("nvml device enumeration failed, gpu sensors disabled: %s", exc, extra={"event": "nvml_unavailable"})
            self._shutdown_nvml()
            return []

    def _shutdown_nvml(self) -> None:
        nvml, self._nvml = self._nvml, None
        if nvml is None:
            return
        try:
            nvml.nvmlShutdown()
        except Exception as exc:
            logger.warning("nvml shutdown failed: %s", exc, extra={"event": "nvml_shutdown_failed"})
