"""Persistent daemon settings schema and load/save helpers."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from ohm_sensors import HardwareConfig


CONFIG_VERSION = 1
DEFAULT_PORT = 2003


@dataclass
class GraphiteConfig:
    host: str = "localhost"
    port: int = DEFAULT_PORT
    connect_timeout_s: float = 5.0
    write_timeout_s: float = 10.0
    reconnect_attempts: int = 3
    backoff_base_s: float = 0.5
    backoff_cap_s: float = 8.0


@dataclass
class CollectionConfig:
    interval_s: float = 5.0
    prefix: str = "ohm"
    echo_metrics: bool = True


@dataclass
class DiagnosticsConfig:
    keep_log_files: int = 7
    console_log: bool = True


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    graphite: GraphiteConfig = field(default_factory=GraphiteConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    hardware: HardwareConfig = field(default_factory=HardwareConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)


def config_root() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "OhmGraphite"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "OhmGraphite"
    return Path.home() / ".config" / "ohmgraphite"


def config_path() -> Path:
    return config_root() / "config.json"


def _merge(dataclass_type, raw: dict[str, Any]):
    defaults = dataclass_type()  # type: ignore[misc]
    if not isinstance(raw, dict):
        return defaults
    for k, v in raw.items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_text(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value).strip()


def _normalize_graphite(cfg: AppConfig) -> None:
    g = cfg.graphite
    d = GraphiteConfig()
    g.host = _as_text(g.host, d.host) or d.host
    port = _as_int(g.port, DEFAULT_PORT)
    g.port = port if 0 < port < 65536 else DEFAULT_PORT
    g.connect_timeout_s = max(0.1, _as_float(g.connect_timeout_s, d.connect_timeout_s))
    g.write_timeout_s = max(0.1, _as_float(g.write_timeout_s, d.write_timeout_s))
    g.reconnect_attempts = max(0, _as_int(g.reconnect_attempts, d.reconnect_attempts))
    g.backoff_base_s = max(0.0, _as_float(g.backoff_base_s, d.backoff_base_s))
    g.backoff_cap_s = max(g.backoff_base_s, _as_float(g.backoff_cap_s, d.backoff_cap_s))


def _normalize_collection(cfg: AppConfig) -> None:
    c = cfg.collection
    c.interval_s = max(1.0, min(3600.0, _as_float(c.interval_s, CollectionConfig.interval_s)))
    c.prefix = _as_text(c.prefix, CollectionConfig.prefix).strip(".") or CollectionConfig.prefix
    c.echo_metrics = bool(c.echo_metrics)


def _normalize_diagnostics(cfg: AppConfig) -> None:
    cfg.diagnostics.keep_log_files = max(2, _as_int(cfg.diagnostics.keep_log_files, DiagnosticsConfig.keep_log_files))


def normalize(cfg: AppConfig) -> AppConfig:
    _normalize_graphite(cfg)
    _normalize_collection(cfg)
    _normalize_diagnostics(cfg)
    return cfg


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return AppConfig()
    if not isinstance(data, dict):
        return AppConfig()

    cfg = AppConfig(
        config_version=_as_int(data.get("config_version"), CONFIG_VERSION),
        graphite=_merge(GraphiteConfig, data.get("graphite", {})),
        collection=_merge(CollectionConfig, data.get("collection", {})),
        hardware=_merge(HardwareConfig, data.get("hardware", {})),
        diagnostics=_merge(DiagnosticsConfig, data.get("diagnostics", {})),
    )
    return normalize(cfg)


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
