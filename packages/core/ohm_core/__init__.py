"""Core daemon services: settings, scheduling, forwarding and lifecycle."""

from .config import AppConfig, load_config, save_config
from .daemon import Daemon, StartupError
from .forwarder import Forwarder, ForwarderError, ForwarderStatus
from .scheduler import Scheduler, SchedulerStats

__all__ = [
    "AppConfig",
    "Daemon",
    "Forwarder",
    "ForwarderError",
    "ForwarderStatus",
    "Scheduler",
    "SchedulerStats",
    "StartupError",
    "load_config",
    "save_config",
]
