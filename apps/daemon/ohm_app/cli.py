"""CLI entrypoints for the OhmGraphite daemon and its inspection tools."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Callable

from ohm_core import AppConfig, Daemon, Forwarder, ForwarderError, StartupError, load_config, save_config
from ohm_core.config import config_path, normalize
from ohm_core.logging_setup import configure_logging, get_logger, install_crash_hooks
from ohm_graphite import Endpoint, TransportError, encode_line, metric_name
from ohm_sensors import Computer, HardwareTree, iter_sensors, refresh

# Commands whose failures the user should see on the terminal.
_CONSOLE_COMMANDS = ("run", "once")


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def resolve_config(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(Path(args.config) if args.config else None)
    if args.host:
        cfg.graphite.host = args.host
    if args.port is not None:
        cfg.graphite.port = args.port
    if args.interval is not None:
        cfg.collection.interval_s = args.interval
    return normalize(cfg)


def build_tree(cfg: AppConfig) -> HardwareTree:
    return Computer(cfg.hardware)


def build_forwarder(cfg: AppConfig) -> Forwarder:
    g = cfg.graphite
    return Forwarder(
        Endpoint(host=g.host, port=g.port),
        connect_timeout_s=g.connect_timeout_s,
        write_timeout_s=g.write_timeout_s,
        reconnect_attempts=g.reconnect_attempts,
        backoff_base_s=g.backoff_base_s,
        backoff_cap_s=g.backoff_cap_s,
    )


def build_daemon(cfg: AppConfig) -> Daemon:
    return Daemon(
        tree=build_tree(cfg),
        forwarder=build_forwarder(cfg),
        interval_s=cfg.collection.interval_s,
        prefix=cfg.collection.prefix,
        echo=(sys.stdout if cfg.collection.echo_metrics else None),
    )


def _install_signal_handlers(stop: Callable[[], None]) -> None:
    def _handler(_signum, _frame) -> None:
        stop()

    for name in ("SIGINT", "SIGTERM", "SIGBREAK"):
        sig = getattr(signal, name, None)
        if sig is not None:
            signal.signal(sig, _handler)


def cmd_run(_args: argparse.Namespace, cfg: AppConfig) -> int:
    logger = get_logger()
    daemon = build_daemon(cfg)
    install_crash_hooks(on_thread_crash=daemon.stop)
    _install_signal_handlers(daemon.stop)
    logger.info(
        "forwarding to %s:%d every %.1fs",
        cfg.graphite.host,
        cfg.graphite.port,
        cfg.collection.interval_s,
        extra={"event": "run"},
    )
    try:
        daemon.run()
    except StartupError as exc:
        logger.error("startup failed: %s", exc, extra={"event": "startup_failed"})
        return 1
    except ForwarderError as exc:
        logger.error("graphite connection lost: %s", exc, extra={"event": "connection_lost"})
        return 1
    return 0


def cmd_once(args: argparse.Namespace, cfg: AppConfig) -> int:
    daemon = build_daemon(cfg)
    daemon.tree.open()
    try:
        if args.dry_run:
            for line in daemon.collect():
                sys.stdout.write(encode_line(line))
            return 0
        try:
            daemon.forwarder.connect()
            daemon.run_cycle()
        except (TransportError, ForwarderError) as exc:
            get_logger().error("send failed: %s", exc, extra={"event": "once_failed"})
            return 1
        finally:
            daemon.forwarder.close()
    finally:
        daemon.tree.close()
    return 0


def cmd_list_sensors(_args: argparse.Namespace, cfg: AppConfig) -> int:
    tree = build_tree(cfg)
    tree.open()
    try:
        refresh(tree)
        _print_json(
            [
                {
                    "hardware": node.identifier,
                    "identifier": sensor.identifier,
                    "name": sensor.name,
                    "value": sensor.value,
                    "metric": metric_name(sensor.identifier, sensor.name, cfg.collection.prefix),
                }
                for node, sensor in iter_sensors(tree)
            ]
        )
    finally:
        tree.close()
    return 0


def cmd_config(args: argparse.Namespace, cfg: AppConfig) -> int:
    payload = asdict(cfg)
    if args.write:
        path = save_config(cfg, Path(args.config) if args.config else None)
        payload = {"config": payload, "written_to": str(path)}
    _print_json(payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help=f"Config file (default {config_path()})")
    common.add_argument("--host", default=None, help="Graphite host override")
    common.add_argument("--port", type=int, default=None, help="Graphite plaintext port override")
    common.add_argument("--interval", type=float, default=None, help="Seconds between samples")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(prog="ohmgraphite", description="Forward hardware sensors to Graphite")
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run", parents=[common], help="Run the sampling daemon until stopped")
    run_cmd.set_defaults(func=cmd_run)

    once_cmd = sub.add_parser("once", parents=[common], help="Sample and send a single cycle")
    once_cmd.add_argument("--dry-run", action="store_true", help="Print the lines instead of sending them")
    once_cmd.set_defaults(func=cmd_once)

    list_cmd = sub.add_parser("list-sensors", parents=[common], help="List sensors and their metric names")
    list_cmd.set_defaults(func=cmd_list_sensors)

    config_cmd = sub.add_parser("config", parents=[common], help="Print the effective configuration")
    config_cmd.add_argument("--write", action="store_true", help="Save the effective configuration")
    config_cmd.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    cfg = resolve_config(args)
    configure_logging(
        keep_files=cfg.diagnostics.keep_log_files,
        console=(cfg.diagnostics.console_log and args.command in _CONSOLE_COMMANDS),
        level=(logging.DEBUG if args.verbose else logging.INFO),
    )
    return int(args.func(args, cfg))


if __name__ == "__main__":
    raise SystemExit(main())
