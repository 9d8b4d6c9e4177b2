"""CLI entry point for the station acquisition service."""
from __future__ import annotations

import argparse
import dataclasses
import json
import signal
import sys
from pathlib import Path

from saimosen import AppConfig, load_config
from saimosen.config import configure_logging
from saimosen.protocols import describe_plan, load_registry
from saimosen.service import Integration, ServiceSupervisor


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    acquisition = config.acquisition
    logging_config = config.logging
    watchdog = config.watchdog

    if args.max_runtime_s is not None and args.max_runtime_s >= 0:
        acquisition = dataclasses.replace(acquisition, max_runtime_s=args.max_runtime_s)
    if args.snapshot_interval_s is not None and args.snapshot_interval_s >= 0:
        acquisition = dataclasses.replace(acquisition, snapshot_interval_s=args.snapshot_interval_s)
    if args.log_level:
        logging_config = dataclasses.replace(logging_config, level=args.log_level)
    if args.watchdog_timeout is not None and args.watchdog_timeout > 0:
        watchdog = dataclasses.replace(watchdog, enabled=True, timeout_s=args.watchdog_timeout)

    return dataclasses.replace(config, acquisition=acquisition, logging=logging_config, watchdog=watchdog)


def _print_snapshot(snapshot) -> None:
    for device_id, attributes in snapshot.items():
        print(f'[{device_id}]')
        for attribute_id, attribute in attributes.items():
            unit = f" {attribute['unit']}" if attribute.get('unit') else ''
            print(f"  {attribute['display_name'] or attribute_id}: {attribute['value']}{unit} ({attribute['status']})")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description='Poll the configured station instruments over Modbus.',
        epilog='Attribute snapshots are printed periodically until the service is interrupted.',
    )
    parser.add_argument('--config', type=str, required=True, help='Path to the application config (TOML/JSON/YAML).')
    parser.add_argument('--profiles', type=str, help='Path to a device profile file overriding the built-in maps.')
    parser.add_argument(
        '--max-runtime-s', type=float, help='Override maximum runtime (seconds, 0 = unlimited).'
    )
    parser.add_argument('--snapshot-interval-s', type=float, help='Seconds between printed snapshots (0 disables).')
    parser.add_argument('--log-level', type=str, help='Override the log level (DEBUG, INFO, ...).')
    parser.add_argument(
        '--watchdog-timeout',
        type=float,
        help='Enable the cycle watchdog with the given timeout (seconds).',
    )
    parser.add_argument('--json', action='store_true', help='Print snapshots as JSON.')
    args = parser.parse_args(argv)

    config_path = Path(args.config)
    if not config_path.exists():
        print(f'Config file not found: {config_path}', file=sys.stderr)
        return 1

    try:
        config = _apply_overrides(load_config(config_path), args)
    except ValueError as exc:
        print(f'Invalid configuration: {exc}', file=sys.stderr)
        return 1
    configure_logging(config.logging)

    profiles_path = Path(args.profiles) if args.profiles else config.profiles_path
    if profiles_path is not None and not profiles_path.exists():
        print(f'Profiles file not found: {profiles_path}', file=sys.stderr)
        return 1
    registry = load_registry(profiles_path)

    if not config.devices:
        print('No devices configured.', file=sys.stderr)
        return 1

    integration = Integration(config, registry=registry)
    supervisor = ServiceSupervisor(integration)
    supervisor.attach_watchdog(config.watchdog)

    print('Configured devices:')
    for device in integration:
        print(f'  {device.id}: {device.name} [{device.config.device_class}] via {device.config.comm.label}')
        for segment_id, address, count in describe_plan(device.profile):
            print(f'    {segment_id}: {count} word(s) from {address:#06x}')

    def _on_snapshot(snapshot) -> None:
        if args.json:
            print(json.dumps(snapshot, indent=2, default=str))
        else:
            _print_snapshot(snapshot)

    shutdown_requested = False

    def signal_handler(signum, frame):
        nonlocal shutdown_requested
        if not shutdown_requested:
            shutdown_requested = True
            print(f'Received shutdown signal {signum}, releasing devices...')
            supervisor.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    if hasattr(signal, 'SIGHUP'):
        signal.signal(signal.SIGHUP, signal_handler)

    try:
        supervisor.run(_on_snapshot)
    except KeyboardInterrupt:
        print('Interrupted by user, releasing devices...')
        supervisor.stop()
    finally:
        for device_id, stats in integration.stats().items():
            print(f'{device_id}: cycles={stats.cycles} ok={stats.successes} failed={stats.failures}')
    return 0


if __name__ == '__main__':
    raise SystemExit(main(sys.argv[1:]))
