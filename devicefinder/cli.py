"""Command line entry point: find a device on the local network."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from typing import Optional, Sequence

from .finder import DeviceFinder
from .network import get_local_ip
from .settings import NetworkSettings, SettingsError, load_settings, save_settings


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the command."""
    parser = argparse.ArgumentParser(
        prog="devicefinder", description="Find a device on the local network."
    )
    parser.add_argument("--ip", help="scan only this IPv4 address")
    parser.add_argument(
        "--broadcast", action=argparse.BooleanOptionalAction, default=None,
        help="send UDP broadcasts",
    )
    parser.add_argument(
        "--mdns", action=argparse.BooleanOptionalAction, default=None,
        help="advertise an mDNS service",
    )
    parser.add_argument(
        "--scan", action=argparse.BooleanOptionalAction, default=None,
        help="scan the local subnet over UDP",
    )
    parser.add_argument("--tcp-port", type=int, help="TCP listen port")
    parser.add_argument("--udp-port", type=int, help="UDP listen port")
    parser.add_argument("--target-udp-port", type=int, help="UDP port of the device")
    parser.add_argument("--frequency", type=int, help="send frequency in ms")
    parser.add_argument("--settings", help="settings file to read and update")
    parser.add_argument(
        "--no-save", action="store_true", help="do not store the settings used"
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="seconds to wait for a device (default: forever)",
    )
    parser.add_argument("--bind", default="0.0.0.0", help="address to listen on")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def settings_from_args(
    args: argparse.Namespace, base: Optional[NetworkSettings] = None
) -> NetworkSettings:
    """Return *base* with every option given on the command line applied."""
    base = base if base is not None else NetworkSettings()
    methods = tuple(
        current if given is None else given
        for current, given in zip(base.methods, (args.broadcast, args.mdns, args.scan))
    )
    changes = {"methods": methods}
    for field, value in (
        ("ip", args.ip),
        ("tcp_port", args.tcp_port),
        ("udp_port", args.udp_port),
        ("target_udp_port", args.target_udp_port),
        ("frequency", args.frequency),
    ):
        if value is not None:
            changes[field] = value
    return dataclasses.replace(base, **changes)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run discovery until a device answers; return the exit status."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        settings = settings_from_args(args, load_settings(args.settings))
        settings.validate()
    except SettingsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if not args.no_save:
        try:
            save_settings(settings, args.settings)
        except OSError as exc:
            print(f"warning: cannot save settings: {exc}", file=sys.stderr)

    ip, netmask = get_local_ip()
    print(f"local IP: {ip}")
    print(f"local IP netmask: {netmask}")

    with DeviceFinder(
        settings.methods,
        settings.ip,
        settings.tcp_port,
        settings.udp_port,
        settings.target_udp_port,
        bind_host=args.bind,
    ) as finder:
        try:
            finder.start_listening()
        except OSError as exc:
            print(f"error: cannot listen: {exc}", file=sys.stderr)
            return 1
        finder.start_discovery()
        try:
            device = finder.wait_found(args.timeout)
        except KeyboardInterrupt:
            return 130

    if device is None:
        print("no device found", file=sys.stderr)
        return 1
    print(f"device found: {device}")
    return 0


if __name__ == "__main__":
    sys.exit(main())