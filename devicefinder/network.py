"""Local network interface inspection and subnet enumeration."""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from enum import Enum
from ipaddress import IPv4Address
from typing import Iterator, Optional, Union

import psutil

UDP_TARGET_PORT = 9910
UDP_LISTEN_PORT = 68
TCP_LISTEN_PORT = 80
MESSAGE = b"Hello, Device! From Finder!"
SERVICE_TYPE = b"_test._tcp.local."
SERVICE_NAME = b"JumpWDevice"
EXIT_MESSAGE = b"EXIT"
HEARTBEAT = b"heartbeat"

LOCALHOST = IPv4Address("127.0.0.1")

_EXCLUDED_NAME_PARTS = ("vmware", "bluetooth")
_WIRELESS_PREFIXES = ("wl", "wi-fi", "wifi", "wireless")
_WIRED_PREFIXES = ("eth", "en", "em", "local area connection")

AddressLike = Union[str, IPv4Address]


class InterfaceKind(Enum):
    """Physical kind of a network interface, guessed from its name."""

    ETHERNET = "ethernet"
    WIRELESS = "wireless"
    OTHER = "other"


@dataclass(frozen=True)
class InterfaceInfo:
    """A network interface with its IPv4 addresses and netmasks."""

    name: str
    is_up: bool
    is_running: bool
    is_loopback: bool
    kind: InterfaceKind
    addresses: tuple[tuple[IPv4Address, Optional[IPv4Address]], ...] = field(
        default_factory=tuple
    )

    @property
    def is_physical(self) -> bool:
        """True for wired or wireless interfaces."""
        return self.kind in (InterfaceKind.ETHERNET, InterfaceKind.WIRELESS)

    @property
    def is_excluded_by_name(self) -> bool:
        """True for virtual-machine or Bluetooth adapters."""
        lowered = self.name.lower()
        return any(part in lowered for part in _EXCLUDED_NAME_PARTS)


def _classify(name: str) -> InterfaceKind:
    lowered = name.lower()
    if lowered.startswith(_WIRELESS_PREFIXES):
        return InterfaceKind.WIRELESS
    if lowered.startswith(_WIRED_PREFIXES):
        return InterfaceKind.ETHERNET
    return InterfaceKind.OTHER


def _to_ipv4(text: Optional[str]) -> Optional[IPv4Address]:
    if not text:
        return None
    try:
        return IPv4Address(text)
    except ValueError:
        return None


def _interfaces() -> list[InterfaceInfo]:
    stats = psutil.net_if_stats()
    result = []
    for name, entries in psutil.net_if_addrs().items():
        stat = stats.get(name)
        is_up = bool(stat and stat.isup)
        flags = set(getattr(stat, "flags", "").split(",")) if stat else set()
        flags.discard("")
        is_running = "running" in flags if flags else is_up
        is_loopback = (
            "loopback" in flags
            or name == "lo"
            or name.lower().startswith("loopback")
        )
        addresses = []
        for entry in entries:
            if entry.family != socket.AF_INET:
                continue
            ip = _to_ipv4(entry.address)
            if ip is None:
                continue
            addresses.append((ip, _to_ipv4(entry.netmask)))
        result.append(
            InterfaceInfo(
                name=name,
                is_up=is_up,
                is_running=is_running,
                is_loopback=is_loopback,
                kind=_classify(name),
                addresses=tuple(addresses),
            )
        )
    return result


def get_local_ip() -> tuple[IPv4Address, Optional[IPv4Address]]:
    """Return the first usable (address, netmask) of a wired or wireless interface.

    Falls back to the loopback address for both when nothing qualifies.
    """
    for iface in _interfaces():
        if not (iface.is_up and iface.is_running):
            continue
        if not iface.is_physical or iface.is_excluded_by_name:
            continue
        for ip, netmask in iface.addresses:
            if not ip.is_loopback:
                return ip, netmask
    return LOCALHOST, LOCALHOST


def get_valid_interfaces() -> list[InterfaceInfo]:
    """Return interfaces that are up and not loopback."""
    return [iface for iface in _interfaces() if iface.is_up and not iface.is_loopback]


def subnet_hosts(
    ip: AddressLike, netmask: Optional[AddressLike]
) -> Iterator[IPv4Address]:
    """Yield every host address of the subnet except the network, broadcast and *ip*."""
    if ip is None or netmask is None:
        raise ValueError("a valid address and netmask are required")
    own = IPv4Address(ip)
    mask = int(IPv4Address(netmask))
    network = int(own) & mask
    broadcast = network | (~mask & 0xFFFFFFFF)
    for value in range(network + 1, broadcast):
        address = IPv4Address(value)
        if address != own:
            yield address