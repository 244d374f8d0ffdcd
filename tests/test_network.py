import socket
from contextlib import contextmanager
from ipaddress import IPv4Address, IPv4Network
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from devicefinder.network import (
    InterfaceInfo,
    InterfaceKind,
    get_local_ip,
    get_valid_interfaces,
    subnet_hosts,
)


def _v4(address, netmask):
    return SimpleNamespace(family=socket.AF_INET, address=address, netmask=netmask)


def _v6(address):
    return SimpleNamespace(family=socket.AF_INET6, address=address, netmask=None)


def _stat(isup=True, flags="up,broadcast,running,multicast"):
    return SimpleNamespace(isup=isup, flags=flags)


@contextmanager
def _fake(addrs, stats):
    with patch("psutil.net_if_addrs", return_value=addrs), patch(
        "psutil.net_if_stats", return_value=stats
    ):
        yield


def test_subnet_hosts_matches_network_hosts_without_self():
    ip = "192.168.1.10"
    result = list(subnet_hosts(ip, "255.255.255.0"))
    expected = set(IPv4Network(f"{ip}/255.255.255.0", strict=False).hosts())
    expected.discard(IPv4Address(ip))
    assert set(result) == expected
    assert IPv4Address(ip) not in result
    assert result == sorted(result)


@pytest.mark.parametrize("mask", ["255.255.255.255", "255.255.255.254"])
def test_subnet_hosts_empty_for_tiny_networks(mask):
    assert list(subnet_hosts("10.0.0.4", mask)) == []


def test_subnet_hosts_accepts_address_objects():
    ip = IPv4Address("10.1.2.3")
    result = list(subnet_hosts(ip, IPv4Address("255.255.255.248")))
    network = IPv4Network("10.1.2.3/29", strict=False)
    assert all(addr in network for addr in result)
    assert network.network_address not in result
    assert network.broadcast_address not in result


def test_subnet_hosts_requires_netmask():
    with pytest.raises(ValueError):
        list(subnet_hosts("10.0.0.1", None))


def test_get_local_ip_picks_first_physical_ipv4():
    addrs = {
        "lo": [_v4("127.0.0.1", "255.0.0.0")],
        "VMware Network Adapter": [_v4("172.16.0.1", "255.255.0.0")],
        "eth0": [_v6("fe80::1"), _v4("192.168.1.20", "255.255.255.0")],
        "wlan0": [_v4("10.0.0.5", "255.255.255.0")],
    }
    stats = {
        "lo": _stat(flags="up,loopback,running"),
        "VMware Network Adapter": _stat(),
        "eth0": _stat(),
        "wlan0": _stat(),
    }
    with _fake(addrs, stats):
        ip, mask = get_local_ip()
    assert ip == IPv4Address("192.168.1.20")
    assert mask == IPv4Address("255.255.255.0")


def test_get_local_ip_skips_down_and_not_running():
    addrs = {
        "eth0": [_v4("192.168.1.20", "255.255.255.0")],
        "eth1": [_v4("192.168.2.20", "255.255.255.0")],
        "wlan0": [_v4("10.0.0.5", "255.255.255.0")],
    }
    stats = {
        "eth0": _stat(isup=False, flags="broadcast"),
        "eth1": _stat(flags="up,broadcast"),
        "wlan0": _stat(),
    }
    with _fake(addrs, stats):
        assert get_local_ip()[0] == IPv4Address("10.0.0.5")


def test_get_local_ip_falls_back_to_localhost():
    addrs = {
        "lo": [_v4("127.0.0.1", "255.0.0.0")],
        "Bluetooth Network Connection": [_v4("169.254.3.3", "255.255.0.0")],
        "docker0": [_v4("172.17.0.1", "255.255.0.0")],
    }
    stats = {name: _stat() for name in addrs}
    with _fake(addrs, stats):
        assert get_local_ip() == (IPv4Address("127.0.0.1"), IPv4Address("127.0.0.1"))


def test_get_valid_interfaces_excludes_loopback_and_down():
    addrs = {
        "lo": [_v4("127.0.0.1", "255.0.0.0")],
        "eth0": [_v4("192.168.1.20", "255.255.255.0"), _v6("fe80::1")],
        "eth1": [],
        "docker0": [_v4("172.17.0.1", "255.255.0.0")],
    }
    stats = {
        "lo": _stat(flags="up,loopback,running"),
        "eth0": _stat(),
        "eth1": _stat(isup=False, flags=""),
        "docker0": _stat(),
    }
    with _fake(addrs, stats):
        valid = get_valid_interfaces()
    assert [iface.name for iface in valid] == ["eth0", "docker0"]
    eth0 = valid[0]
    assert eth0.kind is InterfaceKind.ETHERNET
    assert eth0.addresses == (
        (IPv4Address("192.168.1.20"), IPv4Address("255.255.255.0")),
    )
    assert valid[1].kind is InterfaceKind.OTHER


def test_interface_info_name_exclusion():
    iface = InterfaceInfo(
        name="vmware bridge",
        is_up=True,
        is_running=True,
        is_loopback=False,
        kind=InterfaceKind.ETHERNET,
    )
    assert iface.is_excluded_by_name
    assert iface.is_physical