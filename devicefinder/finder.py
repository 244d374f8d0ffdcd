"""Device discovery over UDP broadcast, mDNS and unicast scans, with TCP/UDP listeners."""

from __future__ import annotations

import logging
import socket
import struct
import threading
import time
from ipaddress import IPv4Address
from typing import Callable, Iterable, Optional

from .network import (
    EXIT_MESSAGE,
    HEARTBEAT,
    MESSAGE,
    SERVICE_NAME,
    SERVICE_TYPE,
    TCP_LISTEN_PORT,
    UDP_LISTEN_PORT,
    UDP_TARGET_PORT,
    get_local_ip,
    subnet_hosts,
)

log = logging.getLogger(__name__)

BROADCAST_LIMIT = 30
DEFAULT_INTERVAL = 1.0
IDLE_TIMEOUT = 60.0
MDNS_GROUP = "224.0.0.251"
MDNS_PORT = 5353
MDNS_SERVICE_PORT = 8080
_MDNS_TTL = 120
_POLL = 0.2
_BUFFER = 65536

Address = tuple[str, int]


def _encode_name(name: str) -> bytes:
    out = bytearray()
    for label in name.strip(".").split("."):
        raw = label.encode("utf-8")
        out.append(len(raw))
        out += raw
    out.append(0)
    return bytes(out)


def _record(name: str, rtype: int, rdata: bytes, ttl: int, cache_flush: bool) -> bytes:
    rclass = 0x8001 if cache_flush else 0x0001
    return (
        _encode_name(name)
        + struct.pack("!HHIH", rtype, rclass, ttl, len(rdata))
        + rdata
    )


def _build_mdns_response(
    service_type: str,
    service_name: str,
    hostname: str,
    address: IPv4Address,
    port: int,
    ttl: int = _MDNS_TTL,
) -> bytes:
    """Build an mDNS response announcing PTR, SRV, TXT and A records."""
    instance = f"{service_name}.{service_type}"
    records = [
        _record(service_type, 12, _encode_name(instance), ttl, False),
        _record(
            instance,
            33,
            struct.pack("!HHH", 0, 0, port) + _encode_name(hostname),
            ttl,
            True,
        ),
        _record(instance, 16, b"\x00", ttl, True),
        _record(hostname, 1, IPv4Address(address).packed, ttl, True),
    ]
    header = struct.pack("!6H", 0, 0x8400, 0, len(records), 0, 0)
    return header + b"".join(records)


class _Endpoint:
    """TCP server and UDP socket run on background threads."""

    def __init__(
        self,
        tcp_port: int,
        udp_port: int,
        *,
        bind_host: str = "0.0.0.0",
        idle_timeout: float = IDLE_TIMEOUT,
    ) -> None:
        self.tcp_port = tcp_port
        self.udp_port = udp_port
        self.bind_host = bind_host
        self.idle_timeout = idle_timeout
        self._stopping = threading.Event()
        self._threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._tcp: Optional[socket.socket] = None
        self._udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._udp_bound = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def tcp_address(self) -> Optional[Address]:
        """Address the TCP server listens on, once listening."""
        return self._tcp.getsockname() if self._tcp is not None else None

    @property
    def udp_address(self) -> Optional[Address]:
        """Address the UDP listener is bound to, once listening."""
        return self._udp.getsockname() if self._udp_bound else None

    def _spawn(self, target: Callable[..., None], *args) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        with self._threads_lock:
            self._threads.append(thread)
        thread.start()

    def start_listening(self) -> None:
        """Start the TCP server and the UDP listener."""
        if self._tcp is not None or self._udp_bound:
            raise RuntimeError("already listening")
        log.debug("startListening")
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server.bind((self.bind_host, self.tcp_port))
            server.listen()
            server.settimeout(_POLL)
        except OSError:
            server.close()
            raise
        self._tcp = server
        self._udp.bind((self.bind_host, self.udp_port))
        self._udp.settimeout(_POLL)
        self._udp_bound = True
        self._spawn(self._serve_tcp)
        self._spawn(self._serve_udp)

    def _send(self, data: bytes, address: Address) -> None:
        try:
            self._udp.sendto(data, address)
        except OSError as exc:
            log.debug("send to %s failed: %s", address, exc)

    def _serve_tcp(self) -> None:
        assert self._tcp is not None
        while not self._stopping.is_set():
            try:
                conn, peer = self._tcp.accept()
            except (socket.timeout, TimeoutError):
                continue
            except OSError:
                break
            log.debug("Tcp connection from %s", peer)
            self._spawn(self._serve_client, conn, peer)

    def _serve_client(self, conn: socket.socket, peer: Address) -> None:
        self._on_tcp_connect(peer)
        conn.settimeout(_POLL)
        deadline: Optional[float] = None
        with conn:
            while not self._stopping.is_set():
                if deadline is not None and time.monotonic() >= deadline:
                    break
                try:
                    data = conn.recv(_BUFFER)
                except (socket.timeout, TimeoutError):
                    continue
                except OSError:
                    break
                if not data:
                    break
                deadline = time.monotonic() + self.idle_timeout
                log.debug("TCP received from %s: %r", peer, data)
                reply = self.handle_tcp_data(data, peer)
                if reply:
                    try:
                        conn.sendall(reply)
                    except OSError:
                        break

    def _serve_udp(self) -> None:
        while not self._stopping.is_set():
            try:
                data, sender = self._udp.recvfrom(_BUFFER)
            except (socket.timeout, TimeoutError, ConnectionResetError, ConnectionRefusedError):
                continue
            except OSError:
                break
            log.debug("Udp received from %s: %r", sender, data)
            reply = self.handle_datagram(data, sender)
            if reply:
                self._send(reply, sender)

    def _on_tcp_connect(self, peer: Address) -> None:
        pass

    def handle_datagram(self, data: bytes, addr: Address) -> Optional[bytes]:
        raise NotImplementedError

    def handle_tcp_data(self, data: bytes, peer: Address) -> Optional[bytes]:
        raise NotImplementedError

    def close(self) -> None:
        """Stop every background thread and close the sockets."""
        self._stopping.set()
        with self._threads_lock:
            threads = list(self._threads)
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join(timeout=2.0)
        if self._tcp is not None:
            self._tcp.close()
        self._udp.close()


class DeviceFinder(_Endpoint):
    """Looks for a device and reports it when it answers with a heartbeat.

    ``methods`` enables broadcast, mDNS advertising and UDP scanning, in that order.
    When ``target_ip`` is set only that address is scanned.
    """

    def __init__(
        self,
        methods: Iterable[bool] = (False, False, False),
        target_ip: str = "",
        tcp_port: int = TCP_LISTEN_PORT,
        udp_port: int = UDP_LISTEN_PORT,
        target_udp_port: int = UDP_TARGET_PORT,
        *,
        on_found: Optional[Callable[[str], None]] = None,
        interval: float = DEFAULT_INTERVAL,
        idle_timeout: float = IDLE_TIMEOUT,
        bind_host: str = "0.0.0.0",
        broadcast_address: str = "255.255.255.255",
    ) -> None:
        flags = tuple(bool(flag) for flag in methods)
        if len(flags) != 3:
            raise ValueError("exactly three method flags are required")
        super().__init__(
            tcp_port, udp_port, bind_host=bind_host, idle_timeout=idle_timeout
        )
        self.methods = flags
        self.target_ip = target_ip.strip()
        self.target_udp_port = target_udp_port
        self.on_found = on_found
        self.interval = interval
        self.broadcast_address = broadcast_address
        self._connected = threading.Event()
        self._found: list[str] = []
        self._found_lock = threading.Lock()
        self._found_event = threading.Event()
        self._udp.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        self._udp.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)

    @property
    def is_connected(self) -> bool:
        """True once a TCP peer connected or discovery was stopped."""
        return self._connected.is_set()

    @property
    def found_devices(self) -> list[str]:
        """Addresses reported so far, in order."""
        with self._found_lock:
            return list(self._found)

    def start_listening(self) -> None:
        """Start the TCP server and the UDP listener that wait for heartbeats."""
        super().start_listening()

    def close(self) -> None:
        """Stop discovery and listening, and close the sockets."""
        super().close()

    def start_discovery(self) -> None:
        """Start the discovery methods chosen at construction."""
        log.debug("startDiscovery")
        if self.target_ip:
            self._spawn(self._run_udp_scan, self.target_ip)
            return
        broadcast, mdns, scan = self.methods
        if broadcast:
            self._spawn(self._run_broadcast)
        if mdns:
            self._spawn(self._run_mdns)
        if scan:
            self._spawn(self._run_udp_scan, "")

    def stop_discovery(self) -> None:
        """Stop the UDP scans; broadcasting runs out on its own."""
        log.debug("Stop Discovery")
        self._connected.set()

    def handle_datagram(self, data: bytes, addr: Address) -> Optional[bytes]:
        """Answer a heartbeat with the exit message and report its sender."""
        if data == HEARTBEAT:
            self._device_found(addr[0])
            return EXIT_MESSAGE
        return None

    def handle_tcp_data(self, data: bytes, peer: Address) -> Optional[bytes]:
        """Answer a heartbeat with the exit message and report the peer."""
        if data == HEARTBEAT:
            self._device_found(peer[0])
            return EXIT_MESSAGE
        return None

    def wait_found(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block until a device is found; return its address, or None on timeout."""
        if not self._found_event.wait(timeout):
            return None
        with self._found_lock:
            return self._found[0]

    def _on_tcp_connect(self, peer: Address) -> None:
        self._connected.set()

    def _device_found(self, ip: str) -> None:
        log.info("device found: %s", ip)
        with self._found_lock:
            self._found.append(ip)
        self._found_event.set()
        if self.on_found is not None:
            self.on_found(ip)

    def _run_broadcast(self) -> None:
        destination = (self.broadcast_address, self.target_udp_port)
        for _ in range(BROADCAST_LIMIT):
            if self._stopping.wait(self.interval):
                return
            self._send(MESSAGE, destination)

    def _run_udp_scan(self, target: str) -> None:
        while not self._stopping.wait(self.interval):
            if self._connected.is_set():
                return
            if target:
                self._send(MESSAGE, (target, self.target_udp_port))
            else:
                self._scan_subnet()

    def _scan_subnet(self) -> None:
        ip, netmask = get_local_ip()
        if netmask is None or ip.is_loopback:
            log.warning("Failed to obtain valid network information")
            return
        for host in subnet_hosts(ip, netmask):
            if self._stopping.is_set():
                return
            self._send(MESSAGE, (str(host), self.target_udp_port))

    def _open_mdns_listener(self) -> Optional[socket.socket]:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    pass
            sock.bind(("", MDNS_PORT))
            membership = socket.inet_aton(MDNS_GROUP) + socket.inet_aton("0.0.0.0")
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.settimeout(_POLL)
        except OSError as exc:
            log.warning("mDNS listener unavailable: %s", exc)
            sock.close()
            return None
        return sock

    def _run_mdns(self) -> None:
        service_type = SERVICE_TYPE.decode()
        hostname = socket.gethostname().split(".")[0] + ".local."
        ip, _ = get_local_ip()
        packet = _build_mdns_response(
            service_type, SERVICE_NAME.decode(), hostname, ip, MDNS_SERVICE_PORT
        )
        group = (MDNS_GROUP, MDNS_PORT)
        sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        with sender:
            sender.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 255)
            sender.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)

            def announce() -> None:
                try:
                    sender.sendto(packet, group)
                except OSError as exc:
                    log.debug("mDNS announce failed: %s", exc)

            announce()
            if self._stopping.wait(self.interval):
                return
            announce()
            listener = self._open_mdns_listener()
            if listener is None:
                return
            wanted = _encode_name(service_type).lower()
            with listener:
                while not self._stopping.is_set():
                    try:
                        data, _ = listener.recvfrom(9000)
                    except (socket.timeout, TimeoutError):
                        continue
                    except OSError:
                        break
                    is_query = len(data) >= 12 and not data[2] & 0x80
                    if is_query and wanted in data.lower():
                        announce()


class ConnectionHandler(_Endpoint):
    """Device side: reports any contact and echoes heartbeats."""

    def __init__(
        self,
        tcp_port: int = TCP_LISTEN_PORT,
        udp_port: int = UDP_LISTEN_PORT,
        *,
        on_connection: Optional[Callable[[], None]] = None,
        idle_timeout: float = IDLE_TIMEOUT,
        bind_host: str = "0.0.0.0",
    ) -> None:
        super().__init__(
            tcp_port, udp_port, bind_host=bind_host, idle_timeout=idle_timeout
        )
        self.on_connection = on_connection

    def start_listening(self) -> None:
        """Start the TCP server and the UDP listener that answer finders."""
        super().start_listening()

    def close(self) -> None:
        """Stop listening and close the sockets."""
        super().close()

    def _connection_success(self) -> None:
        if self.on_connection is not None:
            self.on_connection()

    def _on_tcp_connect(self, peer: Address) -> None:
        self._connection_success()

    def handle_datagram(self, data: bytes, addr: Address) -> Optional[bytes]:
        """Report the contact; echo the datagram back if it is a heartbeat."""
        self._connection_success()
        return HEARTBEAT if data == HEARTBEAT else None

    def handle_tcp_data(self, data: bytes, peer: Address) -> Optional[bytes]:
        """Answer any TCP data with a heartbeat."""
        return HEARTBEAT