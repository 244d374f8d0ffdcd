"""Network settings: validation and persistence."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import platformdirs

from .network import TCP_LISTEN_PORT, UDP_LISTEN_PORT, UDP_TARGET_PORT

PORT_MIN, PORT_MAX = 1, 65535
FREQUENCY_MIN, FREQUENCY_MAX = 1, 1000
DEFAULT_FREQUENCY = 100
SECTION = "Network"

_OCTET = r"(25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
_IPV4 = re.compile(rf"({_OCTET}\.){{3}}{_OCTET}")

PathLike = Union[str, Path]


class SettingsError(ValueError):
    """Raised when settings are invalid or cannot be read."""

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


def is_valid_ipv4(text: str) -> bool:
    """Return True if *text* is a dotted-quad IPv4 address."""
    return _IPV4.fullmatch(text) is not None


@dataclass
class NetworkSettings:
    """User-chosen discovery settings.

    ``methods`` holds the flags for broadcast, mDNS and UDP scan, in that order.
    """

    ip: str = ""
    methods: tuple[bool, bool, bool] = (False, False, False)
    tcp_port: int = TCP_LISTEN_PORT
    udp_port: int = UDP_LISTEN_PORT
    target_udp_port: int = UDP_TARGET_PORT
    frequency: int = DEFAULT_FREQUENCY

    def __post_init__(self) -> None:
        self.ip = self.ip.strip()
        methods = tuple(bool(flag) for flag in self.methods)
        if len(methods) != 3:
            raise ValueError("exactly three method flags are required")
        self.methods = methods  # type: ignore[assignment]

    def validate(self) -> None:
        """Raise SettingsError listing every problem found."""
        problems = []
        if self.ip and not is_valid_ipv4(self.ip):
            problems.append("Invalid IPv4 address format")
        if not any(self.methods):
            problems.append("At least one method must be selected")
        for label, port in (
            ("TCP listen port", self.tcp_port),
            ("UDP listen port", self.udp_port),
            ("Target UDP port", self.target_udp_port),
        ):
            if not PORT_MIN <= port <= PORT_MAX:
                problems.append(f"{label} must be between {PORT_MIN} and {PORT_MAX}")
        if not FREQUENCY_MIN <= self.frequency <= FREQUENCY_MAX:
            problems.append(
                f"Send frequency must be between {FREQUENCY_MIN} and {FREQUENCY_MAX} ms"
            )
        if problems:
            raise SettingsError(problems)

    def is_valid(self) -> bool:
        """Return True if validate() finds no problem."""
        try:
            self.validate()
        except SettingsError:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        """Return the settings under their stored key names."""
        method1, method2, method3 = self.methods
        return {
            "IP": self.ip,
            "Method1": method1,
            "Method2": method2,
            "Method3": method3,
            "TCPPort": self.tcp_port,
            "UDPPort": self.udp_port,
            "TargetUDP": self.target_udp_port,
            "Frequency": self.frequency,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NetworkSettings":
        """Build settings from stored values, using defaults and clamping to range."""

        def port(key: str, default: int) -> int:
            return _clamp(_to_int(data.get(key, default)), PORT_MIN, PORT_MAX)

        ip = data.get("IP", "")
        return cls(
            ip="" if ip is None else str(ip),
            methods=(
                _to_bool(data.get("Method1", False)),
                _to_bool(data.get("Method2", False)),
                _to_bool(data.get("Method3", False)),
            ),
            tcp_port=port("TCPPort", TCP_LISTEN_PORT),
            udp_port=port("UDPPort", UDP_LISTEN_PORT),
            target_udp_port=port("TargetUDP", UDP_TARGET_PORT),
            frequency=_clamp(
                _to_int(data.get("Frequency", DEFAULT_FREQUENCY)),
                FREQUENCY_MIN,
                FREQUENCY_MAX,
            ),
        )


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false")
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return round(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def default_settings_path() -> Path:
    """Return the per-user settings file location."""
    return Path(platformdirs.user_config_dir("devicefinder")) / "settings.json"


def _read(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SettingsError(f"cannot parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SettingsError(f"{path} does not hold a settings object")
    return data


def load_settings(path: Optional[PathLike] = None) -> NetworkSettings:
    """Load settings from *path*, returning defaults when the file is missing."""
    path = Path(path) if path is not None else default_settings_path()
    if not path.exists():
        return NetworkSettings()
    section = _read(path).get(SECTION, {})
    if not isinstance(section, Mapping):
        raise SettingsError(f"section {SECTION!r} in {path} is not an object")
    return NetworkSettings.from_dict(section)


def save_settings(settings: NetworkSettings, path: Optional[PathLike] = None) -> Path:
    """Validate and store *settings*, keeping other sections of the file."""
    settings.validate()
    path = Path(path) if path is not None else default_settings_path()
    data: dict[str, Any] = {}
    if path.exists():
        try:
            data = _read(path)
        except SettingsError:
            data = {}
    data[SECTION] = settings.to_dict()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path