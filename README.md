# devicefinder

Locate a device on the local network and learn its IP address.

`devicefinder` makes itself known in up to three ways and waits for the
device to answer:

1. **Broadcast**: sends the greeting `Hello, Device! From Finder!` to the UDP
   broadcast address once a second, thirty times.
2. **mDNS**: announces a `_test._tcp.local.` service named `JumpWDevice`
   (port 8080) twice, then re-announces it whenever a query for that service
   type arrives.
3. **Subnet scan**: sends the greeting once a second to every host address in
   the local IPv4 subnet, or only to the given IP address when one is set.
   Scanning stops once a TCP peer has connected.

Meanwhile it listens on a TCP port and a UDP port. When a device sends
`heartbeat` over either, it is answered with `EXIT` and its address is
reported as found.

## Installation

```
pip install .
```

## Command line

```
devicefinder --broadcast --scan --timeout 60
```

Options:

- `--ip ADDRESS`: send only to this IPv4 address (the methods are then ignored).
- `--broadcast/--no-broadcast`, `--mdns/--no-mdns`, `--scan/--no-scan`: enable
  or disable each method.
- `--tcp-port`, `--udp-port`: ports to listen on (defaults 80 and 68).
- `--target-udp-port`: UDP port of the device (default 9910).
- `--frequency`: send frequency in ms, 1 to 1000 (default 100).
- `--settings FILE`: settings file to read and update.
- `--no-save`: do not store the settings used.
- `--timeout SECONDS`: how long to wait for a device (default: forever).
- `--bind ADDRESS`: address to listen on (default `0.0.0.0`).
- `-v`, `--verbose`: debug logging.

Options given on the command line override the saved settings, and the result
is saved back unless `--no-save` is given. By default the settings live in
`settings.json` in the user's configuration directory, under a `Network`
section. At least one method must be enabled, and an IP address, if given,
must be a valid IPv4 address; otherwise the command exits with status 2.

The command prints the local IP address and netmask, then `device found: <ip>`
and exits with status 0 when a device answers. It exits with 1 if no device
answered before the timeout or the ports could not be opened, and with 130 on
Ctrl-C.

Listening on ports 80 and 68 usually needs elevated privileges; choose other
ports if needed.

## Library use

```python
from devicefinder.settings import load_settings
from devicefinder.finder import DeviceFinder

settings = load_settings()
with DeviceFinder(
    settings.methods,
    settings.ip,
    settings.tcp_port,
    settings.udp_port,
    settings.target_udp_port,
) as finder:
    finder.start_listening()
    finder.start_discovery()
    ip = finder.wait_found(timeout=60)
print(ip)
```

`DeviceFinder` also takes an `on_found` callback, reports every address in
`found_devices`, and `stop_discovery()` ends the UDP scans.

`devicefinder.settings` holds `NetworkSettings` with `validate()`,
`is_valid()`, `to_dict()` and `from_dict()`, plus `is_valid_ipv4`,
`load_settings`, `save_settings` and `default_settings_path`.

`devicefinder.network` has helpers for picking the local wired or wireless
IPv4 address (`get_local_ip`), listing interfaces that are up and not
loopback (`get_valid_interfaces`) and enumerating a subnet's host addresses
(`subnet_hosts`).

`ConnectionHandler` in `devicefinder.finder` plays the device's part: it
listens on the same ports, reports every contact through `on_connection`,
echoes UDP heartbeats and answers any TCP data with `heartbeat`.

## What it does not do

- There is no windowed settings dialog; settings come from the command line
  and the settings file.
- The send frequency is validated and stored but does not set the pace of
  sending, which stays at one second.