import socket
import threading

import pytest

from devicefinder.cli import build_parser, main, settings_from_args
from devicefinder.network import HEARTBEAT, MESSAGE, TCP_LISTEN_PORT
from devicefinder.settings import NetworkSettings, load_settings


def _free_port(kind):
    with socket.socket(socket.AF_INET, kind) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_parser_leaves_unset_options_as_none():
    args = build_parser().parse_args([])
    assert args.ip is None
    assert (args.broadcast, args.mdns, args.scan) == (None, None, None)
    assert args.no_save is False


def test_settings_from_args_keeps_base_values():
    base = NetworkSettings(ip="10.1.1.1", methods=(True, False, False), udp_port=1234)
    args = build_parser().parse_args([])
    assert settings_from_args(args, base) == base


def test_settings_from_args_overrides_given_options():
    base = NetworkSettings(methods=(True, False, False))
    args = build_parser().parse_args(
        ["--no-broadcast", "--scan", "--ip", "10.2.2.2", "--tcp-port", "8081"]
    )
    result = settings_from_args(args, base)
    assert result.methods == (False, False, True)
    assert result.ip == "10.2.2.2"
    assert result.tcp_port == 8081
    assert base.methods == (True, False, False)


def test_settings_from_args_without_base_uses_defaults():
    args = build_parser().parse_args(["--mdns"])
    result = settings_from_args(args, None)
    assert result.methods == (False, True, False)
    assert result.tcp_port == TCP_LISTEN_PORT


def test_main_rejects_settings_without_method(tmp_path, capsys):
    status = main(["--settings", str(tmp_path / "s.json"), "--no-save"])
    assert status == 2
    assert "At least one method must be selected" in capsys.readouterr().err


def test_main_rejects_bad_ip(tmp_path, capsys):
    status = main(
        ["--settings", str(tmp_path / "s.json"), "--scan", "--ip", "300.1.1.1"]
    )
    assert status == 2
    assert "Invalid IPv4 address format" in capsys.readouterr().err


def test_main_times_out_without_device(tmp_path):
    path = tmp_path / "s.json"
    argv = [
        "--settings", str(path), "--scan", "--ip", "127.0.0.1",
        "--tcp-port", str(_free_port(socket.SOCK_STREAM)),
        "--udp-port", str(_free_port(socket.SOCK_DGRAM)),
        "--target-udp-port", str(_free_port(socket.SOCK_DGRAM)),
        "--bind", "127.0.0.1", "--timeout", "0.3",
    ]
    assert main(argv) == 1
    stored = load_settings(path)
    assert stored.methods == (False, False, True)
    assert stored.ip == "127.0.0.1"


def test_main_finds_answering_device(tmp_path, capsys):
    device = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    device.bind(("127.0.0.1", 0))
    device.settimeout(10.0)
    received = []

    def answer():
        try:
            data, sender = device.recvfrom(1024)
        except OSError:
            return
        received.append(data)
        device.sendto(HEARTBEAT, sender)

    worker = threading.Thread(target=answer, daemon=True)
    worker.start()
    with device:
        argv = [
            "--settings", str(tmp_path / "s.json"), "--no-save",
            "--scan", "--ip", "127.0.0.1",
            "--tcp-port", str(_free_port(socket.SOCK_STREAM)),
            "--udp-port", str(_free_port(socket.SOCK_DGRAM)),
            "--target-udp-port", str(device.getsockname()[1]),
            "--bind", "127.0.0.1", "--timeout", "10",
        ]
        status = main(argv)
        worker.join(timeout=5.0)
    assert status == 0
    assert received == [MESSAGE]
    out = capsys.readouterr().out
    assert "device found: 127.0.0.1" in out
    assert not (tmp_path / "s.json").exists()


@pytest.mark.parametrize("flag", ["--broadcast", "--mdns", "--scan"])
def test_each_method_flag_enables_one_method(flag):
    args = build_parser().parse_args([flag])
    methods = settings_from_args(args, NetworkSettings()).methods
    assert sum(methods) == 1