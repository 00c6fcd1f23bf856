import os
import socket
import threading

import pytest

from gops.protocol import Signal, encode_varint
from gops.shared import (
    GopsError,
    agent_commands,
    gc,
    pprof_cpu,
    pprof_heap,
    send_command,
    set_gc,
    stack_trace,
    target_to_addr,
)


@pytest.fixture
def fake_agent():
    listeners = []

    def start(payload=b""):
        listener = socket.create_server(("127.0.0.1", 0))
        listener.settimeout(5)
        received = []

        def run():
            while True:
                try:
                    conn, _ = listener.accept()
                except OSError:
                    return
                with conn:
                    conn.settimeout(0.2)
                    data = b""
                    try:
                        while chunk := conn.recv(4096):
                            data += chunk
                    except TimeoutError:
                        pass
                    received.append(data)
                    conn.sendall(payload)

        threading.Thread(target=run, daemon=True).start()
        listeners.append(listener)
        return ("127.0.0.1", listener.getsockname()[1]), received

    yield start
    for listener in listeners:
        listener.close()


def _command(name):
    for command in agent_commands():
        if command.name == name:
            return command.fn
    raise AssertionError(f"no command {name!r}")


def _saved_path(output, label):
    for line in output.splitlines():
        if line.startswith(label):
            return line[len(label):].strip()
    raise AssertionError(f"{label!r} not in output")


def test_agent_command_names_in_order():
    names = [command.name for command in agent_commands()]
    assert names == [
        "stack", "gc", "setgc", "memstats", "stats",
        "trace", "pprof-heap", "pprof-cpu", "version",
    ]


def test_target_host_port():
    assert target_to_addr("127.0.0.1:8080") == ("127.0.0.1", 8080)


def test_target_bad_pid():
    with pytest.raises(GopsError, match="couldn't parse PID"):
        target_to_addr("abc")


def test_target_bad_port():
    with pytest.raises(GopsError, match="couldn't parse dst address"):
        target_to_addr("127.0.0.1:notaport_xyz")


def test_target_pid_reads_port_file(tmp_path, monkeypatch):
    monkeypatch.setenv("GOPS_CONFIG_DIR", str(tmp_path))
    (tmp_path / "4242").write_text(" 4321\n")
    assert target_to_addr("4242") == ("127.0.0.1", 4321)


def test_target_pid_without_port_file(tmp_path, monkeypatch):
    monkeypatch.setenv("GOPS_CONFIG_DIR", str(tmp_path))
    with pytest.raises(GopsError, match="couldn't get port for PID 4242"):
        target_to_addr("4242")


def test_send_command_round_trip(fake_agent):
    addr, received = fake_agent(b"hello")
    assert send_command(addr, Signal.STATS, b"\x05") == b"hello"
    assert received == [bytes([Signal.STATS, 5])]


def test_send_command_connection_refused():
    probe = socket.create_server(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    with pytest.raises(GopsError, match="couldn't get port by PID"):
        send_command(("127.0.0.1", port), Signal.GC)


def test_stack_trace_prints_answer(fake_agent, capsys):
    addr, received = fake_agent(b"goroutine 1\n")
    stack_trace(addr, [])
    assert capsys.readouterr().out == "goroutine 1\n"
    assert received == [bytes([Signal.STACK_TRACE])]


def test_gc_prints_nothing(fake_agent, capsys):
    addr, received = fake_agent(b"ok")
    gc(addr, [])
    assert capsys.readouterr().out == ""
    assert received == [bytes([Signal.GC])]


def test_set_gc_off_wire_bytes(fake_agent, capsys):
    addr, received = fake_agent(b"New GC percent set to -1.\n")
    set_gc(addr, ["OFF"])
    assert capsys.readouterr().out == "New GC percent set to -1.\n"
    assert received == [b"\x10\x01" + b"\x00" * 9]


def test_set_gc_number_payload(fake_agent, capsys):
    addr, received = fake_agent(b"done\n")
    set_gc(addr, ["150"])
    data = received[0]
    assert data[0] == Signal.SET_GC_PERCENT
    assert len(data) == 11
    encoded = encode_varint(150)
    assert data[1:1 + len(encoded)] == encoded
    assert capsys.readouterr().out == "done\n"


def test_set_gc_requires_one_param():
    with pytest.raises(GopsError, match="missing gc percentage"):
        set_gc(("127.0.0.1", 1), [])
    with pytest.raises(GopsError, match="missing gc percentage"):
        set_gc(("127.0.0.1", 1), ["1", "2"])


def test_set_gc_rejects_non_number():
    with pytest.raises(GopsError):
        set_gc(("127.0.0.1", 1), ["many"])


def test_trace_empty_answer(fake_agent):
    addr, _ = fake_agent(b"")
    with pytest.raises(GopsError, match="nothing has traced"):
        _command("trace")(addr, [])


def test_trace_saves_dump_without_toolchain(fake_agent, capsys, tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    addr, received = fake_agent(b"trace-data")
    _command("trace")(addr, [])
    out = capsys.readouterr().out
    assert out.startswith("Tracing now, will take 5 secs...")
    path = _saved_path(out, "Trace dump saved to:")
    try:
        with open(path, "rb") as handle:
            assert handle.read() == b"trace-data"
    finally:
        os.remove(path)
    assert received == [bytes([Signal.TRACE])]


def test_pprof_heap_empty_answer(fake_agent):
    addr, _ = fake_agent(b"")
    with pytest.raises(GopsError, match="failed to read the profile"):
        pprof_heap(addr, [])


def test_pprof_cpu_saves_dump_without_toolchain(fake_agent, capsys, tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    addr, received = fake_agent(b"profile")
    pprof_cpu(addr, [])
    out = capsys.readouterr().out
    assert "Profiling CPU now, will take 30 secs..." in out
    path = _saved_path(out, "Profile dump saved to:")
    try:
        assert os.path.basename(path).startswith("cpu_profile")
        with open(path, "rb") as handle:
            assert handle.read() == b"profile"
    finally:
        os.remove(path)
    assert received == [bytes([Signal.CPU_PROFILE])]