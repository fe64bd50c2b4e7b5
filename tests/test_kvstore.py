import socket
import threading

import pytest

from raftkit.kvstore import (
    Operation,
    OperationExecution,
    Snapshotter,
    _handle_client,
    get_value,
    main,
    parse_message,
    run_command,
    set_key,
)
from raftkit.net import ClientAcceptor


class _Recorder:
    def __init__(self):
        self.sent = []

    def send_message(self, message):
        self.sent.append(message)


def test_snapshot_then_restore_round_trip(tmp_path):
    values = {"key1": "value1", "key2": "value2", "key3": "value3"}
    values2 = {}
    with Snapshotter(tmp_path / "snapshot_test.bin") as snapshotter:
        snapshotter.snapshot(values)
        snapshotter.restore(values2)
    for key, value in values.items():
        assert values2[key] == value


def test_restore_clears_store_and_later_record_wins(tmp_path):
    with Snapshotter(tmp_path / "snap.bin") as snapshotter:
        snapshotter.snapshot({"a": "old"})
        snapshotter.snapshot({"a": "new", "b": "x"})
        store = {"stale": "value"}
        snapshotter.restore(store)
    assert store == {"a": "new", "b": "x"}


def test_snapshot_persists_across_instances(tmp_path):
    path = tmp_path / "snap.bin"
    with Snapshotter(path) as first:
        first.snapshot({"k": "v"})
    store = {}
    with Snapshotter(path) as second:
        second.restore(store)
    assert store == {"k": "v"}


def test_truncated_snapshot_raises(tmp_path):
    path = tmp_path / "snap.bin"
    with Snapshotter(path) as snapshotter:
        snapshotter.snapshot({"key": "value"})
    path.write_bytes(path.read_bytes()[:-2])
    with Snapshotter(path) as snapshotter, pytest.raises(ValueError):
        snapshotter.restore({})


@pytest.mark.parametrize(
    "message, expected",
    [
        ("get foo", OperationExecution(Operation.GET, "foo")),
        ("GET foo", OperationExecution(Operation.GET, "foo")),
        ("set foo bar", OperationExecution(Operation.SET, "foo", "bar")),
        ("SeT foo", OperationExecution(Operation.SET, "foo", "")),
        ("snapshot", OperationExecution(Operation.SNAP)),
        ("bogus thing", OperationExecution(Operation.GET, "")),
        ("", OperationExecution(Operation.GET, "")),
    ],
)
def test_parse_message(message, expected):
    assert parse_message(message) == expected


@pytest.mark.parametrize(
    "message, name",
    [("get a", "get"), ("set a b", "set"), ("snapshot", "snapshot")],
)
def test_parsed_operation_names(message, name):
    assert parse_message(message).op.value == name


def test_get_value_missing_key():
    assert get_value({}, "nope") == "not found"


def test_set_key_keeps_existing_value():
    store = {}
    set_key(store, "a", "1")
    set_key(store, "a", "2")
    assert store == {"a": "1"}


def test_run_command_set_get_snapshot(tmp_path):
    store = {}
    recorder = _Recorder()
    with Snapshotter(tmp_path / "s.bin") as snapshotter:
        run_command(parse_message("set x 10"), store, recorder, snapshotter)
        run_command(parse_message("get x"), store, recorder, snapshotter)
        run_command(parse_message("get y"), store, recorder, snapshotter)
        run_command(parse_message("snapshot"), store, recorder, snapshotter)
        restored = {}
        snapshotter.restore(restored)
    assert recorder.sent == ["x", "10", "not found", "wrote snapshot"]
    assert restored == {"x": "10"}


def test_run_command_restore(tmp_path):
    recorder = _Recorder()
    with Snapshotter(tmp_path / "s.bin") as snapshotter:
        snapshotter.snapshot({"saved": "yes"})
        store = {"other": "no"}
        run_command(OperationExecution(Operation.REST), store, recorder, snapshotter)
    assert store == {"saved": "yes"}
    assert recorder.sent == ["restored from snapshot"]


def test_run_command_get_without_key_raises(tmp_path):
    with Snapshotter(tmp_path / "s.bin") as snapshotter, pytest.raises(ValueError):
        run_command(OperationExecution(Operation.GET), {}, _Recorder(), snapshotter)


def test_client_session_over_socket(tmp_path):
    server_sock, client_sock = socket.socketpair()
    store = {}
    client = ClientAcceptor(client_sock)
    with Snapshotter(tmp_path / "s.bin") as snapshotter:
        worker = threading.Thread(
            target=_handle_client,
            args=(ClientAcceptor(server_sock), store, snapshotter, threading.Lock()),
        )
        worker.start()
        client.send_message("set key1 value1")
        assert client.receive_message() == "key1"
        client.send_message("get key1")
        assert client.receive_message() == "value1"
        client.send_message("snapshot")
        assert client.receive_message() == "wrote snapshot"
        client.send_message("exit")
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert client_sock.recv(1) == b""
    client.close()
    assert store == {"key1": "value1"}


def test_main_requires_port(capsys):
    assert main(["--snapshot_file", "x.bin"]) == 1
    assert "ERROR: --port is required" in capsys.readouterr().err


def test_main_requires_snapshot_file(capsys):
    assert main(["--port", "9999"]) == 1
    assert "ERROR: --snapshot_file is required" in capsys.readouterr().err