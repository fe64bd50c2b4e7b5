import io
import threading

import pytest

from raftkit.config import RaftConfig
from raftkit.console import RaftConsole, main
from raftkit.messages import ConsoleRequest, decode_message, encode_console_response
from raftkit.net import TcpListener


def test_get_returns_configured_server():
    config = RaftConfig(5, 10000)
    console = RaftConsole(config)
    assert console.get(2) == config.get_one_by_index(2)
    assert console.get(0).port == 10000


def test_get_outside_cluster_raises():
    with pytest.raises(IndexError):
        RaftConsole(RaftConfig(5, 10000)).get(5)


def test_main_requires_node(capsys):
    assert main([]) == 1
    assert "--node" in capsys.readouterr().err


def _serve_once(listener, reply, received):
    with listener.accept() as acceptor:
        received.append(decode_message(acceptor.receive_buffer()))
        if reply is not None:
            acceptor.send_buffer(encode_console_response(reply))


def _run_console(monkeypatch, stdin_text, reply):
    received = []
    with TcpListener(0) as listener:
        worker = threading.Thread(target=_serve_once, args=(listener, reply, received))
        worker.start()
        monkeypatch.setattr("sys.stdin", io.StringIO(stdin_text))
        code = main(["--node", "0", "--starting_port", str(listener.port)])
        worker.join(5)
    return code, received


def test_main_exits_on_goodbye(monkeypatch, capsys):
    code, received = _run_console(monkeypatch, "exit\n", "Goodbye")
    assert code == 0
    assert received == [ConsoleRequest("exit")]
    assert "server said: Goodbye" in capsys.readouterr().out


def test_main_prints_reply_and_stops_at_end_of_input(monkeypatch, capsys):
    code, received = _run_console(monkeypatch, "  show log\n", "OK")
    assert code == 0
    assert received == [ConsoleRequest("show log")]
    assert "server said: OK" in capsys.readouterr().out


def test_main_reports_missing_reply(monkeypatch, capsys):
    code, received = _run_console(monkeypatch, "set a 1\n", None)
    assert code == 0
    assert received == [ConsoleRequest("set a 1")]
    assert "no response from server" in capsys.readouterr().err