import io
import socket
import threading

from raftkit.echo import client_main, handle_client
from raftkit.net import ClientAcceptor, TcpListener


def test_handle_client_echoes_until_exit(capsys):
    server_sock, client_sock = socket.socketpair()
    client = ClientAcceptor(client_sock)
    results = []
    worker = threading.Thread(
        target=lambda: results.append(handle_client(ClientAcceptor(server_sock)))
    )
    worker.start()
    client.send_message("hello")
    assert client.receive_message() == "hello"
    client.send_message("exit")
    worker.join(timeout=5)
    assert client_sock.recv(1) == b""
    client.close()
    assert results == [["hello"]]
    out = capsys.readouterr().out
    assert "client said: hello" in out
    assert "client said: exit" in out


def test_client_main_talks_to_server(monkeypatch, capsys):
    with TcpListener(0) as listener:
        results = []
        worker = threading.Thread(
            target=lambda: results.append(handle_client(listener.accept()))
        )
        worker.start()
        monkeypatch.setattr("sys.stdin", io.StringIO("hello\n\n   world\nexit\n"))
        assert client_main(["--port", str(listener.port)]) == 0
        worker.join(timeout=5)
    out = capsys.readouterr().out
    assert "server said: hello" in out
    assert "server said: world" in out
    assert results == [["hello", "world"]]


def test_client_main_requires_port(capsys):
    assert client_main([]) == 1
    assert "Port not set" in capsys.readouterr().err