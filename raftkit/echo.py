"""An echo server and its interactive client over header-framed text."""

from __future__ import annotations

import argparse
import sys
import threading
from collections.abc import Iterator
from typing import TextIO

from raftkit.net import ClientAcceptor, TcpListener, TcpStream

DEFAULT_PORT = 8088
EXIT_COMMAND = "exit"


def handle_client(acceptor: ClientAcceptor) -> list[str]:
    """Echo messages back until ``exit`` or disconnect; return what was echoed."""
    echoed: list[str] = []
    with acceptor:
        while True:
            try:
                message = acceptor.receive_message()
            except (ConnectionError, ValueError):
                break
            text = message.split("\0", 1)[0]
            if text:
                print(f"client said: {text}")
                if text == EXIT_COMMAND:
                    break
            acceptor.send_message(text)
            echoed.append(text)
    return echoed


def serve(port: int = DEFAULT_PORT) -> None:
    """Accept clients on ``port`` forever, one thread per client."""
    with TcpListener(port) as listener:
        while True:
            acceptor = listener.accept()
            threading.Thread(target=handle_client, args=(acceptor,), daemon=True).start()


def server_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Echo server.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)
    try:
        serve(args.port)
    except KeyboardInterrupt:
        pass
    return 0


def _prompted_lines(stream: TextIO, prompt: str) -> Iterator[str]:
    while True:
        print(prompt, end="", flush=True)
        line = stream.readline()
        if not line:
            return
        data = line.lstrip().rstrip("\r\n")
        if data:
            yield data


def client_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Echo client.")
    parser.add_argument("--port", type=int, default=0, help="Port of the echo server")
    parser.add_argument("--host", default="localhost")
    args = parser.parse_args(argv)
    if args.port == 0:
        print("Port not set", file=sys.stderr)
        return 1
    with TcpStream(args.host, args.port) as stream:
        stream.connect()
        print("Connected to server. Type messages and press Enter to send")
        for data in _prompted_lines(sys.stdin, "> "):
            if data == EXIT_COMMAND:
                break
            stream.send_message(data)
            print(f"server said: {stream.receive_message()}")
    return 0