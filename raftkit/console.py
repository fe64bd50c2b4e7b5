"""An interactive console that sends commands to one node of the cluster."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Iterator
from typing import TextIO

from raftkit.config import RaftConfig, Server
from raftkit.messages import ConsoleResponse, decode_message, encode_console_request
from raftkit.net import TcpStream

logger = logging.getLogger(__name__)

CLUSTER_SIZE = 5
STARTING_PORT = 10000
RETRY_DELAY = 1.0
GOODBYE = "Goodbye"


class RaftConsole:
    """Looks up the nodes a console can talk to."""

    def __init__(self, config: RaftConfig) -> None:
        self._config = config

    @property
    def config(self) -> RaftConfig:
        return self._config

    def get(self, node_id: int) -> Server:
        """Return the server of ``node_id``; IndexError if there is none."""
        return self._config.get_one_by_index(node_id)


def _connect(server: Server, retry_delay: float = RETRY_DELAY) -> TcpStream:
    stream = TcpStream(server.address, server.port)
    while True:
        try:
            stream.connect()
            return stream
        except OSError as exc:
            logger.error("%s", exc)
            logger.info("Will attempt connection again...")
            time.sleep(retry_delay)


def _exchange(stream: TcpStream, command: str) -> ConsoleResponse | None:
    stream.send_buffer(encode_console_request(command))
    reply = stream.receive_buffer()
    try:
        message = decode_message(reply)
    except ValueError:
        return None
    return message if isinstance(message, ConsoleResponse) else None


def _prompted_lines(stream: TextIO, prompt: str) -> Iterator[str]:
    while True:
        print(prompt, end="", flush=True)
        line = stream.readline()
        if not line:
            return
        data = line.lstrip().rstrip("\r\n")
        if data:
            yield data


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Raft console.")
    parser.add_argument("--node", type=int, default=-1, help="Node number")
    parser.add_argument("--cluster_size", type=int, default=CLUSTER_SIZE)
    parser.add_argument("--starting_port", type=int, default=STARTING_PORT)
    args = parser.parse_args(argv)
    if args.node == -1:
        print("Please set a node number with --node", file=sys.stderr)
        return 1

    console = RaftConsole(RaftConfig(args.cluster_size, args.starting_port))
    server = console.get(args.node)
    stream: TcpStream | None = _connect(server)
    print("Connected to server. Type messages and press Enter to send")
    prompt = f"Node={server.address}:{server.port} > "
    try:
        for command in _prompted_lines(sys.stdin, prompt):
            if stream is None:
                stream = _connect(server)
            try:
                response = _exchange(stream, command)
            except OSError as exc:
                logger.error("%s", exc)
                response = None
            finally:
                stream.close()
                stream = None
            if response is None:
                print("no response from server", file=sys.stderr)
                continue
            print(f"server said: {response.text}")
            if response.text == GOODBYE:
                return 0
    except KeyboardInterrupt:
        pass
    finally:
        if stream is not None:
            stream.close()
    return 0