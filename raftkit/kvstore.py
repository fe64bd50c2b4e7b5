"""A small key-value server with append-only snapshots.

Clients send header-framed text commands such as ``set key value``,
``get key`` and ``snapshot``; every command gets one reply.
"""

from __future__ import annotations

import argparse
import enum
import logging
import struct
import sys
import threading
from collections.abc import Iterator, MutableMapping
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from types import TracebackType
from typing import Protocol

from raftkit.net import ClientAcceptor, TcpListener

logger = logging.getLogger(__name__)

NOT_FOUND = "not found"
EXIT_COMMAND = "exit"

_SIZES = struct.Struct("<QQ")


class Operation(enum.Enum):
    """What a client asked for; the value is the operation's name."""

    GET = "get"
    SET = "set"
    SNAP = "snapshot"
    REST = "restore"


@dataclass(frozen=True)
class OperationExecution:
    """A parsed command."""

    op: Operation
    key: str | None = None
    value: str | None = None


class _Replier(Protocol):
    def send_message(self, message: str) -> None: ...


def set_key(store: MutableMapping[str, str], key: str, value: str) -> None:
    """Store ``value`` under ``key``; a key already present keeps its value."""
    store.setdefault(key, value)


def get_value(store: MutableMapping[str, str], key: str) -> str:
    """Return the value under ``key`` or ``"not found"``."""
    return store.get(key, NOT_FOUND)


def parse_message(message: str) -> OperationExecution:
    """Parse a command; anything unrecognised becomes a lookup of the empty key."""
    tokens = message.split()
    command = tokens[0].upper() if tokens else ""
    args = tokens[1:] + ["", ""]
    if command == "GET":
        return OperationExecution(Operation.GET, key=args[0])
    if command == "SET":
        return OperationExecution(Operation.SET, key=args[0], value=args[1])
    if command == "SNAPSHOT":
        return OperationExecution(Operation.SNAP)
    return OperationExecution(Operation.GET, key="")


def _iter_records(data: bytes) -> Iterator[tuple[str, str]]:
    offset = 0
    while offset < len(data):
        if offset + _SIZES.size > len(data):
            raise ValueError(f"truncated snapshot record header at byte {offset}")
        key_size, value_size = _SIZES.unpack_from(data, offset)
        offset += _SIZES.size
        end = offset + key_size + value_size
        if end > len(data):
            raise ValueError(f"truncated snapshot record body at byte {offset}")
        key = data[offset : offset + key_size].decode("utf-8")
        value = data[offset + key_size : end].decode("utf-8")
        offset = end
        yield key, value


class Snapshotter:
    """Appends the whole store to a file and reads it back.

    Each record is the key and value lengths as two little-endian 64-bit
    integers followed by the key and value bytes. On restore a later record
    for a key replaces an earlier one.
    """

    def __init__(self, path: str | PathLike[str]) -> None:
        self._path = Path(path)
        self._file = open(self._path, "a+b")

    @property
    def path(self) -> Path:
        return self._path

    def snapshot(self, store: MutableMapping[str, str]) -> None:
        """Append every pair of ``store`` in key order."""
        for key, value in sorted(store.items()):
            key_bytes = key.encode("utf-8")
            value_bytes = value.encode("utf-8")
            self._file.write(
                _SIZES.pack(len(key_bytes), len(value_bytes)) + key_bytes + value_bytes
            )
            self._file.flush()

    def restore(self, store: MutableMapping[str, str]) -> None:
        """Replace the contents of ``store`` with what the file holds.

        Raises ValueError if the file ends in the middle of a record.
        """
        self._file.flush()
        self._file.seek(0)
        restored = dict(_iter_records(self._file.read()))
        store.clear()
        store.update(restored)

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> Snapshotter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _require(field: str | None, name: str) -> str:
    if field is None:
        raise ValueError(f"command has no {name}")
    return field


def run_command(
    data: OperationExecution,
    store: MutableMapping[str, str],
    acceptor: _Replier,
    snapshotter: Snapshotter,
) -> None:
    """Carry out one command against ``store`` and send the reply."""
    if data.op is Operation.GET:
        acceptor.send_message(get_value(store, _require(data.key, "key")))
    elif data.op is Operation.SET:
        key = _require(data.key, "key")
        set_key(store, key, _require(data.value, "value"))
        acceptor.send_message(key)
    elif data.op is Operation.SNAP:
        snapshotter.snapshot(store)
        acceptor.send_message("wrote snapshot")
    elif data.op is Operation.REST:
        snapshotter.restore(store)
        acceptor.send_message("restored from snapshot")


def _handle_client(
    acceptor: ClientAcceptor,
    store: MutableMapping[str, str],
    snapshotter: Snapshotter,
    lock: threading.Lock,
) -> None:
    with acceptor:
        while True:
            try:
                message = acceptor.receive_message()
            except (ConnectionError, ValueError):
                return
            text = message.split("\0", 1)[0]
            if not text:
                continue
            if text == EXIT_COMMAND:
                return
            data = parse_message(text)
            logger.info(text)
            logger.info(data.op.value)
            with lock:
                run_command(data, store, acceptor, snapshotter)


def serve(port: int, snapshot_file: str | PathLike[str]) -> None:
    """Accept clients on ``port`` forever, one thread per client."""
    store: dict[str, str] = {}
    lock = threading.Lock()
    with TcpListener(port) as listener, Snapshotter(snapshot_file) as snapshotter:
        logger.info("server is accepting connections...")
        while True:
            acceptor = listener.accept()
            logger.info("client connected...")
            threading.Thread(
                target=_handle_client,
                args=(acceptor, store, snapshotter, lock),
                daemon=True,
            ).start()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Key-value server.")
    parser.add_argument("--snapshot_file", default="", help="Snapshot file path on disk")
    parser.add_argument("--port", type=int, default=0, help="Port for TCP listener")
    args = parser.parse_args(argv)
    if args.port == 0:
        print("ERROR: --port is required", file=sys.stderr)
        return 1
    if not args.snapshot_file:
        print("ERROR: --snapshot_file is required", file=sys.stderr)
        return 1
    logging.basicConfig(level=logging.INFO)
    try:
        serve(args.port, args.snapshot_file)
    except KeyboardInterrupt:
        return 0
    return 0