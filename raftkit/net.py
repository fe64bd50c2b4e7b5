"""TCP and UDP helpers with the two framings used across the package.

Messages are text framed by a 10-byte header that holds the decimal length
of the body, padded with NUL bytes. Buffers are raw bytes framed by a 4-byte
big-endian length.
"""

from __future__ import annotations

import logging
import re
import socket
import struct
from types import TracebackType

logger = logging.getLogger(__name__)

HEADER_SIZE = 10
LISTEN_BACKLOG = 10
DATAGRAM_SIZE = 1024

_LENGTH = struct.Struct("!I")
_HEADER_DIGITS = re.compile(rb"\s*([+-]?\d+)")


def _encode_header(length: int) -> bytes:
    digits = str(length).encode("ascii")
    if len(digits) > HEADER_SIZE:
        raise ValueError(f"message of {length} bytes does not fit the header")
    return digits.ljust(HEADER_SIZE, b"\0")


def _parse_header(header: bytes) -> int:
    match = _HEADER_DIGITS.match(header)
    if match is None:
        raise ValueError(f"invalid message header {header!r}")
    size = int(match.group(1))
    if size < 0:
        raise ValueError(f"negative message length in header {header!r}")
    return size


def _recv_exactly(sock: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            raise ConnectionError(
                f"connection closed with {remaining} of {size} bytes unread"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _as_text(data: bytes) -> str:
    return data.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _send_text(sock: socket.socket, message: str) -> None:
    sock.sendall(message.encode("utf-8"))


def _send_framed_text(sock: socket.socket, message: str) -> None:
    payload = message.encode("utf-8")
    sock.sendall(_encode_header(len(payload)) + payload)


def _receive_framed_text(sock: socket.socket) -> str:
    size = _parse_header(_recv_exactly(sock, HEADER_SIZE))
    return _recv_exactly(sock, size).decode("utf-8", errors="replace")


def _send_framed_bytes(sock: socket.socket, data: bytes) -> None:
    payload = bytes(data)
    sock.sendall(_LENGTH.pack(len(payload)) + payload)


def _receive_framed_bytes(sock: socket.socket) -> bytes:
    try:
        (size,) = _LENGTH.unpack(_recv_exactly(sock, _LENGTH.size))
    except ConnectionError:
        logger.error("recv() failed")
        return b""
    if size == 0:
        return b""
    try:
        return _recv_exactly(sock, size)
    except ConnectionError:
        logger.error("recv() failed")
        return b""


class _SocketOwner:
    """Owns one socket and closes it on exit from a ``with`` block."""

    _sock: socket.socket

    @property
    def socket(self) -> socket.socket:
        return self._sock

    def close(self) -> None:
        self._sock.close()

    def __enter__(self):
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class ClientAcceptor(_SocketOwner):
    """The server side of an accepted TCP connection."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def close(self) -> None:
        """Close the connection."""
        self._sock.close()

    def send(self, message: str) -> None:
        """Send text with no framing."""
        _send_text(self._sock, message)

    def send_message(self, message: str) -> None:
        """Send text behind a 10-byte decimal length header."""
        _send_framed_text(self._sock, message)

    def receive_message(self) -> str:
        """Read one header-framed text message.

        Raises ConnectionError if the peer closes early and ValueError if the
        header holds no length.
        """
        return _receive_framed_text(self._sock)

    def send_buffer(self, data: bytes) -> None:
        """Send bytes behind a 4-byte big-endian length."""
        _send_framed_bytes(self._sock, data)

    def receive_buffer(self) -> bytes:
        """Read one length-framed buffer; empty if it is empty or cut short."""
        return _receive_framed_bytes(self._sock)


class TcpListener(_SocketOwner):
    """A listening TCP socket bound to every interface."""

    def __init__(self, port: int, host: str = "") -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            sock.listen(LISTEN_BACKLOG)
        except OSError:
            sock.close()
            raise
        self._sock = sock

    @property
    def port(self) -> int:
        """The port actually bound, useful when 0 was asked for."""
        return self._sock.getsockname()[1]

    def accept(self) -> ClientAcceptor:
        conn, _ = self._sock.accept()
        return ClientAcceptor(conn)

    def close(self) -> None:
        """Stop listening."""
        self._sock.close()


def _resolve(address: str, port: int, kind: int) -> tuple[str, int]:
    try:
        infos = socket.getaddrinfo(address, port, socket.AF_INET, kind)
    except socket.gaierror as exc:
        raise OSError(f"address lookup failure for {address!r}") from exc
    return infos[0][4]


class TcpStream(_SocketOwner):
    """The client side of a TCP connection, connected on demand."""

    def __init__(self, address: str, port: int) -> None:
        self._address = _resolve(address, port, socket.SOCK_STREAM)
        self._sock = self._new_socket()

    @staticmethod
    def _new_socket() -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return sock

    def connect(self) -> None:
        """Connect to the peer; after a failure a later call may retry."""
        try:
            self._sock.connect(self._address)
        except OSError:
            self._sock.close()
            self._sock = self._new_socket()
            raise

    def send(self, message: str) -> None:
        """Send text with no framing."""
        _send_text(self._sock, message)

    def receive(self, size: int) -> str:
        """Read at most ``size`` bytes as text, up to the first NUL."""
        return _as_text(self._sock.recv(size))

    def receive_message(self) -> str:
        """Read one header-framed text message.

        Raises ConnectionError if the peer closes early and ValueError if the
        header holds no length.
        """
        return _receive_framed_text(self._sock)

    def receive_buffer(self) -> bytes:
        """Read one length-framed buffer; empty if it is empty or cut short."""
        return _receive_framed_bytes(self._sock)

    def send_buffer(self, data: bytes) -> None:
        """Send bytes behind a 4-byte big-endian length."""
        _send_framed_bytes(self._sock, data)

    def send_message(self, message: str) -> None:
        """Send text behind a 10-byte decimal length header."""
        _send_framed_text(self._sock, message)

    def close(self) -> None:
        """Close the connection."""
        self._sock.close()


class UdpStream(_SocketOwner):
    """A UDP socket connected to one peer."""

    def __init__(self, address: str, port: int) -> None:
        peer = _resolve(address, port, socket.SOCK_DGRAM)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.connect(peer)
        except OSError:
            sock.close()
            raise
        self._sock = sock

    def send(self, message: str) -> None:
        """Send text as a single datagram."""
        self._sock.send(message.encode("utf-8"))

    def send_message(self, message: str) -> None:
        """Send a header datagram followed by a body datagram."""
        payload = message.encode("utf-8")
        self._sock.send(_encode_header(len(payload)))
        self._sock.send(payload)

    def receive_message(self) -> str:
        """Read a header datagram then a body datagram of that length."""
        size = _parse_header(self._sock.recv(HEADER_SIZE))
        body = self._sock.recv(max(size, 1))[:size]
        return body.decode("utf-8", errors="replace")

    def close(self) -> None:
        """Close the socket."""
        self._sock.close()


class UdpListener(_SocketOwner):
    """A UDP socket bound to every interface."""

    def __init__(self, port: int, host: str = "") -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        self._sock = sock

    @property
    def port(self) -> int:
        return self._sock.getsockname()[1]

    def recv(self) -> str:
        """Read one datagram of up to 1024 bytes as text."""
        return _as_text(self._sock.recv(DATAGRAM_SIZE))

    def close(self) -> None:
        """Close the socket."""
        self._sock.close()