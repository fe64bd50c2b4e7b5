"""Binary encoding of the messages exchanged between nodes and consoles.

Every message starts with one byte naming its type, followed by the fields
of that type. Integers are signed 32-bit big-endian. Booleans are one byte.
Strings are a 4-byte big-endian length followed by UTF-8 bytes. A list of log
entries is a 4-byte count followed by each entry's term and command.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Union

from raftkit.node import (
    AppendEntriesResponseRPC,
    AppendEntriesRPC,
    RequestVoteResponseRPC,
    RequestVoteRPC,
)
from raftkit.raftlog import LogEntry

_TAG = struct.Struct("!B")
_INT = struct.Struct("!i")
_LENGTH = struct.Struct("!I")
_BOOL = struct.Struct("!?")


class MessageType(enum.IntEnum):
    """The tag that opens every encoded message."""

    NONE = 0
    APPEND_ENTRIES_REQUEST = 1
    APPEND_ENTRIES_RESPONSE = 2
    REQUEST_VOTE_REQUEST = 3
    REQUEST_VOTE_RESPONSE = 4
    CONSOLE_REQUEST = 5
    CONSOLE_RESPONSE = 6


@dataclass(frozen=True)
class ConsoleRequest:
    """A command typed at a console."""

    command: str


@dataclass(frozen=True)
class ConsoleResponse:
    """A server's reply to a console."""

    text: str


Message = Union[
    AppendEntriesRPC,
    AppendEntriesResponseRPC,
    RequestVoteRPC,
    RequestVoteResponseRPC,
    ConsoleRequest,
    ConsoleResponse,
    None,
]


class _Writer:
    def __init__(self, kind: MessageType) -> None:
        self._parts: list[bytes] = [_TAG.pack(kind)]

    def int(self, value: int) -> _Writer:
        self._parts.append(_INT.pack(value))
        return self

    def bool(self, value: bool) -> _Writer:
        self._parts.append(_BOOL.pack(bool(value)))
        return self

    def str(self, value: str) -> _Writer:
        raw = value.encode("utf-8")
        self._parts.append(_LENGTH.pack(len(raw)))
        self._parts.append(raw)
        return self

    def bytes(self) -> bytes:
        return b"".join(self._parts)


class _Reader:
    def __init__(self, data: bytes, expected: MessageType) -> None:
        self._data = bytes(data)
        self._offset = 0
        kind = message_type(self._data)
        if kind is not expected:
            raise ValueError(f"expected a {expected.name} message, got {kind.name}")
        self._offset = _TAG.size

    def _unpack(self, fmt: struct.Struct):
        if self._offset + fmt.size > len(self._data):
            raise ValueError(f"message truncated at byte {self._offset}")
        (value,) = fmt.unpack_from(self._data, self._offset)
        self._offset += fmt.size
        return value

    def int(self) -> int:
        return self._unpack(_INT)

    def bool(self) -> bool:
        return self._unpack(_BOOL)

    def count(self) -> int:
        return self._unpack(_LENGTH)

    def str(self) -> str:
        size = self._unpack(_LENGTH)
        end = self._offset + size
        if end > len(self._data):
            raise ValueError(f"string truncated at byte {self._offset}")
        raw = self._data[self._offset : end]
        self._offset = end
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError("string is not valid UTF-8") from exc

    def finish(self) -> None:
        if self._offset != len(self._data):
            raise ValueError(
                f"{len(self._data) - self._offset} unexpected bytes after message"
            )


def message_type(data: bytes) -> MessageType:
    """Return the type of an encoded message; ValueError if there is none."""
    if not data:
        raise ValueError("empty message")
    try:
        return MessageType(data[0])
    except ValueError as exc:
        raise ValueError(f"unknown message type {data[0]}") from exc


def encode_append_entries(rpc: AppendEntriesRPC) -> bytes:
    writer = (
        _Writer(MessageType.APPEND_ENTRIES_REQUEST)
        .int(rpc.type)
        .int(rpc.term)
        .int(rpc.leader_id)
        .int(rpc.prev_log_idx)
        .int(rpc.prev_log_term)
        .int(rpc.leader_commit)
        .int(rpc.dest)
    )
    writer._parts.append(_LENGTH.pack(len(rpc.entries)))
    for entry in rpc.entries:
        writer.int(entry.term).str(entry.command)
    return writer.bytes()


def decode_append_entries(data: bytes) -> AppendEntriesRPC:
    """Decode an append-entries request; ``log_size`` is ``prev_log_idx + 1``."""
    reader = _Reader(data, MessageType.APPEND_ENTRIES_REQUEST)
    kind = reader.int()
    term = reader.int()
    leader_id = reader.int()
    prev_log_idx = reader.int()
    prev_log_term = reader.int()
    leader_commit = reader.int()
    dest = reader.int()
    entries = tuple(
        LogEntry(reader.int(), reader.str()) for _ in range(reader.count())
    )
    reader.finish()
    return AppendEntriesRPC(
        term=term,
        leader_id=leader_id,
        prev_log_idx=prev_log_idx,
        prev_log_term=prev_log_term,
        leader_commit=leader_commit,
        log_size=prev_log_idx + 1,
        dest=dest,
        entries=entries,
        type=kind,
    )


def encode_append_entries_response(rpc: AppendEntriesResponseRPC) -> bytes:
    return (
        _Writer(MessageType.APPEND_ENTRIES_RESPONSE)
        .bool(rpc.success)
        .int(rpc.term)
        .int(rpc.match_index)
        .int(rpc.from_node_id)
        .int(rpc.to_node_id)
        .bytes()
    )


def decode_append_entries_response(data: bytes) -> AppendEntriesResponseRPC:
    reader = _Reader(data, MessageType.APPEND_ENTRIES_RESPONSE)
    rpc = AppendEntriesResponseRPC(
        success=reader.bool(),
        term=reader.int(),
        match_index=reader.int(),
        from_node_id=reader.int(),
        to_node_id=reader.int(),
    )
    reader.finish()
    return rpc


def encode_request_vote(rpc: RequestVoteRPC) -> bytes:
    return (
        _Writer(MessageType.REQUEST_VOTE_REQUEST)
        .int(rpc.from_node_id)
        .int(rpc.to_node_id)
        .int(rpc.term)
        .int(rpc.last_log_index)
        .int(rpc.last_log_term)
        .bytes()
    )


def decode_request_vote(data: bytes) -> RequestVoteRPC:
    """Decode a vote request; ``vote_granted`` is always true on arrival."""
    reader = _Reader(data, MessageType.REQUEST_VOTE_REQUEST)
    rpc = RequestVoteRPC(
        from_node_id=reader.int(),
        to_node_id=reader.int(),
        term=reader.int(),
        last_log_index=reader.int(),
        last_log_term=reader.int(),
        vote_granted=True,
    )
    reader.finish()
    return rpc


def encode_request_vote_response(rpc: RequestVoteResponseRPC) -> bytes:
    return (
        _Writer(MessageType.REQUEST_VOTE_RESPONSE)
        .int(rpc.from_node_id)
        .int(rpc.to_node_id)
        .int(rpc.term)
        .bool(rpc.vote_granted)
        .bytes()
    )


def decode_request_vote_response(data: bytes) -> RequestVoteResponseRPC:
    reader = _Reader(data, MessageType.REQUEST_VOTE_RESPONSE)
    rpc = RequestVoteResponseRPC(
        from_node_id=reader.int(),
        to_node_id=reader.int(),
        term=reader.int(),
        vote_granted=reader.bool(),
    )
    reader.finish()
    return rpc


def encode_console_request(command: str) -> bytes:
    return _Writer(MessageType.CONSOLE_REQUEST).str(command).bytes()


def _decode_console_request(data: bytes) -> ConsoleRequest:
    reader = _Reader(data, MessageType.CONSOLE_REQUEST)
    request = ConsoleRequest(reader.str())
    reader.finish()
    return request


def encode_console_response(text: str) -> bytes:
    return _Writer(MessageType.CONSOLE_RESPONSE).str(text).bytes()


def _decode_console_response(data: bytes) -> ConsoleResponse:
    reader = _Reader(data, MessageType.CONSOLE_RESPONSE)
    response = ConsoleResponse(reader.str())
    reader.finish()
    return response


def _decode_none(data: bytes) -> None:
    _Reader(data, MessageType.NONE).finish()


_DECODERS = {
    MessageType.NONE: _decode_none,
    MessageType.APPEND_ENTRIES_REQUEST: decode_append_entries,
    MessageType.APPEND_ENTRIES_RESPONSE: decode_append_entries_response,
    MessageType.REQUEST_VOTE_REQUEST: decode_request_vote,
    MessageType.REQUEST_VOTE_RESPONSE: decode_request_vote_response,
    MessageType.CONSOLE_REQUEST: _decode_console_request,
    MessageType.CONSOLE_RESPONSE: _decode_console_response,
}


def decode_message(data: bytes) -> Message:
    """Decode any message by its type; a NONE message decodes to ``None``.

    Raises ValueError if the data is empty, of unknown type or malformed.
    """
    return _DECODERS[message_type(data)](data)