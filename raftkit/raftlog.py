"""The replicated log kept by each node."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogEntry:
    """A command together with the term in which a leader received it."""

    term: int
    command: str


class RaftLog(ABC):
    """Interface of a node's log."""

    @abstractmethod
    def append_entries(
        self,
        term: int,
        leader_id: int,
        prev_log_idx: int,
        prev_log_term: int,
        entries: Iterable[LogEntry],
        leader_commit: int,
    ) -> bool: ...

    @property
    @abstractmethod
    def entries(self) -> list[LogEntry]: ...

    @property
    @abstractmethod
    def term(self) -> int: ...

    @property
    @abstractmethod
    def prev_log_idx(self) -> int: ...

    @property
    @abstractmethod
    def prev_log_term(self) -> int: ...

    @abstractmethod
    def __len__(self) -> int: ...

    @abstractmethod
    def entry_at(self, offset: int) -> LogEntry: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def restore(self) -> None: ...

    @abstractmethod
    def truncate(self, offset: int) -> None: ...


class InMemoryRaftLog(RaftLog):
    """A log held in a list, usually seeded with one sentinel entry."""

    def __init__(self, entry: LogEntry | None = None) -> None:
        self._buffer: list[LogEntry] = [] if entry is None else [entry]
        self._term = 0
        self.leader_id = 0
        # Index of the entry before the last one, as of the last append.
        self._last_append_idx = 0
        self._saved = self._state()

    def _state(self) -> tuple[list[LogEntry], int, int, int]:
        return (list(self._buffer), self._term, self.leader_id, self._last_append_idx)

    def append_entries(
        self,
        term: int,
        leader_id: int,
        prev_log_idx: int,
        prev_log_term: int,
        entries: Iterable[LogEntry],
        leader_commit: int,
    ) -> bool:
        """Append ``entries`` after ``prev_log_idx``; return whether they were taken.

        The request is refused when its term is older than the log's, when
        there is no entry at ``prev_log_idx`` or when that entry's term is
        not ``prev_log_term``. An entry already present in the same term is
        accepted without change; a conflicting tail is cut off at
        ``prev_log_idx`` before appending.
        """
        if term < self._term:
            logger.warning("term [%d] < current term [%d]", term, self._term)
            return False
        if not 0 <= prev_log_idx < len(self._buffer):
            logger.warning(
                "log size [%d] has no entry at prev_log_idx [%d]",
                len(self._buffer),
                prev_log_idx,
            )
            return False
        anchor = self._buffer[prev_log_idx]
        if anchor.term != prev_log_term:
            logger.warning(
                "term at prev_log_idx [%d] != prev_log_term [%d]",
                anchor.term,
                prev_log_term,
            )
            return False
        if self._last_append_idx > prev_log_idx:
            if anchor.term == term:
                return True
            self.truncate(prev_log_idx)

        self._buffer.extend(entries)
        self._term = term
        self.leader_id = leader_id
        self._last_append_idx = max(len(self._buffer) - 2, 0)
        return True

    def truncate(self, offset: int) -> None:
        """Keep only the entries before ``offset``."""
        self._buffer = self._buffer[: max(offset, 0)]

    def entry_at(self, offset: int) -> LogEntry:
        if not 0 <= offset < len(self._buffer):
            raise IndexError(f"no log entry at {offset}")
        return self._buffer[offset]

    def commit(self) -> None:
        """Record the current state as the one ``restore`` returns to."""
        self._saved = self._state()

    def restore(self) -> None:
        """Return to the state recorded by the last ``commit``."""
        buffer, term, leader_id, last_append_idx = self._saved
        self._buffer = list(buffer)
        self._term = term
        self.leader_id = leader_id
        self._last_append_idx = last_append_idx

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._buffer)

    @property
    def term(self) -> int:
        return self._term

    @property
    def prev_log_idx(self) -> int:
        """Index of the last entry."""
        return len(self._buffer) - 1

    @property
    def prev_log_term(self) -> int:
        """Term of the last entry; IndexError when the log is empty."""
        return self._buffer[-1].term

    def __len__(self) -> int:
        return len(self._buffer)