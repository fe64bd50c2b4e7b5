"""Consensus state of one node: log replication and leader election.

A node never talks to the network itself. Whatever it wants to send is put
on one of its outgoing queues, and whatever arrives is handed to
:meth:`RaftNode.receive`.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from raftkit.config import RaftConfig
from raftkit.raftlog import LogEntry, RaftLog

logger = logging.getLogger(__name__)

APPEND_ENTRIES_TYPE = 1
UNKNOWN_LEADER = -1


class NodeState(enum.IntEnum):
    LEADER = 0
    FOLLOWER = 1
    CANDIDATE = 2


@dataclass(frozen=True)
class AppendEntriesRPC:
    """Entries sent by a leader, anchored at ``prev_log_idx``.

    ``log_size`` is the size the receiver's log must have before the entries
    are added, that is ``prev_log_idx + 1``.
    """

    term: int = 0
    leader_id: int = 0
    prev_log_idx: int = 0
    prev_log_term: int = 0
    leader_commit: int = 0
    log_size: int = 0
    dest: int = 0
    entries: tuple[LogEntry, ...] = ()
    type: int = APPEND_ENTRIES_TYPE


@dataclass(frozen=True)
class AppendEntriesResponseRPC:
    success: bool = False
    term: int = 0
    match_index: int = 0
    from_node_id: int = 0
    to_node_id: int = 0


@dataclass(frozen=True)
class RequestVoteRPC:
    from_node_id: int = 0
    to_node_id: int = 0
    term: int = 0
    last_log_index: int = 0
    last_log_term: int = 0
    vote_granted: bool = False


@dataclass(frozen=True)
class RequestVoteResponseRPC:
    from_node_id: int = 0
    to_node_id: int = 0
    term: int = 0
    vote_granted: bool = False


@dataclass
class _Peer:
    next_log_idx: int = 1
    match_index: int = 0
    vote_granted: bool = False


class RaftNode:
    """The state of one node and what it knows of its peers.

    Outgoing traffic is queued on ``entries_buffer`` (leader),
    ``response_buffer`` and ``votes_response_buffer`` (follower) and
    ``votes_buffer`` (candidate).
    """

    def __init__(
        self,
        log: RaftLog,
        config: RaftConfig,
        my_id: int,
        my_term: int,
        state: NodeState = NodeState.FOLLOWER,
    ) -> None:
        self.state = state
        self.term = my_term
        self._log = log
        self._config = config
        self._id = my_id
        self._leader_id = UNKNOWN_LEADER
        self._commit_index = 0
        self._peers: dict[int, _Peer] = {server.id: _Peer() for server in config.get_all()}
        self.entries_buffer: deque[AppendEntriesRPC] = deque()
        self.response_buffer: deque[AppendEntriesResponseRPC] = deque()
        self.votes_buffer: deque[RequestVoteRPC] = deque()
        self.votes_response_buffer: deque[RequestVoteResponseRPC] = deque()

    @property
    def id(self) -> int:
        return self._id

    @property
    def config(self) -> RaftConfig:
        return self._config

    @property
    def leader_id(self) -> int:
        """The leader this node follows, or -1 before one is known."""
        return self._leader_id

    @property
    def commit_index(self) -> int:
        return self._commit_index

    @property
    def log(self) -> RaftLog:
        return self._log

    def hello_leader(self, leader_id: int) -> None:
        """Record ``leader_id`` as the current leader."""
        self._leader_id = leader_id

    def log_entries(self) -> list[LogEntry]:
        return self._log.entries

    def _peer(self, node_id: int) -> _Peer:
        return self._peers.setdefault(node_id, _Peer())

    # Sending

    def send(
        self,
        commands: Iterable[str] | None = None,
        response: AppendEntriesResponseRPC | None = None,
        request_vote: RequestVoteRPC | None = None,
    ) -> None:
        """Queue outgoing traffic according to the node's state.

        A leader appends ``commands`` to its log and queues one
        AppendEntriesRPC for every other peer (a heartbeat when there are no
        commands). A follower queues ``response``. A candidate votes for
        itself and queues ``request_vote`` filled in from its own term and log.
        """
        if self.state is NodeState.LEADER:
            self._send_append_entries(commands or ())
        elif self.state is NodeState.FOLLOWER:
            if response is not None:
                self.response_buffer.append(response)
        elif request_vote is not None:
            self._peer(self._id).vote_granted = True
            self.votes_buffer.append(
                dataclasses.replace(
                    request_vote,
                    term=self.term,
                    last_log_index=self._log.prev_log_idx,
                    last_log_term=self._log.prev_log_term,
                )
            )

    def _send_append_entries(self, commands: Iterable[str]) -> None:
        entries = tuple(LogEntry(self.term, command) for command in commands)
        prev_idx = self._log.prev_log_idx
        prev_term = self._log.prev_log_term
        size = len(self._log)

        if entries and not self._log.append_entries(
            self.term, self._id, prev_idx, prev_term, entries, self._commit_index
        ):
            logger.error("failed to insert log entry")

        me = self._peer(self._id)
        me.match_index = len(self._log)
        me.next_log_idx = len(self._log) + 1

        for peer_id in self._peers:
            if peer_id == self._id:
                continue
            self.entries_buffer.append(
                AppendEntriesRPC(
                    term=self.term,
                    leader_id=self._id,
                    prev_log_idx=prev_idx,
                    prev_log_term=prev_term,
                    leader_commit=self._log.prev_log_idx,
                    log_size=size,
                    dest=peer_id,
                    entries=entries,
                )
            )

    def replay(self, match_index: int, dest: int) -> None:
        """Queue one AppendEntriesRPC for ``dest`` per entry from ``match_index`` on."""
        for i in range(match_index, len(self._log)):
            entry = self._log.entry_at(i)
            previous = self._log.entry_at(i - 1)
            self.entries_buffer.append(
                AppendEntriesRPC(
                    term=entry.term,
                    leader_id=self._leader_id,
                    prev_log_idx=i - 1,
                    prev_log_term=previous.term,
                    leader_commit=self._commit_index,
                    log_size=i,
                    dest=dest,
                    entries=(entry,),
                )
            )

    # Receiving

    def receive(
        self,
        res: AppendEntriesResponseRPC | None = None,
        app: AppendEntriesRPC | None = None,
        request_vote: RequestVoteRPC | None = None,
        request_vote_response: RequestVoteResponseRPC | None = None,
    ) -> None:
        """Handle incoming traffic according to the node's state.

        Messages that make no sense in the current state are ignored. A
        candidate that receives entries becomes a follower.
        """
        if self.state is NodeState.LEADER:
            if res is not None:
                self._on_append_response(res)
        elif self.state is NodeState.FOLLOWER:
            if request_vote is not None:
                self._on_request_vote(request_vote)
            if app is not None:
                self._on_append_entries(app)
        else:
            if app is not None:
                self.state = NodeState.FOLLOWER
                self._on_append_entries(app)
                return
            if request_vote_response is not None:
                self._on_vote_response(request_vote_response)

    def _on_append_response(self, response: AppendEntriesResponseRPC) -> None:
        size = len(self._log)
        peer = self._peer(response.from_node_id)

        if response.success and response.match_index == size:
            peer.match_index = size
            peer.next_log_idx = size + 1
            caught_up = sum(1 for p in self._peers.values() if p.match_index >= size)
            if len(self._peers) // caught_up == 1:
                self._commit_index = size

        if not response.success:
            peer.match_index = response.match_index - 1
            peer.next_log_idx = response.match_index
            entry = self._log.entry_at(peer.match_index)
            previous = self._log.entry_at(peer.match_index - 1)
            self.entries_buffer.append(
                AppendEntriesRPC(
                    term=entry.term,
                    leader_id=self._leader_id,
                    prev_log_idx=peer.match_index - 1,
                    prev_log_term=previous.term,
                    leader_commit=self._commit_index,
                    log_size=peer.match_index,
                    dest=response.from_node_id,
                )
            )
        elif response.match_index < size:
            self.replay(response.match_index, response.from_node_id)

    def _on_request_vote(self, vote: RequestVoteRPC) -> None:
        granted = (
            vote.term >= self.term
            and not self._peer(self._id).vote_granted
            and vote.last_log_index >= self._log.prev_log_idx
        )
        logger.info("Sending vote response in to buffer...")
        self.votes_response_buffer.append(
            RequestVoteResponseRPC(
                from_node_id=self._id,
                to_node_id=vote.from_node_id,
                term=self.term,
                vote_granted=granted,
            )
        )

    def _on_append_entries(self, app: AppendEntriesRPC) -> None:
        ok = self._log.append_entries(
            app.term,
            app.leader_id,
            app.prev_log_idx,
            app.prev_log_term,
            app.entries,
            app.leader_commit,
        )
        if ok:
            response = AppendEntriesResponseRPC(
                success=True,
                term=app.term,
                match_index=len(self._log),
                from_node_id=self._id,
                to_node_id=self._leader_id,
            )
            self._commit_index = app.leader_commit
        else:
            response = AppendEntriesResponseRPC(
                success=False,
                term=app.prev_log_term,
                match_index=app.prev_log_idx,
                from_node_id=self._id,
                to_node_id=self._leader_id,
            )
        self.send(response=response)

    def _on_vote_response(self, response: RequestVoteResponseRPC) -> None:
        if response.to_node_id != self._id:
            raise ValueError(
                f"vote response for node {response.to_node_id} reached node {self._id}"
            )
        self._peer(response.from_node_id).vote_granted = response.vote_granted
        granted = sum(1 for p in self._peers.values() if p.vote_granted)
        if granted and len(self._peers) // granted == 1:
            self.hello_leader(self._id)
            self.state = NodeState.LEADER
            self.send()