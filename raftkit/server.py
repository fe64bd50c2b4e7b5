"""A Raft node served over TCP, and the command that starts one.

Each message travels on its own connection as one length-framed buffer.
A leader answers console requests on the connection they came in on.
"""

from __future__ import annotations

import argparse
import logging
import random
import threading
import time
from collections import deque

from raftkit.config import RaftConfig
from raftkit.messages import (
    ConsoleRequest,
    decode_message,
    encode_append_entries,
    encode_append_entries_response,
    encode_console_response,
    encode_request_vote,
    encode_request_vote_response,
)
from raftkit.net import ClientAcceptor, TcpListener, TcpStream
from raftkit.node import (
    AppendEntriesResponseRPC,
    AppendEntriesRPC,
    NodeState,
    RaftNode,
    RequestVoteResponseRPC,
    RequestVoteRPC,
)
from raftkit.raftlog import InMemoryRaftLog, LogEntry

logger = logging.getLogger(__name__)

ELECTION_TIMEOUT_MS = (5000, 10000)
HEARTBEAT_INTERVAL = 0.1
STATUS_INTERVAL = 10.0
POLL_INTERVAL = 0.2
PRODUCER_INTERVAL = 0.01
CONNECTION_TIMEOUT = 5.0

EXIT_COMMAND = "exit"
SHOW_LOG_COMMAND = "show log"
GOODBYE = "Goodbye"
OK = "OK"

CLUSTER_SIZE = 5
STARTING_PORT = 10000


class RaftServer:
    """Runs one RaftNode: accepts messages, sends its queued traffic and holds elections."""

    RETRY_DELAY = 1.0

    def __init__(self, node: RaftNode) -> None:
        self._node = node
        self._lock = threading.RLock()
        self._stopped = threading.Event()
        self._listener: TcpListener | None = None
        self._console_buffer: deque[bytes] = deque()
        self._random = random.Random()

    @property
    def node(self) -> RaftNode:
        return self._node

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    # State changes, mainly for debugging

    def become_leader(self) -> None:
        logger.info("Becoming leader")
        with self._lock:
            self._node.hello_leader(self._node.id)
            self._node.state = NodeState.LEADER

    def become_follower(self, leader_id: int) -> None:
        logger.info("Becoming follower for %d", leader_id)
        with self._lock:
            self._node.hello_leader(leader_id)
            self._node.state = NodeState.FOLLOWER

    # Serving

    def accept(self) -> ClientAcceptor:
        """Accept one connection; RuntimeError if the server is not listening."""
        listener = self._listener
        if listener is None:
            raise RuntimeError("server is not listening")
        return listener.accept()

    def start(self) -> None:
        """Listen on this node's port and serve until :meth:`stop` is called."""
        node = self._node
        me = node.config.get_one_by_index(node.id)
        logger.info("Starting Raft Server...")
        logger.info(
            "Node info: id: %d, curr_term: %d, curr_log_size: %d, curr_last_index: %d",
            node.id,
            node.term,
            len(node.log_entries()),
            len(node.log_entries()) - 1,
        )
        listener = TcpListener(me.port)
        self._listener = listener
        workers = [
            threading.Thread(target=self._produce_messages, daemon=True),
            threading.Thread(target=self._heartbeat, daemon=True),
            threading.Thread(target=self._report_status, daemon=True),
        ]
        for worker in workers:
            worker.start()
        try:
            while not self._stopped.is_set():
                if node.state is NodeState.LEADER:
                    self._serve_as_leader()
                else:
                    self._serve_as_follower()
        finally:
            self._stopped.set()
            self._listener = None
            listener.close()
            for worker in workers:
                worker.join()

    def stop(self) -> None:
        """Ask a running server to stop; pending retries give up."""
        logger.info("shutting down server...")
        self._stopped.set()

    def _accept_within(self, deadline: float) -> ClientAcceptor | None:
        listener = self._listener
        if listener is None:
            return None
        while not self._stopped.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            listener.socket.settimeout(min(remaining, POLL_INTERVAL))
            try:
                return listener.accept()
            except TimeoutError:
                continue
            except OSError:
                if self._stopped.is_set():
                    return None
                raise
        return None

    def _serve_as_leader(self) -> None:
        acceptor = self._accept_within(time.monotonic() + POLL_INTERVAL)
        if acceptor is not None:
            threading.Thread(
                target=self._handle_connection, args=(acceptor,), daemon=True
            ).start()

    def _serve_as_follower(self) -> None:
        timeout_ms = self._random.randint(*ELECTION_TIMEOUT_MS)
        acceptor = self._accept_within(time.monotonic() + timeout_ms / 1000)
        if acceptor is None:
            if self._stopped.is_set():
                return
            logger.info("Accept() timed out after %d ms, becoming a candidate", timeout_ms)
            self.try_election()
            logger.info("Election votes sent")
            return
        self._handle_connection(acceptor)

    def _handle_connection(self, acceptor: ClientAcceptor) -> None:
        with acceptor:
            acceptor.socket.settimeout(CONNECTION_TIMEOUT)
            try:
                msg = acceptor.receive_buffer()
            except OSError as exc:
                logger.error("failed to read message: %s", exc)
                return
            with self._lock:
                self.receive_message(msg)
                replies = list(self._console_buffer)
                self._console_buffer.clear()
            for reply in replies:
                try:
                    acceptor.send_buffer(reply)
                except OSError as exc:
                    logger.error("failed to answer console: %s", exc)
                    return

    # Incoming traffic

    def receive_message(self, msg: bytes):
        """Decode ``msg`` and hand it to the node; return the decoded message.

        Returns None for a buffer that holds no valid message.
        """
        if not msg:
            logger.error("Received invalid message buffer: size=%d", len(msg))
            return None
        try:
            message = decode_message(msg)
        except ValueError as exc:
            logger.error("Failed to get message from buffer: %s", exc)
            return None

        node = self._node
        with self._lock:
            try:
                if message is None:
                    logger.debug("Received NONE message type")
                elif isinstance(message, AppendEntriesRPC):
                    node.receive(app=message)
                elif isinstance(message, AppendEntriesResponseRPC):
                    node.receive(res=message)
                elif isinstance(message, RequestVoteRPC):
                    logger.info("Got a vote request")
                    node.receive(request_vote=message)
                elif isinstance(message, RequestVoteResponseRPC):
                    logger.info("Got a vote response")
                    node.receive(request_vote_response=message)
                elif isinstance(message, ConsoleRequest):
                    if node.state is NodeState.LEADER:
                        self.receive_console_message(message.command)
                else:
                    logger.warning("Unexpected message: %r", message)
            except (IndexError, ValueError) as exc:
                logger.error("Exception when processing message: %s", exc)
        return message

    def receive_console_message(self, command: str) -> list[bytes]:
        """Add ``command`` to the log and return the encoded replies for the console.

        ``exit`` is answered with Goodbye before the usual OK; ``show log``
        also prints the log.
        """
        replies: list[bytes] = []
        with self._lock:
            if command == EXIT_COMMAND:
                replies.append(encode_console_response(GOODBYE))
            if command == SHOW_LOG_COMMAND:
                shown = "".join(
                    f"{{{entry.term}, {entry.command}}} "
                    for entry in self._node.log_entries()
                )
                print(f"Current Log: [ {shown}]")
            self._node.send([command])
            replies.append(encode_console_response(OK))
            self._console_buffer.extend(replies)
        return replies

    # Outgoing traffic

    def try_election(self) -> int:
        """Become a candidate for the next term and ask every peer for its vote.

        Each vote request gets one delivery attempt; return how many arrived.
        """
        node = self._node
        with self._lock:
            node.state = NodeState.CANDIDATE
            node.term += 1
            for server in node.config.get_all():
                if server.id != node.id:
                    node.send(
                        request_vote=RequestVoteRPC(
                            from_node_id=node.id, to_node_id=server.id, term=node.term
                        )
                    )
            votes = list(node.votes_buffer)
            node.votes_buffer.clear()

        delivered = 0
        for vote in votes:
            logger.info(
                "voting from: %d to: %d term: %d",
                vote.from_node_id,
                vote.to_node_id,
                vote.term,
            )
            if self._deliver(vote.to_node_id, encode_request_vote(vote)):
                delivered += 1
        return delivered

    def _deliver(self, node_id: int, payload: bytes) -> bool:
        target = self._node.config.get_one_by_index(node_id)
        try:
            with TcpStream(target.address, target.port) as stream:
                stream.connect()
                stream.send_buffer(payload)
        except OSError as exc:
            logger.debug("could not reach node %d: %s", node_id, exc)
            return False
        return True

    def send_message(self, node_id: int, payload: bytes) -> bool:
        """Send ``payload`` to node ``node_id``, retrying until it arrives.

        Returns False if the server is stopped before delivery succeeds.
        Raises IndexError for a node that is not in the cluster.
        """
        self._node.config.get_one_by_index(node_id)
        while True:
            if self._deliver(node_id, payload):
                return True
            if self._stopped.wait(self.RETRY_DELAY):
                return False

    def _drain_outgoing(self) -> list[tuple[int, bytes]]:
        node = self._node
        cluster_size = len(node.config)
        outgoing: list[tuple[int, bytes]] = []
        with self._lock:
            while node.entries_buffer:
                rpc = node.entries_buffer.popleft()
                for entry in rpc.entries:
                    logger.info(
                        "Sending entry = (term %d, command %s)", entry.term, entry.command
                    )
                outgoing.append((rpc.dest, encode_append_entries(rpc)))
            while node.votes_response_buffer:
                vote = node.votes_response_buffer.popleft()
                logger.info(
                    "I have a response to send, did this vote succeed? %s, sending to %d",
                    vote.vote_granted,
                    vote.to_node_id,
                )
                outgoing.append((vote.to_node_id, encode_request_vote_response(vote)))
            while node.response_buffer:
                response = node.response_buffer.popleft()
                outgoing.append(
                    (response.to_node_id, encode_append_entries_response(response))
                )
        valid = []
        for node_id, payload in outgoing:
            if 0 <= node_id < cluster_size:
                valid.append((node_id, payload))
            else:
                logger.warning("dropping message for unknown node %d", node_id)
        return valid

    def _produce_messages(self) -> None:
        while not self._stopped.wait(PRODUCER_INTERVAL):
            for node_id, payload in self._drain_outgoing():
                threading.Thread(
                    target=self.send_message, args=(node_id, payload), daemon=True
                ).start()

    def _heartbeat(self) -> None:
        while not self._stopped.wait(HEARTBEAT_INTERVAL):
            with self._lock:
                if self._node.state is NodeState.LEADER:
                    self._node.send([])

    def _report_status(self) -> None:
        while not self._stopped.wait(STATUS_INTERVAL):
            with self._lock:
                state = self._node.state
                entries = self._node.log_entries()
            logger.info("Node State: %s", state.name)
            for entry in entries:
                logger.info("LogEntry: [ %d, %s ]", entry.term, entry.command)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Raft server node.")
    parser.add_argument("--node", type=int, default=0, help="Node to start (default: 0)")
    parser.add_argument(
        "--leader_id", type=int, default=0, help="Leader to assume (debugging)"
    )
    parser.add_argument(
        "--is_leader", type=int, default=1, help="Start as leader (debugging, 1 or 0)"
    )
    parser.add_argument("--host_address", default="localhost", help="Host application address")
    parser.add_argument("--host_port", type=int, default=8088, help="Host application port")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    log = InMemoryRaftLog(LogEntry(0, ""))
    config = RaftConfig(CLUSTER_SIZE, STARTING_PORT)
    node = RaftNode(log, config, args.node, 1, NodeState.FOLLOWER)
    server = RaftServer(node)
    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()
    return 0