# raftkit

A compact Raft implementation with the pieces around it: an in-memory
replicated log (`raftkit.raftlog`), a node state machine with leader,
follower and candidate states (`raftkit.node`), a binary wire format for the
Raft and console messages (`raftkit.messages`), a TCP server that runs a node
(`raftkit.server`) and an interactive console that sends commands to it
(`raftkit.console`). Alongside it sit a small snapshotting key-value server
(`raftkit.kvstore`), a two-direction traffic signal controller
(`raftkit.traffic`), an echo server and client (`raftkit.echo`) built on the
same socket helpers (`raftkit.net`), and a few threading examples
(`raftkit.demos`).

The package has no third-party dependencies.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Running a Raft cluster

`raftkit-node` runs a five-node cluster layout on `localhost`: node 0 listens
on port 10000 and each further node 1000 ports higher. Start each node in its
own terminal with its node number:

```
raftkit-node --node 0
raftkit-node --node 1
```

Nodes start as followers in term 1. A follower that receives no connection
within a random timeout of 5 to 10 seconds becomes a candidate for the next
term and sends a vote request to every other node. A candidate that collects
votes from more than half of the cluster becomes leader and from then on
sends a heartbeat to every peer every 100 ms. Every 10 seconds each node logs
its state and its log entries. Stop a node with Ctrl-C.

Attach a console to a node and type commands:

```
raftkit-console --node 0
```

The console also takes `--cluster_size` and `--starting_port` (defaults 5
and 10000). Each command goes to the node on its own connection. Only the
leader answers: it appends the command to its log, queues it for replication
to the followers and replies `OK`. A node that is not the leader sends no
reply, and the console prints `no response from server`. `show log` makes
the leader print its log on its own standard output, and `exit` is answered
with `Goodbye`, which ends the console.

## Using the pieces as a library

```python
from raftkit.config import RaftConfig
from raftkit.raftlog import InMemoryRaftLog, LogEntry
from raftkit.node import NodeState, RaftNode

config = RaftConfig(5, 10000)
leader = RaftNode(InMemoryRaftLog(LogEntry(0, "")), config, 0, 1, NodeState.LEADER)
leader.send(["set foo bar"], None, None)

rpc = leader.entries_buffer.popleft()   # an AppendEntriesRPC for node 1
```

A `RaftNode` never touches the network. What it wants to send is queued on
`entries_buffer`, `response_buffer`, `votes_buffer` and
`votes_response_buffer`; what arrives is passed to `RaftNode.receive`.
`RaftServer` in `raftkit.server` does that plumbing over TCP.

`raftkit.messages` encodes and decodes the messages: `encode_append_entries`,
`encode_append_entries_response`, `encode_request_vote`,
`encode_request_vote_response`, `encode_console_request` and
`encode_console_response`, with the matching decoders, `message_type` and
`decode_message`. Malformed data raises `ValueError`.

`raftkit.net` holds `TcpListener`, `TcpStream`, `ClientAcceptor`,
`UdpStream` and `UdpListener`, with two framings: text behind a 10-byte
decimal length header (`send_message` / `receive_message`) and bytes behind a
4-byte big-endian length (`send_buffer` / `receive_buffer`).

## Key-value server

```
raftkit-kv --port 9000 --snapshot_file store.bin
```

Both options are required. Clients send header-framed text commands:

- `get <key>` replies with the value or `not found`;
- `set <key> <value>` replies with the key; a key that is already set keeps
  its first value;
- `snapshot` appends every pair to the snapshot file and replies
  `wrote snapshot`;
- `exit` closes the connection.

Any other command is treated as a lookup of the empty key. Reading a
snapshot back is available from Python through `Snapshotter.restore`, where
a later record for a key replaces an earlier one; clients have no command
for it.

## Other programs

- `raftkit-traffic` runs the traffic signal. It sends the north-south light
  letter (`R`, `Y` or `G`) to UDP port 10000 and the east-west one to port
  30000 on every tick, and treats any datagram on port 20000 (north-south) or
  40000 (east-west) as a button press. `--tick` sets the seconds per tick
  (default 1).
- `raftkit-echo-server` echoes header-framed messages on `--port` (default
  8088). `raftkit-echo-client --port 8088` sends each line you type and
  prints the reply; `--host` defaults to `localhost`, and `exit` quits.
- `raftkit-demos count|queue|future|mutable` runs one of the threading
  examples: two counters sharing a lock, a producer and consumer over a
  queue, a delayed result delivered through a future, and a map updated
  under a lock while it is printed. `--delay` sets the seconds per step.

## What it does not do

- The Raft log lives only in memory. `InMemoryRaftLog.commit` and `restore`
  save and return to an in-memory checkpoint; nothing is written to disk and
  a restarted node starts from an empty log.
- Committed commands are not applied to any state machine. The leader tracks
  a commit index, but no key-value store or other application executes the
  replicated commands.
- `raftkit-node` accepts `--leader_id`, `--is_leader`, `--host_address` and
  `--host_port`, but they have no effect: every node starts as a follower
  and there is no connection to a host application.
- The cluster layout is fixed to consecutive ports on `localhost`; there is
  no configuration file.