"""Static description of the servers in a cluster."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

DEFAULT_CLUSTER_SIZE = 2
DEFAULT_STARTING_PORT = 15000
PORT_STEP = 1000
DEFAULT_ADDRESS = "localhost"


@dataclass(frozen=True)
class Server:
    """One member of the cluster."""

    id: int
    address: str
    port: int


class RaftConfig:
    """A cluster of servers on localhost with ids from 0 and ports 1000 apart."""

    def __init__(
        self,
        cluster_size: int = DEFAULT_CLUSTER_SIZE,
        starting_port: int = DEFAULT_STARTING_PORT,
    ) -> None:
        self._servers = tuple(
            Server(id=i, address=DEFAULT_ADDRESS, port=starting_port + i * PORT_STEP)
            for i in range(cluster_size)
        )

    def get_one_by_index(self, index: int) -> Server:
        """Return the server at ``index``; raise IndexError if there is none."""
        if not 0 <= index < len(self._servers):
            raise IndexError("index out of range")
        return self._servers[index]

    def get_all(self) -> list[Server]:
        return list(self._servers)

    def __len__(self) -> int:
        return len(self._servers)

    def __iter__(self) -> Iterator[Server]:
        return iter(self._servers)

    def __repr__(self) -> str:
        return f"RaftConfig({list(self._servers)!r})"