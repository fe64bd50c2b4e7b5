"""Raft node, in-memory log, wire messages, TCP server and console, with a key-value server, traffic signal, echo tools and socket helpers."""

__version__ = "1.0.0"