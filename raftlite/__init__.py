"""Raft consensus: leader election, log replication and persistent state."""

__version__ = "0.1.0"
__all__ = ["persister", "messages", "node", "replication", "raft"]