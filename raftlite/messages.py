"""Data types exchanged between Raft peers and with the service above them."""

from __future__ import annotations

import enum
import pickle
from dataclasses import dataclass, field
from typing import Any

APPEND_ENTRIES_RPC = "Raft.AppendEntries"
REQUEST_VOTE_RPC = "Raft.RequestVote"

_STATE_TAG = "raft-state-v1"


class RaftState(enum.IntEnum):
    """Role a peer currently plays."""

    FOLLOWER = 0
    CANDIDATE = 1
    LEADER = 2


@dataclass
class LogEntry:
    """One entry of the replicated log."""

    term: int
    command: Any = None


@dataclass
class ApplyMsg:
    """A committed entry handed to the service."""

    command_valid: bool
    command: Any
    command_index: int
    command_term: int = 0


@dataclass
class RequestVoteArgs:
    """Arguments of the RequestVote RPC."""

    term: int
    candidate_id: int
    last_log_index: int
    last_log_term: int


@dataclass
class RequestVoteReply:
    """Reply of the RequestVote RPC."""

    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    """Arguments of the AppendEntries RPC (heartbeats carry no entries)."""

    term: int
    leader_id: int
    prev_log_index: int
    prev_log_term: int
    entries: list[LogEntry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesReply:
    """Reply of the AppendEntries RPC, with the fast-backup hints."""

    x_is_short: bool = False
    x_len: int = 0
    x_term: int = 0
    x_index: int = 0
    term: int = 0
    success: bool = False


def encode_state(term: int, voted_for: int, logs: list[LogEntry]) -> bytes:
    """Serialize the persistent Raft state: current term, vote and log."""
    if not isinstance(term, int) or not isinstance(voted_for, int):
        raise TypeError("term and voted_for must be integers")
    try:
        entries = [(entry.term, entry.command) for entry in logs]
    except AttributeError as exc:
        raise TypeError("logs must contain LogEntry objects") from exc
    return pickle.dumps((_STATE_TAG, term, voted_for, entries))


def decode_state(data: bytes) -> tuple[int, int, list[LogEntry]]:
    """Restore ``(term, voted_for, logs)`` from bytes made by :func:`encode_state`.

    Raises ValueError when the data is empty or not a valid encoded state.
    """
    if not data:
        raise ValueError("no persisted state to decode")
    try:
        decoded = pickle.loads(data)
    except Exception as exc:  # pickle raises many unrelated types on bad input
        raise ValueError("could not decode persisted state") from exc
    if not (isinstance(decoded, tuple) and len(decoded) == 4 and decoded[0] == _STATE_TAG):
        raise ValueError("persisted state has an unexpected layout")
    _, term, voted_for, entries = decoded
    if not isinstance(term, int) or not isinstance(voted_for, int) or not isinstance(entries, list):
        raise ValueError("persisted state has an unexpected layout")
    logs = []
    for item in entries:
        if not (isinstance(item, tuple) and len(item) == 2 and isinstance(item[0], int)):
            raise ValueError("persisted log entry has an unexpected layout")
        logs.append(LogEntry(item[0], item[1]))
    return term, voted_for, logs