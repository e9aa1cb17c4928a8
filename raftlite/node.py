"""A single Raft peer: persistent state, the RPC handlers and client submission."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Sequence

from .messages import (
    APPEND_ENTRIES_RPC,
    REQUEST_VOTE_RPC,
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    LogEntry,
    RaftState,
    RequestVoteArgs,
    RequestVoteReply,
    decode_state,
    encode_state,
)
from .persister import Persister

log = logging.getLogger(__name__)


class RaftNode:
    """State and RPC handlers of one Raft peer.

    ``peers`` holds one endpoint per server (this one included). An endpoint
    offers ``call(method, args)``, returning the reply or ``None`` when the
    call failed. Committed entries are put on ``apply_queue`` as
    :class:`ApplyMsg` objects.
    """

    def __init__(
        self,
        peers: Sequence[Any],
        me: int,
        persister: Persister,
        apply_queue: queue.Queue,
    ) -> None:
        self.mu = threading.Lock()
        self.cond = threading.Condition(threading.Lock())
        self._dead = threading.Event()

        self.peers = list(peers)
        self.persister = persister
        self.me = me
        self.apply_queue = apply_queue

        self.state = RaftState.FOLLOWER
        self.current_term = 0
        self.voted_for = -1
        self.heartbeat = False
        self.logs: list[LogEntry] = [LogEntry(0, 0)]
        self.commit_index = 0
        self.last_applied = 0
        self.leader_id = -1

        self.next_index = [1] * len(self.peers)
        self.match_index = [0] * len(self.peers)

        self._read_persist(persister.read_raft_state())
        log.debug("S%d: raft server started", me)

    def get_state(self) -> tuple[int, bool]:
        """Return the current term and whether this peer believes it leads."""
        with self.mu:
            return self.current_term, self.state == RaftState.LEADER

    def persist(self) -> None:
        """Save term, vote and log to the persister; the caller holds ``mu``."""
        data = encode_state(self.current_term, self.voted_for, self.logs)
        self.persister.save(data, None)

    def _read_persist(self, data: bytes) -> None:
        if not data:
            return
        try:
            term, voted_for, logs = decode_state(data)
        except ValueError:
            log.warning("S%d: could not decode the persisted state", self.me)
            return
        self.current_term = term
        self.voted_for = voted_for
        self.logs = list(logs)

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Submit ``command`` for agreement.

        Returns ``(index, term, is_leader)``; the command is appended only
        when this peer believes it is the leader.
        """
        with self.mu:
            index = len(self.logs)
            term = self.current_term
            is_leader = self.state == RaftState.LEADER
            if not is_leader:
                return index, term, False
            with self.cond:
                self.logs.append(LogEntry(term, command))
                self.persist()
                log.debug("S%d: appended command %r at index %d", self.me, command, index)
                self.cond.notify_all()
            return index, term, True

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        """Handle a candidate's request for this peer's vote."""
        with self.mu:
            if args.term < self.current_term:
                log.debug("S%d: vote rejected for S%d, lower term", self.me, args.candidate_id)
                return RequestVoteReply(term=self.current_term, vote_granted=False)

            if args.term > self.current_term:
                self.state = RaftState.FOLLOWER
                self.current_term = args.term
                self.voted_for = -1
                self.persist()

            if self.voted_for >= 0 and self.voted_for != args.candidate_id:
                return RequestVoteReply(term=self.current_term, vote_granted=False)

            last_index = len(self.logs) - 1
            last_term = self.logs[last_index].term
            up_to_date = last_term < args.last_log_term or (
                last_term == args.last_log_term and args.last_log_index >= last_index
            )
            if up_to_date:
                self.voted_for = args.candidate_id
                self.persist()
                log.debug("S%d: vote granted to S%d", self.me, args.candidate_id)
                return RequestVoteReply(term=self.current_term, vote_granted=True)

            log.debug("S%d: vote rejected for S%d, my log is newer", self.me, args.candidate_id)
            return RequestVoteReply(term=self.current_term, vote_granted=False)

    def _fill_reply_x(self, reply: AppendEntriesReply, mismatch_index: int, is_short: bool) -> None:
        reply.x_is_short = is_short
        reply.x_len = len(self.logs)
        reply.x_term = self.logs[mismatch_index].term
        index = mismatch_index
        while index >= 0 and self.logs[index].term == reply.x_term:
            index -= 1
        reply.x_index = index + 1

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        """Handle a heartbeat or a batch of log entries from the leader."""
        with self.mu:
            reply = AppendEntriesReply()
            if args.term < self.current_term:
                log.debug("S%d: AppendEntries from S%d rejected, lower term", self.me, args.leader_id)
                reply.term = self.current_term
                return reply

            if args.term > self.current_term:
                self.state = RaftState.FOLLOWER
                self.current_term = args.term
                self.persist()

            self.heartbeat = True
            self.leader_id = args.leader_id

            if args.prev_log_index >= len(self.logs):
                reply.term = self.current_term
                reply.x_is_short = True
                reply.x_len = len(self.logs)
                return reply
            if self.logs[args.prev_log_index].term != args.prev_log_term:
                reply.term = self.current_term
                self._fill_reply_x(reply, args.prev_log_index, False)
                return reply

            conflict = 0
            for conflict, entry in enumerate(args.entries):
                next_index = args.prev_log_index + conflict + 1
                if next_index >= len(self.logs):
                    break
                if self.logs[next_index].term != entry.term:
                    del self.logs[next_index:]
                    self.persist()
                    break
            else:
                conflict = len(args.entries)

            new_entries = args.entries[conflict:]
            if new_entries:
                self.logs.extend(new_entries)
                self.persist()
                log.debug("S%d: appended %d entries", self.me, len(new_entries))

            if args.leader_commit > self.commit_index:
                self.commit_index = min(args.leader_commit, len(self.logs) - 1)

            reply.term = self.current_term
            reply.success = True

            for index in range(self.last_applied + 1, self.commit_index + 1):
                entry = self.logs[index]
                self.apply_queue.put(ApplyMsg(True, entry.command, index, entry.term))
            self.last_applied = max(self.last_applied, self.commit_index)
            return reply

    def handle_rpc(self, method: str, args: Any) -> Any:
        """Dispatch an incoming RPC by its method name."""
        if method == APPEND_ENTRIES_RPC:
            return self.append_entries(args)
        if method == REQUEST_VOTE_RPC:
            return self.request_vote(args)
        raise ValueError(f"unknown RPC method {method!r}")

    def kill(self) -> None:
        """Stop this peer; background loops notice through :meth:`killed`."""
        self._dead.set()
        with self.cond:
            self.cond.notify_all()
        log.debug("S%d: killed", self.me)

    def killed(self) -> bool:
        """Return whether :meth:`kill` has been called."""
        return self._dead.is_set()