"""A complete Raft peer: election timer, elections and leader heartbeats."""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from typing import Any, Callable, Sequence

from .messages import (
    APPEND_ENTRIES_RPC,
    REQUEST_VOTE_RPC,
    AppendEntriesArgs,
    RaftState,
    RequestVoteArgs,
)
from .persister import Persister
from .replication import ReplicatingNode

log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 0.1
ELECTION_TIMEOUT_MIN = 0.25
ELECTION_TIMEOUT_SPREAD = 0.25


def _spawn(target: Callable[..., Any], *args: Any) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


class Raft(ReplicatingNode):
    """A Raft peer that elects leaders and, when leading, sends heartbeats."""

    def start_sending_heartbeats(self) -> None:
        """Send an empty AppendEntries to every peer each heartbeat interval."""
        while not self.killed():
            with self.mu:
                if self.state != RaftState.LEADER:
                    return
                term = self.current_term
                leader_commit = self.commit_index
                prev_log_index = len(self.logs) - 1
                prev_log_term = self.logs[prev_log_index].term
            for peer in range(len(self.peers)):
                _spawn(self.send_heartbeat, peer, prev_log_index, prev_log_term, leader_commit, term)
            time.sleep(HEARTBEAT_INTERVAL)
        log.debug("S%d: stopped sending heartbeats", self.me)

    def send_heartbeat(
        self,
        peer: int,
        prev_log_index: int,
        prev_log_term: int,
        leader_commit: int,
        term: int,
    ) -> None:
        """Send one heartbeat to ``peer`` and wake the replicators on success."""
        if peer == self.me:
            return
        args = AppendEntriesArgs(
            term=term,
            leader_id=self.me,
            prev_log_index=prev_log_index,
            prev_log_term=prev_log_term,
            entries=[],
            leader_commit=leader_commit,
        )
        reply = self.peers[peer].call(APPEND_ENTRIES_RPC, args)
        if reply is None:
            return
        with self.mu:
            if self.state != RaftState.LEADER or term != reply.term:
                return
            if self.current_term < reply.term:
                self.state = RaftState.FOLLOWER
                self.current_term = reply.term
                self.persist()
                return
        with self.cond:
            self.cond.notify_all()

    def start_election(self) -> None:
        """Become a candidate, ask every peer for a vote and lead on a majority."""
        with self.mu:
            if self.state == RaftState.LEADER or self.killed():
                return
            self.state = RaftState.CANDIDATE
            self.heartbeat = True
            self.current_term += 1
            self.voted_for = self.me
            self.persist()
            args = RequestVoteArgs(
                term=self.current_term,
                candidate_id=self.me,
                last_log_index=len(self.logs) - 1,
                last_log_term=self.logs[-1].term,
            )
            log.debug("S%d: starting election for term %d", self.me, args.term)

        votes: queue.Queue[bool] = queue.Queue()

        def ask(peer: int) -> None:
            reply = self.peers[peer].call(REQUEST_VOTE_RPC, args)
            votes.put(reply is not None and reply.vote_granted and reply.term == args.term)

        for peer in range(len(self.peers)):
            if peer != self.me:
                _spawn(ask, peer)

        total = len(self.peers)
        majority = total // 2 + 1
        granted = 1
        received = 1
        while granted < majority and received < total:
            if votes.get():
                granted += 1
            received += 1

        with self.mu:
            if self.killed() or self.state != RaftState.CANDIDATE or self.current_term != args.term:
                return
            if granted < majority:
                return
            log.debug("S%d: won the election for term %d", self.me, args.term)
            self.state = RaftState.LEADER
            self.leader_id = self.me
            with self.cond:
                log_len = len(self.logs)
                self.next_index = [log_len] * total
                self.match_index = [0] * total
            term = self.current_term
            _spawn(self.start_sending_heartbeats)
            for peer in range(total):
                _spawn(self.sync_log_entries, peer, term)

    def ticker(self) -> None:
        """Start an election whenever a randomized timeout passes without a heartbeat."""
        while not self.killed():
            time.sleep(ELECTION_TIMEOUT_MIN + random.random() * ELECTION_TIMEOUT_SPREAD)
            with self.mu:
                if not self.heartbeat and not self.killed():
                    _spawn(self.start_election)
                self.heartbeat = False


def make(
    peers: Sequence[Any],
    me: int,
    persister: Persister,
    apply_queue: queue.Queue,
) -> Raft:
    """Create a Raft peer from its persisted state and start its election timer."""
    raft = Raft(peers, me, persister, apply_queue)
    _spawn(raft.ticker)
    return raft