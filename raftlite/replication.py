"""Log replication and commitment performed by a Raft leader."""

from __future__ import annotations

import logging
from collections import Counter

from .messages import APPEND_ENTRIES_RPC, AppendEntriesArgs, ApplyMsg, RaftState
from .node import RaftNode

log = logging.getLogger(__name__)

# Upper bound on how long an idle replicator sleeps before re-checking its state.
_IDLE_WAIT = 0.1


class ReplicatingNode(RaftNode):
    """A Raft peer that, while leading, brings followers' logs up to date."""

    def sync_log_entries(self, peer: int, term: int) -> None:
        """Keep sending log entries to ``peer`` while this peer leads in ``term``."""
        if peer == self.me:
            return
        log.debug("S%d: start replicating to S%d for term %d", self.me, peer, term)

        while not self.killed():
            with self.mu:
                if self.state != RaftState.LEADER or self.current_term > term:
                    return
                log_len = len(self.logs)
                next_index = self.next_index[peer]

            if next_index >= log_len:
                with self.cond:
                    self.cond.wait(_IDLE_WAIT)

            with self.mu:
                if self.killed() or self.state != RaftState.LEADER or self.current_term != term:
                    return
                next_index = self.next_index[peer]
                if next_index >= len(self.logs):
                    continue
                prev_log_index = next_index - 1
                args = AppendEntriesArgs(
                    term=term,
                    leader_id=self.me,
                    prev_log_index=prev_log_index,
                    prev_log_term=self.logs[prev_log_index].term,
                    entries=list(self.logs[next_index:]),
                    leader_commit=self.commit_index,
                )

            reply = self.peers[peer].call(APPEND_ENTRIES_RPC, args)
            if reply is None:
                log.debug("S%d: S%d did not answer, retrying", self.me, peer)
                continue

            with self.mu:
                if self.killed() or self.state != RaftState.LEADER:
                    return
                if self.current_term > term:
                    return
                if reply.term > self.current_term:
                    log.debug("S%d: S%d has higher term %d, stepping down", self.me, peer, reply.term)
                    self.state = RaftState.FOLLOWER
                    self.current_term = reply.term
                    self.persist()
                    return
                if args.term != self.current_term:
                    continue

                if reply.success:
                    self.match_index[peer] = args.prev_log_index + len(args.entries)
                    self.next_index[peer] = self.match_index[peer] + 1
                elif reply.x_is_short:
                    self.next_index[peer] = reply.x_len
                else:
                    last_with_term = next(
                        (
                            index
                            for index in range(len(self.logs) - 1, 0, -1)
                            if self.logs[index].term == reply.x_term
                        ),
                        -1,
                    )
                    self.next_index[peer] = last_with_term if last_with_term != -1 else reply.x_index

            if reply.success:
                self.commit_entries(term)

    def commit_entries(self, term: int) -> None:
        """Advance the commit index from the followers' match indexes and apply."""
        with self.mu:
            if self.killed() or term != self.current_term or self.state != RaftState.LEADER:
                return
            with self.cond:
                counts: Counter[int] = Counter(
                    match
                    for match in self.match_index
                    if match != 0
                    and match < len(self.logs)
                    and self.logs[match].term == self.current_term
                )
                threshold = len(self.peers) // 2
                committed = max(
                    (index for index, count in counts.items() if count >= threshold),
                    default=-1,
                )
                if committed != -1:
                    self.commit_index = committed

                if self.last_applied < self.commit_index < len(self.logs):
                    for index in range(self.last_applied + 1, self.commit_index + 1):
                        entry = self.logs[index]
                        self.apply_queue.put(ApplyMsg(True, entry.command, index, entry.term))
                        self.last_applied += 1
                    log.debug("S%d: applied entries up to %d", self.me, self.last_applied)