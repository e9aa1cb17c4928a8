import copy
import queue
import threading
import time

from raftlite.messages import LogEntry, RaftState, decode_state
from raftlite.persister import Persister
from raftlite.replication import ReplicatingNode


class DirectEnd:
    def __init__(self, node=None):
        self.node = node
        self.calls = []

    def call(self, method, args):
        self.calls.append(method)
        if self.node is None:
            return None
        return copy.deepcopy(self.node.handle_rpc(method, copy.deepcopy(args)))


def make_leader(peers, logs, term):
    node = ReplicatingNode(peers, 0, Persister(), queue.Queue())
    node.logs = list(logs)
    node.current_term = term
    node.state = RaftState.LEADER
    return node


def drain(q):
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


def eventually(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_commit_with_majority_applies_entries():
    logs = [LogEntry(0, 0), LogEntry(1, "a"), LogEntry(1, "b")]
    leader = make_leader([None] * 3, logs, 1)
    leader.match_index = [0, 2, 0]
    leader.commit_entries(1)
    assert leader.commit_index == 2
    assert leader.last_applied == 2
    applied = drain(leader.apply_queue)
    assert [(m.command, m.command_index) for m in applied] == [("a", 1), ("b", 2)]
    assert all(m.command_valid for m in applied)


def test_entries_of_older_term_are_not_committed_by_count():
    logs = [LogEntry(0, 0), LogEntry(1, "a"), LogEntry(1, "b")]
    leader = make_leader([None] * 3, logs, 2)
    leader.match_index = [0, 2, 2]
    leader.commit_entries(2)
    assert leader.commit_index == 0
    assert drain(leader.apply_queue) == []


def test_commit_skipped_when_not_leader_or_term_differs():
    logs = [LogEntry(0, 0), LogEntry(1, "a")]
    leader = make_leader([None] * 3, logs, 1)
    leader.match_index = [0, 1, 1]
    leader.commit_entries(0)
    assert leader.commit_index == 0
    leader.state = RaftState.FOLLOWER
    leader.commit_entries(1)
    assert leader.commit_index == 0
    assert drain(leader.apply_queue) == []


def test_commit_counts_exact_match_indexes():
    logs = [LogEntry(0, 0), LogEntry(1, "a"), LogEntry(1, "b")]
    leader = make_leader([None] * 5, logs, 1)
    leader.match_index = [0, 1, 2, 0, 0]
    leader.commit_entries(1)
    assert leader.commit_index == 0
    leader.match_index = [0, 2, 2, 0, 0]
    leader.commit_entries(1)
    assert leader.commit_index == 2


def test_sync_to_self_or_as_follower_sends_nothing():
    end = DirectEnd()
    leader = make_leader([end, end, end], [LogEntry(0, 0), LogEntry(1, "a")], 1)
    leader.sync_log_entries(0, 1)
    assert end.calls == []
    leader.current_term = 3
    leader.sync_log_entries(1, 1)
    assert end.calls == []
    leader.current_term = 1
    leader.state = RaftState.FOLLOWER
    leader.sync_log_entries(1, 1)
    assert end.calls == []


def test_sync_steps_down_on_higher_term():
    follower = ReplicatingNode([None] * 3, 1, Persister(), queue.Queue())
    follower.current_term = 5
    end = DirectEnd(follower)
    leader = make_leader([DirectEnd(), end, DirectEnd()], [LogEntry(0, 0), LogEntry(1, "a")], 1)
    leader.next_index = [2, 1, 1]
    leader.sync_log_entries(1, 1)
    assert leader.state == RaftState.FOLLOWER
    assert leader.current_term == 5
    assert decode_state(leader.persister.read_raft_state())[0] == 5


def test_sync_replicates_and_commits():
    follower = ReplicatingNode([None] * 3, 1, Persister(), queue.Queue())
    logs = [LogEntry(0, 0), LogEntry(1, "a"), LogEntry(1, "b")]
    leader = make_leader([DirectEnd(), DirectEnd(follower), DirectEnd()], logs, 1)
    worker = threading.Thread(target=leader.sync_log_entries, args=(1, 1), daemon=True)
    worker.start()
    try:
        assert eventually(lambda: follower.logs == leader.logs)
        assert eventually(lambda: leader.commit_index == len(logs) - 1)
    finally:
        leader.kill()
        worker.join(2)
    assert not worker.is_alive()
    assert leader.match_index[1] == len(logs) - 1
    assert leader.next_index[1] == len(logs)
    assert [m.command for m in drain(leader.apply_queue)] == ["a", "b"]
    assert follower.current_term == 1


def test_sync_backs_up_over_conflicting_term():
    follower = ReplicatingNode([None] * 3, 1, Persister(), queue.Queue())
    follower.current_term = 2
    follower.logs = [LogEntry(0, 0), LogEntry(1, "a"), LogEntry(2, "p"), LogEntry(2, "q")]
    logs = [LogEntry(0, 0), LogEntry(1, "a"), LogEntry(3, "x"), LogEntry(3, "y")]
    leader = make_leader([DirectEnd(), DirectEnd(follower), DirectEnd()], logs, 3)
    leader.next_index = [4, 3, 4]
    worker = threading.Thread(target=leader.sync_log_entries, args=(1, 3), daemon=True)
    worker.start()
    try:
        assert eventually(lambda: follower.logs == leader.logs)
        assert eventually(lambda: leader.match_index[1] == len(logs) - 1)
    finally:
        leader.kill()
        worker.join(2)
    assert not worker.is_alive()
    assert [entry.command for entry in follower.logs[1:]] == ["a", "x", "y"]
    assert follower.current_term == 3