# raftlite

A compact implementation of the Raft consensus algorithm: randomized leader
election, log replication with fast back-off over conflicting follower logs,
and persistence of the term, vote and log across restarts. It uses only the
standard library and runs each peer's background work on daemon threads.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `raftlite.persister.Persister` holds a peer's saved Raft state and snapshot
  as immutable `bytes`. `save` stores both at once, `save_state` only the Raft
  state; `read_raft_state`, `read_snapshot`, `raft_state_size`,
  `snapshot_size` and `copy` read them back. `None` is stored as empty bytes.
- `raftlite.messages` defines the data passed between peers and to the service:
  `RaftState` (`FOLLOWER`, `CANDIDATE`, `LEADER`), `LogEntry`, `ApplyMsg`,
  `RequestVoteArgs`, `RequestVoteReply`, `AppendEntriesArgs`,
  `AppendEntriesReply`, and the RPC method names `REQUEST_VOTE_RPC`
  (`"Raft.RequestVote"`) and `APPEND_ENTRIES_RPC` (`"Raft.AppendEntries"`).
  `encode_state(term, voted_for, logs)` serializes the persistent state and
  `decode_state(data)` restores it, raising `ValueError` on empty or malformed
  data. The encoding uses `pickle`, so only decode state you wrote yourself.
- `raftlite.node.RaftNode` is a peer's state and RPC handlers: `get_state`
  returns `(term, is_leader)`, `start(command)` returns
  `(index, term, is_leader)` and appends the command only on the leader,
  `request_vote` and `append_entries` answer the two RPCs, `handle_rpc`
  dispatches by method name (raising `ValueError` for any other name),
  `persist` saves term, vote and log, and `kill` / `killed` stop the peer.
- `raftlite.replication.ReplicatingNode` adds the leader's side of
  replication: `sync_log_entries(peer, term)` sends entries to one follower
  and backs up over conflicts, `commit_entries(term)` advances the commit
  index from the followers' match indexes and delivers newly committed entries.
- `raftlite.raft.Raft` adds elections and heartbeats: `ticker` starts an
  election after a random 250–500 ms without hearing from a leader,
  `start_election` asks every peer for its vote, and a leader runs
  `start_sending_heartbeats`, which calls `send_heartbeat` for every peer
  each 100 ms. `raftlite.raft.make(peers, me, persister, apply_queue)` builds
  a `Raft` from its persisted state and starts its election timer.

Diagnostic messages go to the standard `logging` module at debug level.

## Using it

Each peer is given the list of all peer endpoints (its own position in that
list is `me`), a `Persister`, and a `queue.Queue` on which committed entries
arrive as `ApplyMsg` values. An endpoint is any object with a
`call(method, args)` method that returns the reply, or `None` when the request
or its reply was lost. On the receiving side, hand incoming calls to
`handle_rpc(method, args)`.

A three-peer cluster inside one process:

```python
import queue
import time

from raftlite.persister import Persister
from raftlite.raft import make


class LocalEnd:
    def __init__(self):
        self.target = None

    def call(self, method, args):
        if self.target is None:
            return None
        return self.target.handle_rpc(method, args)


n = 3
ends = [[LocalEnd() for _ in range(n)] for _ in range(n)]
queues = [queue.Queue() for _ in range(n)]
nodes = [make(ends[i], i, Persister(), queues[i]) for i in range(n)]
for row in ends:
    for j, end in enumerate(row):
        end.target = nodes[j]

time.sleep(2)  # let an election finish
for i, node in enumerate(nodes):
    index, term, is_leader = node.start("set x=1")
    if is_leader:
        msg = queues[i].get(timeout=5)
        print(msg.command_index, msg.command)

for node in nodes:
    node.kill()
```

A peer restarted with the same `Persister` (or a `copy()` of it) recovers its
term, vote and log.

## What it does not do

- There is no network transport: endpoints and the routing of calls to
  `handle_rpc` are up to the caller.
- There is no log compaction. The `Persister` can hold a snapshot, but the
  peers always save an empty one and never trim their logs.
- There is no key/value or other service on top; committed commands are only
  delivered on the apply queue.