"""Thread-safe holder for a Raft peer's persisted state and snapshot."""

from __future__ import annotations

import threading


def _clone(data: bytes | bytearray | memoryview | None) -> bytes:
    """Return an independent immutable copy of ``data`` (``None`` becomes empty)."""
    if data is None:
        return b""
    return bytes(data)


class Persister:
    """Stores the serialized Raft state and the service snapshot.

    Both values are kept as immutable byte strings, so callers never share
    mutable buffers with the persister.
    """

    def __init__(self, raft_state: bytes = b"", snapshot: bytes = b"") -> None:
        self._lock = threading.Lock()
        self._raft_state = _clone(raft_state)
        self._snapshot = _clone(snapshot)

    def copy(self) -> Persister:
        """Return a new persister holding the same state and snapshot."""
        with self._lock:
            return Persister(self._raft_state, self._snapshot)

    def read_raft_state(self) -> bytes:
        """Return the saved Raft state."""
        with self._lock:
            return self._raft_state

    def raft_state_size(self) -> int:
        """Return the size in bytes of the saved Raft state."""
        with self._lock:
            return len(self._raft_state)

    def save(
        self,
        raft_state: bytes | bytearray | None,
        snapshot: bytes | bytearray | None,
    ) -> None:
        """Save Raft state and snapshot together as one atomic action."""
        state = _clone(raft_state)
        snap = _clone(snapshot)
        with self._lock:
            self._raft_state = state
            self._snapshot = snap

    def save_state(self, raft_state: bytes | bytearray | None) -> None:
        """Save only the Raft state, keeping the current snapshot."""
        state = _clone(raft_state)
        with self._lock:
            self._raft_state = state

    def read_snapshot(self) -> bytes:
        """Return the saved snapshot."""
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        """Return the size in bytes of the saved snapshot."""
        with self._lock:
            return len(self._snapshot)