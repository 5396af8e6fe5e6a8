"""In-memory store of pending DNS-01 challenge values."""

import threading

from acmednschallenge.challenges.dns01 import normalize_fqdn


class ChallengeRegistry:
    """Thread-safe mapping of challenge FQDN to its TXT values.

    Writers for the same name serialize on a per-name lock; writers for
    different names never contend beyond the short lock lookup. Each
    name maps to an immutable tuple that is replaced, never mutated, so
    readers always see a complete snapshot without locking.

    A name with no values is absent: ``clear`` removes the entry and
    ``put`` is the only way to create one.
    """

    def __init__(self) -> None:
        self._values: dict[str, tuple[str, ...]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def put(self, name: str, value: str) -> None:
        """Append a value to the sequence for ``name``, creating it if needed."""
        name = normalize_fqdn(name)
        with self._lock_for(name):
            self._values[name] = self._values.get(name, ()) + (value,)

    def clear(self, name: str) -> None:
        """Remove ``name`` and all of its values. Unknown names are ignored."""
        name = normalize_fqdn(name)
        with self._lock_for(name):
            self._values.pop(name, None)

    def lookup(self, name: str) -> tuple[str, ...] | None:
        """Return a snapshot of the values for ``name``, or None if absent."""
        return self._values.get(normalize_fqdn(name))

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_fqdn(name) in self._values
