"""Authoritative in-memory state store.

:class:`StateManager` is the only component allowed to write committed
state.  Every mutation path (poll reconcile and the administrative
override) runs synchronously, so readers on the same event loop never see
a partially applied cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from feedrouter.state.stability import Candidate, KeyPhase, Observation, StabilityTracker

_logger = logging.getLogger(__name__)


class StateStore:
    """Committed key/value mapping.

    Keys are never removed: a key missing from a later read keeps its
    last-good value.
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._state: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self._state.get(key)

    def snapshot(self) -> dict[str, str]:
        """Return a copy of the full committed mapping."""
        return dict(self._state)

    def commit(self, key: str, value: str) -> bool:
        """Set *key* to *value*; return whether the stored value changed."""
        if key in self._state and self._state[key] == value:
            return False
        self._state[key] = value
        return True

    def __len__(self) -> int:
        return len(self._state)

    def __contains__(self, key: object) -> bool:
        return key in self._state


class StateManager:
    """Owns the store and the stability tracker; sole writer of both."""

    def __init__(self, *, stable_reads: int, store: StateStore | None = None) -> None:
        self._store = store if store is not None else StateStore()
        self._tracker = StabilityTracker(stable_reads)

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def tracker(self) -> StabilityTracker:
        return self._tracker

    def read(self, key: str) -> str | None:
        return self._store.read(key)

    def snapshot(self) -> dict[str, str]:
        return self._store.snapshot()

    def candidate(self, key: str) -> Candidate | None:
        return self._tracker.candidate(key)

    def phase(self, key: str) -> KeyPhase:
        return self._tracker.phase(key, self._store.read(key))

    def reconcile(self, observed: Mapping[str, str]) -> dict[str, str]:
        """Run one cycle's observations through the stability gate.

        Returns the keys whose committed value changed, with their new
        values.  Keys not present in *observed* are left untouched.
        """
        changes: dict[str, str] = {}
        for key, raw in observed.items():
            value = (raw or "").strip()
            outcome = self._tracker.observe(key, self._store.read(key), value)
            if outcome is Observation.COMMITTED and self._store.commit(key, value):
                changes[key] = value

        if changes:
            _logger.debug("Committed %d key(s): %s", len(changes), sorted(changes))
        return changes

    def override(self, key: str, value: str) -> bool:
        """Commit *value* immediately, bypassing the stability gate.

        Administrative fast path.  Any pending candidate for *key* is
        dropped since it can no longer be compared against the value it
        was staged against.  Returns whether the committed value changed.
        """
        self._tracker.discard(key)
        changed = self._store.commit(key, value)
        _logger.info("Override %s (%s)", key, "changed" if changed else "unchanged")
        return changed
