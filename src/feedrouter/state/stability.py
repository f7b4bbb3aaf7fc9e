"""Per-key stability gate.

Each key moves through ``ABSENT -> CANDIDATE(n) -> COMMITTED``.  A value
differing from the committed one must be observed ``threshold`` times in a
row, unchanged, before it is eligible to become authoritative.  Any other
value resets the run; seeing the committed value again drops the candidate.

This module intentionally never touches committed state.  It only decides;
:class:`feedrouter.state.store.StateManager` applies the decision.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class KeyPhase(StrEnum):
    ABSENT = "absent"
    CANDIDATE = "candidate"
    COMMITTED = "committed"


class Observation(StrEnum):
    """Outcome of feeding one observed value to the tracker."""

    NOOP = "noop"
    CANDIDATE_UPDATED = "candidate_updated"
    COMMITTED = "committed"


class Candidate(BaseModel):
    """A staged value awaiting confirmation."""

    model_config = ConfigDict(extra="forbid")

    value: str
    count: int = Field(default=1, ge=1)


class StabilityTracker:
    """Tracks candidate values and decides when one is stable.

    Parameters
    ----------
    threshold : int
        Consecutive identical observations required to commit.
    """

    def __init__(self, threshold: int) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self._threshold = threshold
        self._candidates: dict[str, Candidate] = {}

    @property
    def threshold(self) -> int:
        return self._threshold

    def observe(self, key: str, committed: str | None, observed: str) -> Observation:
        """Feed one observation for *key*.

        *committed* is the key's current committed value, or ``None`` when
        the key has never been committed.  ``None`` never equals an observed
        string, not even ``""``.

        On ``COMMITTED`` the candidate has already been dropped; the caller
        must write *observed* to the store before yielding control.
        """
        if committed is not None and observed == committed:
            self._candidates.pop(key, None)
            return Observation.NOOP

        current = self._candidates.get(key)
        if current is None or current.value != observed:
            current = Candidate(value=observed)
            self._candidates[key] = current
        else:
            current.count += 1

        if current.count >= self._threshold:
            del self._candidates[key]
            return Observation.COMMITTED
        return Observation.CANDIDATE_UPDATED

    def discard(self, key: str) -> None:
        """Forget any pending candidate for *key*."""
        self._candidates.pop(key, None)

    def candidate(self, key: str) -> Candidate | None:
        current = self._candidates.get(key)
        return current.model_copy() if current is not None else None

    def candidates(self) -> dict[str, Candidate]:
        return {key: value.model_copy() for key, value in self._candidates.items()}

    def phase(self, key: str, committed: str | None) -> KeyPhase:
        if key in self._candidates:
            return KeyPhase.CANDIDATE
        if committed is None:
            return KeyPhase.ABSENT
        return KeyPhase.COMMITTED
