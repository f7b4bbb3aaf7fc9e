"""Real-time channel wire messages.

Subscribers receive exactly one ``snapshot`` on connect followed by sparse
``patch`` messages, one per poll cycle (or override) that changed state.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


def iso_timestamp(value: datetime) -> str:
    """Format *value* as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SnapshotMessage(BaseModel):
    """Full committed state, sent once per new subscriber."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    op: Literal["snapshot"] = "snapshot"
    ts: str
    state: dict[str, str] = Field(default_factory=dict)


class PatchMessage(BaseModel):
    """Keys whose committed value changed in one cycle."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    op: Literal["patch"] = "patch"
    ts: str
    changes: dict[str, str] = Field(default_factory=dict)


StateMessage = SnapshotMessage | PatchMessage


def build_snapshot(state: dict[str, str], *, clock: Callable[[], datetime] = utcnow) -> SnapshotMessage:
    return SnapshotMessage(ts=iso_timestamp(clock()), state=state)


def build_patch(changes: dict[str, str], *, clock: Callable[[], datetime] = utcnow) -> PatchMessage:
    return PatchMessage(ts=iso_timestamp(clock()), changes=changes)
