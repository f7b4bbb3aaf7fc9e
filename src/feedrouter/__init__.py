"""feedrouter - Debounced real-time fan-out of a polled key/value source."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("feedrouter")
except PackageNotFoundError:
    __version__ = "0+local"
from feedrouter.broadcast import BroadcastChannel, Subscriber
from feedrouter.config import RouterConfig
from feedrouter.exceptions import DecodeError, FetchError, RouterConfigError, RouterError
from feedrouter.poller import CyclePhase, CycleResult, PollOrchestrator
from feedrouter.router import FeedRouter
from feedrouter.state.events import PatchMessage, SnapshotMessage
from feedrouter.state.stability import Candidate, KeyPhase, Observation, StabilityTracker
from feedrouter.state.store import StateManager, StateStore

__all__ = [
    "__version__",
    "BroadcastChannel",
    "Candidate",
    "CyclePhase",
    "CycleResult",
    "DecodeError",
    "FeedRouter",
    "FetchError",
    "KeyPhase",
    "Observation",
    "PatchMessage",
    "PollOrchestrator",
    "RouterConfig",
    "RouterConfigError",
    "RouterError",
    "SnapshotMessage",
    "StabilityTracker",
    "StateManager",
    "StateStore",
    "Subscriber",
]
