"""Feed synchronization - single-feed sync and refresh sweeps."""

from .engine import SyncEngine, SyncState
from .coordinator import RefreshCoordinator, RefreshProgress, FeedOutcome, FailureState

__all__ = [
    "SyncEngine", "SyncState",
    "RefreshCoordinator", "RefreshProgress", "FeedOutcome", "FailureState",
]
