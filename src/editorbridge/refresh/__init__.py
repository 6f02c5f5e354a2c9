"""Refresh signaling and batch coalescing for the host's import pipeline."""

from .coordinator import RECOMPILE_EXTENSIONS, CoordinatorState, RefreshCoordinator
from .markers import MarkerWriter, Mutation, MutationKind, RefreshRequest

__all__ = [
    "CoordinatorState",
    "MarkerWriter",
    "Mutation",
    "MutationKind",
    "RECOMPILE_EXTENSIONS",
    "RefreshCoordinator",
    "RefreshRequest",
]
