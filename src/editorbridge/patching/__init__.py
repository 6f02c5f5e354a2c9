"""Localized line-patch engine."""

from .engine import apply_patches, derive_patches, render_preview
from .models import ContextStrictness, MatchMode, Patch, PatchOutcome, PatchResult, ResolvedPatch
from .service import PatchService

__all__ = [
    "ContextStrictness",
    "MatchMode",
    "Patch",
    "PatchOutcome",
    "PatchResult",
    "PatchService",
    "ResolvedPatch",
    "apply_patches",
    "derive_patches",
    "render_preview",
]
