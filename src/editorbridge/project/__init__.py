"""Host project filesystem helpers."""

from .workspace import META_SUFFIX, ProjectWorkspace

__all__ = ["META_SUFFIX", "ProjectWorkspace"]
