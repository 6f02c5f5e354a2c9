"""File-level patch application: read, patch, preview or commit atomically."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from ..core.errors import NotFoundError
from ..utils.file_io import TextFile, read_text_file, write_text_file
from .engine import apply_patches, derive_patches
from .models import ContextStrictness, Patch, PatchResult

LOGGER = logging.getLogger(__name__)


class PatchService:
    """Applies patch sets to files on disk.

    A failed call never touches the file. A committed call rewrites it through
    a temporary sibling and a rename, restoring the original byte-order mark.
    """

    def apply_to_file(
        self,
        path: Path | str,
        patches: Sequence[Patch],
        *,
        validate_context: bool = True,
        strictness: ContextStrictness = ContextStrictness.TRIMMED,
        dry_run: bool = False,
    ) -> PatchResult:
        document = self._read(path)
        result = apply_patches(
            document.text,
            patches,
            validate_context_lines=validate_context,
            strictness=strictness,
            dry_run=dry_run,
        )
        result.metadata.update(
            {
                "path": str(document.path),
                "encoding": document.encoding,
                "bomPreserved": document.has_bom,
            }
        )
        if dry_run:
            LOGGER.info("Previewed %d patch(es) on %s", result.count, document.path)
            return result
        if result.changed:
            write_text_file(document.path, result.text, encoding=document.encoding, bom=document.bom)
            LOGGER.info("Applied %d patch(es) to %s", result.count, document.path)
        else:
            LOGGER.info("Patches left %s unchanged; skipping write", document.path)
        return result

    def derive_for_file(self, path: Path | str, updated: str) -> list[Patch]:
        """Return range patches that would turn the file at ``path`` into ``updated``."""

        document = self._read(path)
        return derive_patches(document.text, updated)

    @staticmethod
    def _read(path: Path | str) -> TextFile:
        target = Path(path)
        if not target.is_file():
            raise NotFoundError.for_path(str(target))
        return read_text_file(target)


__all__ = ["PatchService"]
