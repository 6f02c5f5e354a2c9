"""Marker artifacts observed by the host's filesystem watcher."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..utils.file_io import write_text

__all__ = [
    "MutationKind",
    "Mutation",
    "RefreshRequest",
    "MarkerWriter",
    "render_trigger",
    "render_batch_listing",
    "TRIGGER_FILE_NAME",
    "LOCK_FILE_NAME",
    "BATCH_FILE_NAME",
]

LOGGER = logging.getLogger(__name__)

TRIGGER_FILE_NAME = "editorbridge_refresh_trigger.txt"
LOCK_FILE_NAME = "editorbridge_refresh_lock.txt"
BATCH_FILE_NAME = "editorbridge_batch_operations.txt"
_LOCK_BODY = "processing"
_KIND_VALUES = frozenset({"created", "modified", "deleted"})


class MutationKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(slots=True, frozen=True)
class Mutation:
    """A single project change reported to the coordinator."""

    kind: MutationKind
    path: str

    def line(self) -> str:
        return f"{self.kind.value}: {self.path}"


@dataclass(slots=True, frozen=True)
class RefreshRequest:
    """Options carried by one refresh signal."""

    force_recompile: bool = False
    recompile_scripts: bool = False
    save_assets: bool = False
    folders: tuple[str, ...] = ()
    mutations: tuple[Mutation, ...] = ()
    reason: str = "explicit"

    @property
    def has_options(self) -> bool:
        return bool(self.force_recompile or self.recompile_scripts or self.save_assets or self.folders)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RefreshRequest":
        mutations = []
        for entry in payload.get("mutations") or ():
            if isinstance(entry, Mapping) and entry.get("kind") in _KIND_VALUES:
                mutations.append(Mutation(kind=MutationKind(entry["kind"]), path=str(entry.get("path", ""))))
        return cls(
            force_recompile=bool(payload.get("forceRecompile", False)),
            recompile_scripts=bool(payload.get("recompileScripts", False)),
            save_assets=bool(payload.get("saveAssets", False)),
            folders=tuple(str(folder) for folder in payload.get("folders") or ()),
            mutations=tuple(mutations),
            reason=str(payload.get("reason", "explicit")),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "forceRecompile": self.force_recompile,
            "recompileScripts": self.recompile_scripts,
            "saveAssets": self.save_assets,
            "folders": list(self.folders),
            "mutations": [{"kind": item.kind.value, "path": item.path} for item in self.mutations],
            "reason": self.reason,
        }


def render_trigger(request: RefreshRequest, timestamp_ms: int) -> str:
    """Render the trigger file body.

    The timestamp changes on every write so watchers that compare content
    still see a modification.
    """

    lines = [f"timestamp: {timestamp_ms}"]
    if not request.has_options:
        lines.append("refresh")
    if request.force_recompile:
        lines.append("forceRecompile: true")
    if request.recompile_scripts:
        lines.append("recompileScripts: true")
    if request.save_assets:
        lines.append("saveAssets: true")
    lines.extend(f"folder: {folder}" for folder in request.folders)
    return "\n".join(lines) + "\n"


def render_batch_listing(mutations: Iterable[Mutation]) -> str:
    return "".join(f"{mutation.line()}\n" for mutation in mutations)


class MarkerWriter:
    """Writes and removes marker files inside the host's transient working area."""

    def __init__(self, temp_dir: Path | str, *, clock: Callable[[], float] = time.time) -> None:
        self._temp_dir = Path(temp_dir)
        self._clock = clock

    @property
    def trigger_path(self) -> Path:
        return self._temp_dir / TRIGGER_FILE_NAME

    @property
    def lock_path(self) -> Path:
        return self._temp_dir / LOCK_FILE_NAME

    @property
    def batch_path(self) -> Path:
        return self._temp_dir / BATCH_FILE_NAME

    def write_trigger(self, request: RefreshRequest) -> Path:
        now = self._clock()
        target = write_text(self.trigger_path, render_trigger(request, int(now * 1000)))
        # Touch explicitly; some watchers only compare mtimes at second granularity.
        os.utime(target, (now, now))
        LOGGER.debug("Wrote refresh trigger %s (%s)", target, request.reason)
        return target

    def write_lock(self) -> Path:
        return write_text(self.lock_path, _LOCK_BODY)

    def clear_lock(self) -> bool:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            return False
        return True

    def lock_present(self) -> bool:
        return self.lock_path.exists()

    def write_batch_listing(self, mutations: Sequence[Mutation]) -> Path:
        return write_text(self.batch_path, render_batch_listing(mutations))
