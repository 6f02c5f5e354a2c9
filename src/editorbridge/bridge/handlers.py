"""Handlers for every catalog method, wired to the project and core services."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, cast

from ..core.errors import AlreadyExistsError, InvalidParameterError, NotFoundError
from ..diagnostics.aggregator import DiagnosticsAggregator
from ..diagnostics.models import Severity
from ..patching.service import PatchService
from ..project.workspace import META_SUFFIX, ProjectWorkspace
from ..refresh.coordinator import RefreshCoordinator
from ..refresh.markers import MutationKind
from ..utils.file_io import read_text_file, write_text_file
from .catalog import (
    ApplyDiffParams,
    DerivePatchesParams,
    DiagnosticsParams,
    FolderCreateParams,
    FolderListParams,
    FolderMoveParams,
    FolderRenameParams,
    MethodParams,
    PathParams,
    RefreshParams,
    ScriptCreateParams,
    ScriptRenameParams,
)

__all__ = ["ProjectHandlers", "DEFAULT_SCRIPT_EXTENSION"]

LOGGER = logging.getLogger(__name__)

DEFAULT_SCRIPT_EXTENSION = ".cs"


class ProjectHandlers:
    """Implements the catalog over one project.

    Handlers tagged main-affine in the catalog are only ever invoked on the
    host's main loop by the dispatcher; they report every mutation to the
    refresh coordinator so the host re-imports what changed.
    """

    def __init__(
        self,
        workspace: ProjectWorkspace,
        coordinator: RefreshCoordinator,
        aggregator: DiagnosticsAggregator,
        *,
        patch_service: PatchService | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._workspace = workspace
        self._coordinator = coordinator
        self._aggregator = aggregator
        self._patches = patch_service or PatchService()
        self._clock = clock

    def handler_table(self) -> Dict[str, Callable[[MethodParams], Any]]:
        table: Dict[str, Callable[[Any], Any]] = {
            "ping": self.ping,
            "project/info": self.project_info,
            "script/read": self.script_read,
            "script/create": self.script_create,
            "script/delete": self.script_delete,
            "script/rename": self.script_rename,
            "script/applyDiff": self.script_apply_diff,
            "script/derivePatches": self.script_derive_patches,
            "folder/create": self.folder_create,
            "folder/rename": self.folder_rename,
            "folder/move": self.folder_move,
            "folder/delete": self.folder_delete,
            "folder/list": self.folder_list,
            "batch/start": self.batch_start,
            "batch/end": self.batch_end,
            "refresh/request": self.refresh_request,
            "diagnostics/list": self.diagnostics_list,
            "diagnostics/status": self.diagnostics_status,
        }
        return cast(Dict[str, Callable[[MethodParams], Any]], table)

    # ------------------------------------------------------------------
    # Project
    # ------------------------------------------------------------------
    def ping(self, params: MethodParams) -> dict[str, Any]:
        return {"status": "ok", "time": self._timestamp()}

    def project_info(self, params: MethodParams) -> dict[str, Any]:
        info = self._workspace.info()
        info["batchActive"] = self._coordinator.batch_active
        info["refreshPending"] = self._coordinator.refresh_pending
        return info

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------
    def script_read(self, params: PathParams) -> dict[str, Any]:
        target = self._existing_file(params.path)
        document = read_text_file(target)
        return {
            "path": self._workspace.relative(target),
            "content": document.text,
            "encoding": document.encoding,
            "hasBom": document.has_bom,
            "lineCount": len(document.text.splitlines()),
        }

    def script_create(self, params: ScriptCreateParams) -> dict[str, Any]:
        target = self._workspace.resolve(params.path)
        if not target.suffix:
            target = target.with_name(target.name + DEFAULT_SCRIPT_EXTENSION)
        if target.is_dir():
            raise AlreadyExistsError(
                message=f"A folder already exists at {params.path}", details={"path": params.path}
            )
        existed = target.exists()
        if existed and not params.overwrite:
            raise AlreadyExistsError(
                message=f"File already exists: {self._workspace.relative(target)}",
                details={"path": self._workspace.relative(target)},
            )
        new_folders = self._missing_ancestors(target.parent)
        write_text_file(target, params.content)
        for folder in new_folders:
            self._workspace.ensure_meta(folder)
        guid = self._workspace.ensure_meta(target)
        relative = self._workspace.relative(target)
        self._coordinator.notify(MutationKind.MODIFIED if existed else MutationKind.CREATED, relative)
        LOGGER.info("%s %s", "Overwrote" if existed else "Created", relative)
        return {
            "path": relative,
            "created": not existed,
            "bytes": len(params.content.encode("utf-8")),
            "guid": guid,
        }

    def script_delete(self, params: PathParams) -> dict[str, Any]:
        target = self._existing_file(params.path)
        relative = self._workspace.relative(target)
        self._workspace.delete(target)
        self._coordinator.notify(MutationKind.DELETED, relative)
        return {"path": relative, "deleted": True}

    def script_rename(self, params: ScriptRenameParams) -> dict[str, Any]:
        source = self._existing_file(params.path)
        name = params.new_name
        if name in {".", ".."} or name.endswith(META_SUFFIX):
            raise InvalidParameterError(
                message=f"Cannot rename {params.path} to {name!r}",
                details={"path": params.path, "newName": name},
            )
        if not Path(name).suffix:
            name += source.suffix
        destination = source.with_name(name)
        payload = self._relocate(source, destination)
        payload["guid"] = self._workspace.read_guid(destination)
        return payload

    def script_apply_diff(self, params: ApplyDiffParams) -> dict[str, Any]:
        target = self._existing_file(params.path)
        result = self._patches.apply_to_file(
            target,
            params.patches,
            validate_context=params.validate_context,
            strictness=params.context_strictness,
            dry_run=params.dry_run,
        )
        relative = self._workspace.relative(target)
        if not params.dry_run and result.changed:
            self._coordinator.notify(MutationKind.MODIFIED, relative)
        payload = result.to_dict()
        payload["path"] = relative
        return payload

    def script_derive_patches(self, params: DerivePatchesParams) -> dict[str, Any]:
        target = self._existing_file(params.path)
        patches = self._patches.derive_for_file(target, params.content)
        return {
            "path": self._workspace.relative(target),
            "patches": [patch.to_dict() for patch in patches],
            "count": len(patches),
        }

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------
    def folder_create(self, params: FolderCreateParams) -> dict[str, Any]:
        target = self._workspace.resolve(params.path)
        if target.is_file():
            raise AlreadyExistsError(
                message=f"A file already exists at {params.path}", details={"path": params.path}
            )
        missing = self._missing_ancestors(target)
        if len(missing) > 1 and not params.recursive:
            raise NotFoundError.for_path(self._workspace.relative(target.parent), kind="folder")
        target.mkdir(parents=True, exist_ok=True)
        created: list[str] = []
        for folder in missing:
            self._workspace.ensure_meta(folder)
            created.append(self._workspace.relative(folder))
            self._coordinator.notify(MutationKind.CREATED, created[-1])
        return {"path": self._workspace.relative(target), "createdPaths": created}

    def folder_rename(self, params: FolderRenameParams) -> dict[str, Any]:
        source = self._existing_folder(params.path)
        if params.new_name in {".", ".."} or source == self._workspace.root:
            raise InvalidParameterError(
                message=f"Cannot rename {params.path} to {params.new_name!r}",
                details={"path": params.path, "newName": params.new_name},
            )
        destination = source.with_name(params.new_name)
        return self._relocate(source, destination)

    def folder_move(self, params: FolderMoveParams) -> dict[str, Any]:
        source = self._existing_folder(params.path)
        parent = self._existing_folder(params.destination)
        if parent == source or source in parent.parents:
            raise InvalidParameterError(
                message="Cannot move a folder into itself",
                details={"path": params.path, "destination": params.destination},
            )
        return self._relocate(source, parent / source.name)

    def folder_delete(self, params: PathParams) -> dict[str, Any]:
        target = self._existing_folder(params.path)
        if target in (self._workspace.root, self._workspace.assets_dir):
            raise InvalidParameterError(
                message="Refusing to delete the project or assets root", details={"path": params.path}
            )
        relative = self._workspace.relative(target)
        self._workspace.delete(target)
        self._coordinator.notify(MutationKind.DELETED, relative)
        return {"path": relative, "deleted": True}

    def folder_list(self, params: FolderListParams) -> dict[str, Any]:
        target = self._existing_folder(params.path)
        entries = sorted(target.rglob("*") if params.recursive else target.iterdir())
        folders: list[dict[str, Any]] = []
        files: list[dict[str, Any]] = []
        for entry in entries:
            if entry.name.endswith(META_SUFFIX) and not params.include_meta:
                continue
            item = {"name": entry.name, "path": self._workspace.relative(entry)}
            if entry.is_dir():
                folders.append(item)
            else:
                item["size"] = entry.stat().st_size
                files.append(item)
        return {
            "path": self._workspace.relative(target),
            "folders": folders,
            "files": files,
            "count": len(folders) + len(files),
        }

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    def batch_start(self, params: MethodParams) -> dict[str, Any]:
        started = self._coordinator.start_batch()
        return {"batchActive": True, "started": started}

    def batch_end(self, params: MethodParams) -> dict[str, Any]:
        request = self._coordinator.end_batch()
        return {
            "batchActive": False,
            "flushed": len(request.mutations) if request is not None else 0,
            "refreshSignaled": request is not None,
        }

    def refresh_request(self, params: RefreshParams) -> dict[str, Any]:
        request = self._coordinator.request_refresh(
            force_recompile=params.force_recompile,
            recompile_scripts=params.recompile_scripts,
            save_assets=params.save_assets,
            folders=params.folders,
        )
        return request.to_dict()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def diagnostics_list(self, params: DiagnosticsParams) -> dict[str, Any]:
        records = self._aggregator.collect(fresh=params.fresh, include_warnings=params.include_warnings)
        return {
            "diagnostics": [record.to_dict() for record in records],
            "errorCount": sum(1 for record in records if record.severity is Severity.ERROR),
            "warningCount": sum(1 for record in records if record.severity is Severity.WARNING),
            "timestamp": self._timestamp(),
        }

    def diagnostics_status(self, params: MethodParams) -> dict[str, Any]:
        return self._aggregator.status().to_dict()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _existing_file(self, path: str) -> Path:
        target = self._workspace.resolve(path, must_exist=True)
        if not target.is_file():
            raise NotFoundError.for_path(path)
        return target

    def _existing_folder(self, path: str) -> Path:
        target = self._workspace.resolve(path, must_exist=True, kind="folder")
        if not target.is_dir():
            raise NotFoundError.for_path(path, kind="folder")
        return target

    def _missing_ancestors(self, path: Path) -> list[Path]:
        """Folders from the outermost missing one down to ``path`` itself."""

        missing: list[Path] = []
        cursor = path
        while not cursor.exists() and cursor != self._workspace.root:
            missing.append(cursor)
            cursor = cursor.parent
        missing.reverse()
        return missing

    def _relocate(self, source: Path, destination: Path) -> dict[str, Any]:
        if destination.exists():
            raise AlreadyExistsError(
                message=f"Destination already exists: {self._workspace.relative(destination)}",
                details={"path": self._workspace.relative(destination)},
            )
        old_relative = self._workspace.relative(source)
        self._workspace.move(source, destination)
        new_relative = self._workspace.relative(destination)
        self._coordinator.notify(MutationKind.DELETED, old_relative)
        self._coordinator.notify(MutationKind.CREATED, new_relative)
        return {"oldPath": old_relative, "newPath": new_relative}

    def _timestamp(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
