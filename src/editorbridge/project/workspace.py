"""Filesystem view of a host project: safe paths, sidecars and project facts."""

from __future__ import annotations

import logging
import re
import shutil
import uuid
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ..core.errors import InvalidParameterError, NotFoundError
from ..utils.file_io import write_text

__all__ = ["ProjectWorkspace", "META_SUFFIX"]

LOGGER = logging.getLogger(__name__)

META_SUFFIX = ".meta"
_VERSION_FILE = "ProjectSettings/ProjectVersion.txt"
_HOST_LOCK_FILE = "Temp/UnityLockfile"
_GUID_RE = re.compile(r"^guid:\s*([0-9a-f]{32})\s*$", re.MULTILINE)
_IMPORTERS = {
    ".cs": (
        "MonoImporter:\n"
        "  externalObjects: {}\n"
        "  serializedVersion: 2\n"
        "  defaultReferences: []\n"
        "  executionOrder: 0\n"
        "  icon: {instanceID: 0}\n"
    ),
    ".shader": "ShaderImporter:\n  externalObjects: {}\n  defaultTextures: []\n  nonModifiableTextures: []\n",
    ".mat": "NativeFormatImporter:\n  externalObjects: {}\n  mainObjectFileID: 2100000\n",
}
_DEFAULT_IMPORTER = "DefaultImporter:\n  externalObjects: {}\n"
_IMPORTER_TAIL = "  userData: \n  assetBundleName: \n  assetBundleVariant: \n"


class ProjectWorkspace:
    """Resolves client-supplied paths inside one project root.

    The host keeps a ``.meta`` sidecar next to every asset holding its stable
    identifier. Moves and deletes go through this class so the sidecar
    travels with (or disappears with) its asset; losing it would break every
    reference the host holds to that asset.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def name(self) -> str:
        return self._root.name

    @property
    def assets_dir(self) -> Path:
        return self._root / "Assets"

    @property
    def temp_dir(self) -> Path:
        return self._root / "Temp"

    @property
    def library_dir(self) -> Path:
        return self._root / "Library"

    def resolve(self, path: str, *, must_exist: bool = False, kind: str = "file") -> Path:
        """Return the absolute path for ``path``, refusing anything outside the root."""

        if not isinstance(path, str) or not path.strip():
            raise InvalidParameterError(message="Path must be a non-empty string", details={"path": path})
        candidate = Path(path.strip().replace("\\", "/"))
        if not candidate.is_absolute():
            candidate = self._root / candidate
        resolved = candidate.resolve()
        if resolved != self._root and self._root not in resolved.parents:
            raise InvalidParameterError(
                message=f"Path escapes the project root: {path}",
                details={"path": path, "root": str(self._root)},
            )
        if must_exist and not resolved.exists():
            raise NotFoundError.for_path(path, kind=kind)
        return resolved

    def relative(self, path: Path) -> str:
        """Project-relative, forward-slash form of ``path``."""

        try:
            return path.resolve().relative_to(self._root).as_posix()
        except ValueError:
            return path.as_posix()

    @staticmethod
    def meta_path(path: Path) -> Path:
        return path.with_name(path.name + META_SUFFIX)

    def read_guid(self, path: Path) -> str | None:
        """Identifier recorded in the sidecar of ``path``, if it has a readable one."""

        try:
            text = self.meta_path(path).read_text(encoding="utf-8")
        except OSError:
            return None
        match = _GUID_RE.search(text)
        return match.group(1) if match else None

    def ensure_meta(self, path: Path) -> str | None:
        """Give an asset under ``Assets/`` a sidecar with a fresh identifier.

        An existing sidecar is kept as is. Returns the asset's identifier, or
        None for paths the host does not track.
        """

        if self.assets_dir not in path.parents:
            return None
        existing = self.read_guid(path)
        if existing is not None:
            return existing
        guid = uuid.uuid4().hex
        if path.is_dir():
            importer = "folderAsset: yes\n" + _DEFAULT_IMPORTER
        else:
            importer = _IMPORTERS.get(path.suffix.lower(), _DEFAULT_IMPORTER)
        write_text(self.meta_path(path), f"fileFormatVersion: 2\nguid: {guid}\n{importer}{_IMPORTER_TAIL}")
        LOGGER.debug("Generated sidecar for %s (%s)", self.relative(path), guid)
        return guid

    def move(self, source: Path, destination: Path) -> None:
        """Move an asset and its sidecar."""

        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))
        meta = self.meta_path(source)
        if meta.exists():
            shutil.move(str(meta), str(self.meta_path(destination)))
        LOGGER.debug("Moved %s -> %s", self.relative(source), self.relative(destination))

    def delete(self, path: Path) -> None:
        """Delete an asset (file or folder tree) and its sidecar."""

        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        meta = self.meta_path(path)
        if meta.exists():
            meta.unlink()
        LOGGER.debug("Deleted %s", self.relative(path))

    def host_version(self) -> str | None:
        """Host editor version recorded in the project settings, if present."""

        target = self._root / _VERSION_FILE
        if not target.is_file():
            return None
        parser = YAML(typ="safe")
        try:
            payload = parser.load(target.read_text(encoding="utf-8"))
        except (OSError, YAMLError) as exc:
            LOGGER.warning("Unable to read %s: %s", target, exc)
            return None
        if not isinstance(payload, dict):
            return None
        version = payload.get("m_EditorVersion")
        return str(version) if version is not None else None

    def host_running(self) -> bool:
        return (self._root / _HOST_LOCK_FILE).exists()

    def info(self) -> dict[str, Any]:
        return {
            "projectName": self.name,
            "projectPath": str(self._root),
            "assetsPath": str(self.assets_dir),
            "hostVersion": self.host_version(),
            "hostRunning": self.host_running(),
        }
