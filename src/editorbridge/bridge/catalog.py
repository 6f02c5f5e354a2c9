"""Static method catalog: thread affinity and typed parameters for every method.

Each method names the dataclass its parameters are parsed into. Parameters
are validated against a Draft 7 schema that rejects unknown keys, so a typo
in an option name fails loudly instead of being silently ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping

from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from ..core.errors import InvalidParameterError, MethodNotFoundError
from ..patching.models import ContextStrictness, Patch

__all__ = [
    "Affinity",
    "MethodSpec",
    "MethodParams",
    "NoParams",
    "PathParams",
    "ScriptCreateParams",
    "ScriptRenameParams",
    "ApplyDiffParams",
    "DerivePatchesParams",
    "FolderCreateParams",
    "FolderRenameParams",
    "FolderMoveParams",
    "FolderListParams",
    "RefreshParams",
    "DiagnosticsParams",
    "CATALOG",
    "get_method",
    "parse_params",
]

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


class Affinity(str, Enum):
    """Where a method's handler is allowed to run."""

    WORKER = "worker"
    MAIN = "main"


def _object_schema(properties: Dict[str, Any], required: tuple[str, ...] = ()) -> Dict[str, Any]:
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        schema["required"] = list(required)
    return schema


_PATH = {"type": "string", "minLength": 1}
_CONTEXT_LINES = {"type": ["array", "string"], "items": {"type": "string"}}
PATCH_SCHEMA: Dict[str, Any] = {
    **_object_schema(
        {
            "startLine": {"type": "integer", "minimum": 1},
            "endLine": {"type": "integer", "minimum": 1},
            "searchPattern": {"type": "string", "minLength": 1},
            "matchMode": {
                "type": "string",
                "enum": ["exact", "case-insensitive", "case_insensitive", "fuzzy", "regex"],
            },
            "occurrence": {"type": "integer", "minimum": 1},
            "oldContent": {"type": "string", "minLength": 1},
            "contextBefore": _CONTEXT_LINES,
            "contextAfter": _CONTEXT_LINES,
            "newContent": {"type": ["string", "null"]},
        },
        required=("newContent",),
    ),
    "anyOf": [
        {"required": ["startLine"]},
        {"required": ["searchPattern"]},
        {"required": ["oldContent"]},
    ],
}


@dataclass(slots=True, frozen=True)
class MethodParams:
    """Base for per-method parameter structs."""

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema({})

    @classmethod
    def parse(cls, payload: Mapping[str, Any] | None) -> "MethodParams":
        data = dict(payload or {})
        error = best_match(_validator_for(cls).iter_errors(data))
        if error is not None:
            location = "/".join(str(part) for part in error.absolute_path)
            raise InvalidParameterError(
                message=f"{location}: {error.message}" if location else error.message,
                details={"path": location, "schema": error.validator},
            )
        return cls._from_wire(data)

    @classmethod
    def _from_wire(cls, data: Mapping[str, Any]) -> "MethodParams":
        allowed = {item.name for item in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _CAMEL_RE.sub("_", key).lower()
            if name in allowed:
                kwargs[name] = value
        return cls(**kwargs)


@dataclass(slots=True, frozen=True)
class NoParams(MethodParams):
    pass


@dataclass(slots=True, frozen=True)
class PathParams(MethodParams):
    path: str

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema({"path": _PATH}, required=("path",))


@dataclass(slots=True, frozen=True)
class ScriptCreateParams(MethodParams):
    """``overwrite`` replaces an existing file instead of failing with ``already_exists``."""

    path: str
    content: str = ""
    overwrite: bool = False

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"path": _PATH, "content": {"type": "string"}, "overwrite": {"type": "boolean"}},
        required=("path",),
    )


@dataclass(slots=True, frozen=True)
class ApplyDiffParams(MethodParams):
    """``dryRun`` previews without writing; ``validateContext`` checks surrounding lines."""

    path: str
    patches: tuple[Patch, ...]
    validate_context: bool = True
    dry_run: bool = False
    context_strictness: ContextStrictness = ContextStrictness.TRIMMED

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {
            "path": _PATH,
            "patches": {"type": "array", "minItems": 1, "items": PATCH_SCHEMA},
            "validateContext": {"type": "boolean"},
            "dryRun": {"type": "boolean"},
            "contextStrictness": {"type": "string", "enum": [level.value for level in ContextStrictness]},
        },
        required=("path", "patches"),
    )

    @classmethod
    def _from_wire(cls, data: Mapping[str, Any]) -> "ApplyDiffParams":
        return cls(
            path=data["path"],
            patches=tuple(Patch.from_mapping(entry) for entry in data["patches"]),
            validate_context=data.get("validateContext", True),
            dry_run=data.get("dryRun", False),
            context_strictness=ContextStrictness.parse(data.get("contextStrictness")),
        )


@dataclass(slots=True, frozen=True)
class DerivePatchesParams(MethodParams):
    path: str
    content: str

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"path": _PATH, "content": {"type": "string"}}, required=("path", "content")
    )


@dataclass(slots=True, frozen=True)
class FolderCreateParams(MethodParams):
    path: str
    recursive: bool = True

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"path": _PATH, "recursive": {"type": "boolean"}}, required=("path",)
    )


@dataclass(slots=True, frozen=True)
class FolderRenameParams(MethodParams):
    path: str
    new_name: str

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"path": _PATH, "newName": {"type": "string", "pattern": r"^[^/\\]+$"}},
        required=("path", "newName"),
    )


@dataclass(slots=True, frozen=True)
class ScriptRenameParams(MethodParams):
    """Renames a file in place; a ``newName`` without an extension keeps the old one."""

    path: str
    new_name: str

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"path": _PATH, "newName": {"type": "string", "pattern": r"^[^/\\]+$"}},
        required=("path", "newName"),
    )


@dataclass(slots=True, frozen=True)
class FolderMoveParams(MethodParams):
    """Moves ``path`` into the existing folder ``destination``."""

    path: str
    destination: str

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"path": _PATH, "destination": _PATH}, required=("path", "destination")
    )


@dataclass(slots=True, frozen=True)
class FolderListParams(MethodParams):
    path: str = "Assets"
    recursive: bool = False
    include_meta: bool = False

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"path": _PATH, "recursive": {"type": "boolean"}, "includeMeta": {"type": "boolean"}}
    )


@dataclass(slots=True, frozen=True)
class RefreshParams(MethodParams):
    force_recompile: bool = False
    recompile_scripts: bool = False
    save_assets: bool = False
    folders: tuple[str, ...] = ()

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {
            "forceRecompile": {"type": "boolean"},
            "recompileScripts": {"type": "boolean"},
            "saveAssets": {"type": "boolean"},
            "folders": {"type": "array", "items": _PATH},
        }
    )

    @classmethod
    def _from_wire(cls, data: Mapping[str, Any]) -> "RefreshParams":
        return cls(
            force_recompile=data.get("forceRecompile", False),
            recompile_scripts=data.get("recompileScripts", False),
            save_assets=data.get("saveAssets", False),
            folders=tuple(data.get("folders", ())),
        )


@dataclass(slots=True, frozen=True)
class DiagnosticsParams(MethodParams):
    """``fresh`` bypasses the cache and may trigger a recompile when nothing is found."""

    fresh: bool = False
    include_warnings: bool = True

    SCHEMA: ClassVar[Dict[str, Any]] = _object_schema(
        {"fresh": {"type": "boolean"}, "includeWarnings": {"type": "boolean"}}
    )


@dataclass(slots=True, frozen=True)
class MethodSpec:
    name: str
    affinity: Affinity
    params_type: type[MethodParams]
    description: str = ""


def _spec(name: str, affinity: Affinity, params_type: type[MethodParams], description: str) -> MethodSpec:
    return MethodSpec(name=name, affinity=affinity, params_type=params_type, description=description)


_W, _M = Affinity.WORKER, Affinity.MAIN

# Anything that mutates the project runs on the host's main loop; reads may race it.
CATALOG: Mapping[str, MethodSpec] = {
    spec.name: spec
    for spec in (
        _spec("ping", _W, NoParams, "Liveness check"),
        _spec("project/info", _W, NoParams, "Project name, path and host version"),
        _spec("script/read", _W, PathParams, "Read a source file"),
        _spec("script/create", _M, ScriptCreateParams, "Create a source file"),
        _spec("script/delete", _M, PathParams, "Delete a source file and its sidecar"),
        _spec("script/rename", _M, ScriptRenameParams, "Rename a source file and its sidecar"),
        _spec("script/applyDiff", _M, ApplyDiffParams, "Apply localized line patches"),
        _spec("script/derivePatches", _W, DerivePatchesParams, "Compute patches from new content"),
        _spec("folder/create", _M, FolderCreateParams, "Create a folder"),
        _spec("folder/rename", _M, FolderRenameParams, "Rename a folder in place"),
        _spec("folder/move", _M, FolderMoveParams, "Move a folder into another folder"),
        _spec("folder/delete", _M, PathParams, "Delete a folder tree and its sidecar"),
        _spec("folder/list", _W, FolderListParams, "List folder contents"),
        _spec("batch/start", _W, NoParams, "Begin coalescing refresh signals"),
        _spec("batch/end", _W, NoParams, "Flush coalesced refresh signals"),
        _spec("refresh/request", _W, RefreshParams, "Signal a host refresh now"),
        _spec("diagnostics/list", _W, DiagnosticsParams, "Current compile errors and warnings"),
        _spec("diagnostics/status", _W, NoParams, "Compile state and counts"),
    )
}

_VALIDATORS: Dict[type, Draft7Validator] = {}


def _validator_for(params_type: type[MethodParams]) -> Draft7Validator:
    validator = _VALIDATORS.get(params_type)
    if validator is None:
        validator = Draft7Validator(params_type.SCHEMA)
        _VALIDATORS[params_type] = validator
    return validator


def get_method(name: str) -> MethodSpec:
    spec = CATALOG.get(name)
    if spec is None:
        raise MethodNotFoundError(
            message=f"Unknown method: {name}",
            details={"method": name, "available": sorted(CATALOG)},
        )
    return spec


def parse_params(name: str, payload: Mapping[str, Any] | None) -> MethodParams:
    """Validate ``payload`` for method ``name`` and return its typed parameters."""

    return get_method(name).params_type.parse(payload)
