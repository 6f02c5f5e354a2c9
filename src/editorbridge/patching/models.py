"""Patch descriptors and results for the line-oriented patch engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from ..core.errors import InvalidParameterError


class MatchMode(str, Enum):
    """How ``search_pattern`` is compared against each line."""

    EXACT = "exact"
    CASE_INSENSITIVE = "case-insensitive"
    REGEX = "regex"

    @classmethod
    def parse(cls, value: "str | MatchMode | None") -> "MatchMode":
        if value is None:
            return cls.EXACT
        if isinstance(value, MatchMode):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        # Older clients call case-insensitive matching "fuzzy".
        if normalized == "fuzzy":
            return cls.CASE_INSENSITIVE
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidParameterError(
                message=f"Unknown match mode: {value!r}",
                details={"field": "matchMode", "allowed": [mode.value for mode in cls]},
            ) from None


class ContextStrictness(str, Enum):
    """How expected context lines are compared with the file.

    ``exact`` compares verbatim, ``trimmed`` ignores leading and trailing
    whitespace, ``normalized`` additionally collapses internal whitespace runs.
    """

    EXACT = "exact"
    TRIMMED = "trimmed"
    NORMALIZED = "normalized"

    @classmethod
    def parse(cls, value: "str | ContextStrictness | None") -> "ContextStrictness":
        if value is None:
            return cls.TRIMMED
        if isinstance(value, ContextStrictness):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidParameterError(
                message=f"Unknown context strictness: {value!r}",
                details={"field": "contextStrictness", "allowed": [level.value for level in cls]},
            ) from None

    def normalize(self, line: str) -> str:
        if self is ContextStrictness.EXACT:
            return line
        if self is ContextStrictness.TRIMMED:
            return line.strip()
        return " ".join(line.split())


@dataclass(slots=True)
class Patch:
    """A single localized edit.

    Exactly one locator is used, in priority order: ``start_line``/``end_line``,
    then ``search_pattern``, then ``old_content``. ``new_content=None`` deletes
    the located lines; an empty string replaces them with one blank line.
    """

    new_content: str | None
    start_line: int | None = None
    end_line: int | None = None
    search_pattern: str | None = None
    match_mode: MatchMode = MatchMode.EXACT
    occurrence: int = 1
    old_content: str | None = None
    context_before: tuple[str, ...] = ()
    context_after: tuple[str, ...] = ()

    @property
    def locator_kind(self) -> str | None:
        if self.start_line is not None:
            return "range"
        if self.search_pattern:
            return "pattern"
        if self.old_content is not None and self.old_content.strip():
            return "content"
        return None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Patch":
        """Build a patch from its wire representation (camelCase keys)."""

        return cls(
            new_content=_as_content(payload.get("newContent")),
            start_line=payload.get("startLine"),
            end_line=payload.get("endLine"),
            search_pattern=payload.get("searchPattern"),
            match_mode=MatchMode.parse(payload.get("matchMode")),
            occurrence=int(payload.get("occurrence", 1)),
            old_content=payload.get("oldContent"),
            context_before=_as_lines(payload.get("contextBefore")),
            context_after=_as_lines(payload.get("contextAfter")),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"newContent": self.new_content}
        if self.start_line is not None:
            payload["startLine"] = self.start_line
        if self.end_line is not None:
            payload["endLine"] = self.end_line
        if self.search_pattern is not None:
            payload["searchPattern"] = self.search_pattern
            payload["matchMode"] = self.match_mode.value
        if self.occurrence != 1:
            payload["occurrence"] = self.occurrence
        if self.old_content is not None:
            payload["oldContent"] = self.old_content
        if self.context_before:
            payload["contextBefore"] = list(self.context_before)
        if self.context_after:
            payload["contextAfter"] = list(self.context_after)
        return payload


@dataclass(slots=True, frozen=True)
class ResolvedPatch:
    """A patch bound to a 0-based, end-exclusive line span of the original text."""

    index: int
    patch: Patch
    start: int
    end: int

    @property
    def start_line(self) -> int:
        return self.start + 1

    @property
    def end_line(self) -> int:
        return self.end


@dataclass(slots=True)
class PatchOutcome:
    """Per-patch report: where it landed and what it changed."""

    index: int
    start_line: int
    end_line: int
    locator: str
    preview: str
    lines_removed: int
    lines_added: int

    @property
    def location(self) -> str:
        if self.start_line == self.end_line:
            return f"line {self.start_line}"
        return f"lines {self.start_line}-{self.end_line}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "location": self.location,
            "locator": self.locator,
            "linesRemoved": self.lines_removed,
            "linesAdded": self.lines_added,
            "preview": self.preview,
        }


@dataclass(slots=True)
class PatchResult:
    """Result of applying a patch set to a document."""

    text: str
    outcomes: tuple[PatchOutcome, ...] = ()
    dry_run: bool = False
    changed: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "dryRun": self.dry_run,
            "changed": self.changed,
            "patches": [outcome.to_dict() for outcome in self.outcomes],
        }
        payload["previewed" if self.dry_run else "applied"] = self.count
        payload.update(self.metadata)
        return payload


def _as_lines(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split("\n"))
    if isinstance(value, Sequence):
        return tuple(str(item) for item in value)
    raise InvalidParameterError(
        message="Context lines must be a string or a list of strings",
        details={"value": repr(value)},
    )


def _as_content(value: Any) -> str | None:
    # ``null`` removes the located lines; any string, even "", replaces them.
    if value is None:
        return None
    return str(value)


__all__ = [
    "MatchMode",
    "ContextStrictness",
    "Patch",
    "ResolvedPatch",
    "PatchOutcome",
    "PatchResult",
]
