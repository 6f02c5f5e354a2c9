"""Merges every diagnostics source into one deduplicated, cached list."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Sequence

from ..core.events import CompileFinished, CompileStarted, EventBus
from .models import CompilationStatus, DiagnosticRecord, Severity
from .sources import DiagnosticSource, default_sources

__all__ = ["DiagnosticsAggregator"]

LOGGER = logging.getLogger(__name__)

_HOST_LOCK_FILE = "Temp/UnityLockfile"
_COMPILE_LOCK_FILES = (
    "Temp/CompileLock",
    "Library/ScriptAssemblies/Assembly-CSharp.dll.locked",
)
_MAIN_ASSEMBLY = "Library/ScriptAssemblies/Assembly-CSharp.dll"


class DiagnosticsAggregator:
    """Answers "what are the current compile errors" from racy, partial sources.

    Sources are merged in the order given; when two report the same
    ``(file, line, code, message)`` the first one wins. A failing source
    contributes nothing and is logged, so the aggregate never raises: an
    empty answer is preferred over blocking the caller on a diagnostics
    outage.
    """

    def __init__(
        self,
        project_root: Path | str,
        sources: Sequence[DiagnosticSource] | None = None,
        *,
        cache_ttl: float = 5.0,
        context_lines: int = 2,
        recompile: Callable[[], object] | None = None,
        poll_delay: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._root = Path(project_root)
        self._sources: list[DiagnosticSource] = list(sources) if sources is not None else default_sources()
        self._cache_ttl = cache_ttl
        self._context_lines = context_lines
        self._recompile = recompile
        self._poll_delay = poll_delay
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._cached: tuple[DiagnosticRecord, ...] | None = None
        self._cached_at = 0.0

    @property
    def sources(self) -> tuple[DiagnosticSource, ...]:
        return tuple(self._sources)

    def collect(self, *, fresh: bool = False, include_warnings: bool = True) -> list[DiagnosticRecord]:
        """Return the merged diagnostics.

        ``fresh`` bypasses the cache; when the fresh read is empty and a
        recompile trigger is wired, a recompile is requested and the sources
        are polled once more after ``poll_delay`` seconds.
        """

        with self._lock:
            records = None if fresh else self._cached_records()
            if records is None:
                records = self._gather()
                if fresh and not records and self._recompile is not None:
                    LOGGER.info("No diagnostics found; requesting a recompile and polling again")
                    try:
                        self._recompile()
                    except Exception:
                        LOGGER.exception("Recompile trigger failed")
                    else:
                        self._sleep(self._poll_delay)
                        records = self._gather()
                self._cached = records
                self._cached_at = self._clock()
        if include_warnings:
            return list(records)
        return [record for record in records if record.severity is Severity.ERROR]

    def status(self) -> CompilationStatus:
        """Infer the host's compile state from the files it leaves behind."""

        records = self.collect()
        assembly = self._root / _MAIN_ASSEMBLY
        last_compile = None
        try:
            last_compile = assembly.stat().st_mtime
        except OSError:
            pass
        return CompilationStatus(
            host_running=(self._root / _HOST_LOCK_FILE).exists(),
            is_compiling=any((self._root / relative).exists() for relative in _COMPILE_LOCK_FILES),
            last_compile_time=last_compile,
            error_count=sum(1 for record in records if record.severity is Severity.ERROR),
            warning_count=sum(1 for record in records if record.severity is Severity.WARNING),
        )

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    def attach(self, bus: EventBus) -> None:
        """Drop the cache whenever the host reports a compile boundary."""

        bus.subscribe(CompileStarted, self._on_compile_event)
        bus.subscribe(CompileFinished, self._on_compile_event)

    def _on_compile_event(self, event: object) -> None:
        LOGGER.debug("Invalidating diagnostics cache after %s", type(event).__name__)
        self.invalidate()

    def _cached_records(self) -> tuple[DiagnosticRecord, ...] | None:
        if self._cached is None:
            return None
        if self._clock() - self._cached_at >= self._cache_ttl:
            return None
        return self._cached

    def _gather(self) -> tuple[DiagnosticRecord, ...]:
        merged: dict[tuple[str, int, str, str], DiagnosticRecord] = {}
        for source in self._sources:
            name = getattr(source, "name", type(source).__name__)
            try:
                found = source.collect(self._root)
            except Exception as exc:
                LOGGER.warning("Diagnostics source %s failed: %s", name, exc)
                continue
            added = 0
            for record in found:
                if record.key in merged:
                    continue
                merged[record.key] = record
                added += 1
            LOGGER.debug("Source %s reported %d record(s), %d new", name, len(found), added)
        return tuple(self._enrich(list(merged.values())))

    def _enrich(self, records: list[DiagnosticRecord]) -> list[DiagnosticRecord]:
        if self._context_lines <= 0:
            return records
        file_cache: dict[str, list[str] | None] = {}
        enriched: list[DiagnosticRecord] = []
        for record in records:
            lines = file_cache.get(record.file)
            if record.file not in file_cache:
                lines = self._read_source_lines(record.file)
                file_cache[record.file] = lines
            index = record.line - 1
            if not lines or not 0 <= index < len(lines):
                enriched.append(record)
                continue
            start = max(0, index - self._context_lines)
            stop = min(len(lines), index + self._context_lines + 1)
            context = tuple(
                f"{'>' if position == index else ' '} {position + 1}: {lines[position]}"
                for position in range(start, stop)
            )
            enriched.append(record.with_context(context))
        return enriched

    def _read_source_lines(self, file: str) -> list[str] | None:
        if not file:
            return None
        path = Path(file)
        if not path.is_absolute():
            path = self._root / path
        try:
            return path.read_text(encoding="utf-8-sig", errors="replace").splitlines()
        except OSError:
            # Files get deleted between the compile and the query.
            return None
