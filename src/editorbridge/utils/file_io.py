"""Byte-faithful file IO helpers for project sources and marker artifacts."""

from __future__ import annotations

import codecs
import locale
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "TextFile",
    "read_text_file",
    "write_text_file",
    "write_text",
    "write_bytes_atomic",
    "read_tail_lines",
]

# UTF-32 LE must be checked before UTF-16 LE because it shares its first two bytes.
_BOM_MAP: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)
_TAIL_CHUNK_SIZE = 64 * 1024


@dataclass(slots=True, frozen=True)
class TextFile:
    """Decoded file contents plus what is needed to write them back unchanged.

    ``text`` never contains the byte-order mark; ``bom`` holds the raw mark
    (empty when the file had none) so a rewrite can restore it.
    """

    path: Path
    text: str
    encoding: str
    bom: bytes = b""

    @property
    def has_bom(self) -> bool:
        return bool(self.bom)


def read_text_file(path: Path | str, *, errors: str = "strict") -> TextFile:
    """Read ``path`` detecting its byte-order mark and encoding."""

    target = Path(path)
    raw = target.read_bytes()
    bom, encoding = _detect_bom(raw)
    if bom:
        text = raw[len(bom):].decode(encoding, errors=errors)
    else:
        encoding = _detect_encoding(raw)
        text = raw.decode(encoding, errors=errors)
    return TextFile(path=target, text=text, encoding=encoding, bom=bom)


def write_text_file(
    path: Path | str,
    text: str,
    *,
    encoding: str = "utf-8",
    bom: bytes = b"",
) -> Path:
    """Encode ``text`` and write it atomically, prefixing ``bom`` when given.

    Line endings are written exactly as they appear in ``text``.
    """

    return write_bytes_atomic(path, bom + text.encode(encoding))


def write_text(path: Path | str, content: str, *, encoding: str = "utf-8") -> Path:
    """Write ``content`` atomically without a byte-order mark."""

    return write_bytes_atomic(path, content.encode(encoding))


def write_bytes_atomic(path: Path | str, data: bytes) -> Path:
    """Write ``data`` to a sibling temp file and rename it over ``path``.

    A crash mid-write leaves either the previous file or the new one, never a
    truncated mix of both.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def read_tail_lines(
    path: Path | str,
    count: int,
    *,
    encoding: str = "utf-8",
    errors: str = "replace",
) -> list[str]:
    """Return the last ``count`` lines of ``path`` without reading the whole file."""

    if count <= 0:
        return []
    target = Path(path)
    with target.open("rb") as handle:
        handle.seek(0, os.SEEK_END)
        position = handle.tell()
        buffer = b""
        while position > 0 and buffer.count(b"\n") <= count:
            step = min(_TAIL_CHUNK_SIZE, position)
            position -= step
            handle.seek(position)
            buffer = handle.read(step) + buffer
    lines = buffer.decode(encoding, errors=errors).splitlines()
    return lines[-count:]


def _detect_bom(raw: bytes) -> tuple[bytes, str]:
    for bom, encoding in _BOM_MAP:
        if raw.startswith(bom):
            return bom, encoding
    return b"", ""


def _detect_encoding(raw: bytes) -> str:
    preferred = locale.getpreferredencoding(False) or "utf-8"
    seen: set[str] = set()
    for candidate in ("utf-8", preferred, "latin-1"):
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            raw.decode(candidate)
            return candidate
        except UnicodeDecodeError:
            continue
    return "utf-8"
