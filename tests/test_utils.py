"""Tests for the file IO and logging helpers."""

from __future__ import annotations

import codecs
import io
import logging
from pathlib import Path

import pytest

from editorbridge.utils import logging as logging_utils
from editorbridge.utils.file_io import (
    read_tail_lines,
    read_text_file,
    write_bytes_atomic,
    write_text_file,
)


class TestTextFiles:
    def test_utf8_bom_is_detected_and_stripped(self, tmp_path: Path) -> None:
        target = tmp_path / "a.cs"
        target.write_bytes(codecs.BOM_UTF8 + "héllo\n".encode("utf-8"))

        document = read_text_file(target)

        assert document.text == "héllo\n"
        assert document.has_bom
        assert document.encoding == "utf-8"

    def test_utf16_bom(self, tmp_path: Path) -> None:
        target = tmp_path / "a.cs"
        target.write_bytes(codecs.BOM_UTF16_LE + "hi\r\n".encode("utf-16-le"))

        document = read_text_file(target)

        assert document.text == "hi\r\n"
        assert document.encoding == "utf-16-le"

    def test_rewrite_restores_bom_and_line_endings(self, tmp_path: Path) -> None:
        target = tmp_path / "a.cs"
        original = codecs.BOM_UTF8 + b"one\r\ntwo\r\n"
        target.write_bytes(original)
        document = read_text_file(target)

        write_text_file(target, document.text, encoding=document.encoding, bom=document.bom)

        assert target.read_bytes() == original

    def test_latin1_fallback(self, tmp_path: Path) -> None:
        target = tmp_path / "legacy.txt"
        target.write_bytes(b"caf\xe9\n")

        document = read_text_file(target)

        assert document.text.endswith("\n")
        assert not document.has_bom

    def test_atomic_write_leaves_no_temp_files(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "out.bin"

        write_bytes_atomic(target, b"payload")
        write_bytes_atomic(target, b"replaced")

        assert target.read_bytes() == b"replaced"
        assert [path.name for path in target.parent.iterdir()] == ["out.bin"]

    def test_tail_lines(self, tmp_path: Path) -> None:
        target = tmp_path / "Editor.log"
        target.write_text("\n".join(f"line {index}" for index in range(100)) + "\n", encoding="utf-8")

        assert read_tail_lines(target, 3) == ["line 97", "line 98", "line 99"]
        assert read_tail_lines(target, 0) == []
        assert len(read_tail_lines(target, 500)) == 100


class TestLogging:
    def test_setup_writes_to_rotating_file_and_stream(self, tmp_path: Path) -> None:
        stream = io.StringIO()

        log_path = logging_utils.setup_logging("debug", log_dir=tmp_path, stream=stream, force=True)
        logging.getLogger("editorbridge.test").info("hello from the bridge")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_path == tmp_path / "editorbridge.log"
        assert logging_utils.get_log_path() == log_path
        assert "hello from the bridge" in log_path.read_text(encoding="utf-8")
        assert "MainThread" in stream.getvalue()
        assert logging.getLogger("asyncio").level == logging.WARNING

    def test_log_dir_environment_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EDITORBRIDGE_LOG_DIR", str(tmp_path / "from-env"))

        log_path = logging_utils.setup_logging(logging.INFO, console=False, force=True)

        assert log_path.parent == tmp_path / "from-env"

    @pytest.mark.parametrize(("value", "expected"), [("debug", logging.DEBUG), (30, 30), (None, logging.INFO), ("bogus", logging.INFO)])
    def test_resolve_level(self, value: object, expected: int) -> None:
        assert logging_utils.resolve_level(value) == expected  # type: ignore[arg-type]
