"""Tests for :class:`editorbridge.patching.service.PatchService`."""

from __future__ import annotations

import codecs
from pathlib import Path

import pytest

from editorbridge.core.errors import LocatorError, NotFoundError
from editorbridge.patching import Patch, PatchService


@pytest.fixture()
def service() -> PatchService:
    return PatchService()


def test_commit_rewrites_file(tmp_path: Path, service: PatchService) -> None:
    target = tmp_path / "Player.cs"
    target.write_bytes(b"void Start()\n{\n}\n")

    result = service.apply_to_file(target, [Patch(search_pattern="Start()", new_content="void Awake()")])

    assert target.read_bytes() == b"void Awake()\n{\n}\n"
    assert result.metadata["path"] == str(target)
    assert result.metadata["bomPreserved"] is False
    assert result.to_dict()["applied"] == 1


def test_byte_order_mark_is_preserved(tmp_path: Path, service: PatchService) -> None:
    target = tmp_path / "Enemy.cs"
    target.write_bytes(codecs.BOM_UTF8 + b"line1\r\nline2\r\n")

    result = service.apply_to_file(target, [Patch(start_line=2, new_content="second")])

    assert target.read_bytes() == codecs.BOM_UTF8 + b"line1\r\nsecond\r\n"
    assert result.metadata["bomPreserved"] is True


def test_dry_run_leaves_file_untouched(tmp_path: Path, service: PatchService) -> None:
    target = tmp_path / "A.cs"
    original = b"a\nb\n"
    target.write_bytes(original)

    result = service.apply_to_file(target, [Patch(start_line=1, new_content="z")], dry_run=True)

    assert target.read_bytes() == original
    assert result.text == "z\nb\n"
    assert result.dry_run


def test_failed_patch_set_leaves_file_byte_identical(tmp_path: Path, service: PatchService) -> None:
    target = tmp_path / "A.cs"
    original = b"alpha\r\nbeta\r\n"
    target.write_bytes(original)
    before = target.stat().st_mtime_ns

    with pytest.raises(LocatorError):
        service.apply_to_file(
            target,
            [Patch(start_line=1, new_content="changed"), Patch(search_pattern="gamma", new_content="x")],
        )

    assert target.read_bytes() == original
    assert target.stat().st_mtime_ns == before
    assert list(tmp_path.iterdir()) == [target]


def test_missing_file_raises_not_found(tmp_path: Path, service: PatchService) -> None:
    with pytest.raises(NotFoundError):
        service.apply_to_file(tmp_path / "Missing.cs", [Patch(start_line=1, new_content="x")])


def test_derive_for_file(tmp_path: Path, service: PatchService) -> None:
    target = tmp_path / "A.cs"
    target.write_text("a\nb\nc\n", encoding="utf-8")

    patches = service.derive_for_file(target, "a\nB\nc\n")

    assert len(patches) == 1
    assert patches[0].start_line == 2
    assert patches[0].new_content == "B"
