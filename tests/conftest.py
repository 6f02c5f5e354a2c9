"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep host environment overrides and log files out of the test run."""

    for name in list(os.environ):
        if name.startswith("EDITORBRIDGE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("EDITORBRIDGE_LOG_DIR", str(tmp_path / "logs"))
