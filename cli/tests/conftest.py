"""Shared test fixtures for CLI tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
import structlog

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Isolate tests from the real configuration and lock file.

    Points HOME and XDG_CONFIG_HOME at a temporary directory so no user
    configuration file is found, clears every ``UUPD_*`` override and moves
    the single-instance lock under ``tmp_path``.

    This fixture is applied automatically to all tests in this module.
    """
    home = tmp_path / "home"
    home.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.delenv("SUDO_HOME", raising=False)
    for variable in [name for name in os.environ if name.startswith("UUPD_")]:
        monkeypatch.delenv(variable)
    monkeypatch.setenv("UUPD_LOCK_PATH", str(tmp_path / "uupd.lock"))

    yield home

    # Commands bind structlog to the runner's captured stderr
    structlog.reset_defaults()
