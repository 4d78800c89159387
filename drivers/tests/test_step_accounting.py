"""Step accounting for every driver.

The orchestrator sizes the progress bar from steps() before anything runs,
so each driver must increment exactly that many times in update().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from core.models import User
from core.progress import Incrementer
from drivers.brew import BrewDriver
from drivers.distrobox import DISTROBOX_BINARY_ENV, DistroboxDriver
from drivers.flatpak import FLATPAK_BINARY_ENV, FlatpakDriver
from drivers.rpm_ostree import RPM_OSTREE_BINARY_ENV, RpmOstreeDriver
from drivers.system import BOOTC_BINARY_ENV, BootcDriver

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from conftest import RecordingRunner
    from core.models import UpdaterInitConfig
    from drivers.base import BaseDriver

MANY_USERS = [User(uid=1000 + i, name=f"user{i}") for i in range(4)]


def binary_environment(variable: str, name: str) -> Callable[..., dict[str, str]]:
    def build(fake_binary: Callable[[str], str], _tmp_path: Path) -> dict[str, str]:
        return {variable: fake_binary(name)}

    return build


def brew_environment(_fake_binary: Callable[[str], str], tmp_path: Path) -> dict[str, str]:
    prefix = tmp_path / "linuxbrew"
    binary = prefix / "bin" / "brew"
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_text("#!/bin/sh\nexit 0\n")
    binary.chmod(0o755)
    return {"HOMEBREW_PREFIX": str(prefix)}


# Driver, environment builder, commands run per step
DRIVERS = [
    pytest.param(BootcDriver, binary_environment(BOOTC_BINARY_ENV, "bootc"), 1, id="bootc"),
    pytest.param(
        RpmOstreeDriver,
        binary_environment(RPM_OSTREE_BINARY_ENV, "rpm-ostree"),
        1,
        id="rpm-ostree",
    ),
    pytest.param(BrewDriver, brew_environment, 2, id="brew"),
    pytest.param(
        FlatpakDriver,
        binary_environment(FLATPAK_BINARY_ENV, "flatpak"),
        1,
        id="flatpak",
    ),
    pytest.param(
        DistroboxDriver,
        binary_environment(DISTROBOX_BINARY_ENV, "distrobox"),
        1,
        id="distrobox",
    ),
]

SETUPS = [pytest.param(*driver.values[:2], id=driver.id) for driver in DRIVERS]


class TestStepAccounting:
    """steps() must equal the number of increments update() performs."""

    @pytest.mark.parametrize(("driver_cls", "environment", "commands"), DRIVERS)
    @pytest.mark.parametrize("user_count", [None, 0, 1, 4])
    @pytest.mark.parametrize("dry_run", [True, False])
    @pytest.mark.asyncio
    async def test_steps_match_increments(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        fake_binary: Callable[[str], str],
        tmp_path: Path,
        driver_cls: type[BaseDriver],
        environment: Callable[..., dict[str, str]],
        commands: int,
        user_count: int | None,
        dry_run: bool,
    ) -> None:
        users = None if user_count is None else MANY_USERS[:user_count]
        config = make_init_config(dry_run=dry_run, environment=environment(fake_binary, tmp_path))
        driver = driver_cls(config, runner, users)
        # Headroom so over-counting is not clipped at the maximum
        tracker = Incrementer(driver.steps() + 5)

        outputs = await driver.update(tracker)

        expected_steps = 1 + (user_count or 0) if driver_cls.MULTI_USER else 1
        assert driver.steps() == expected_steps
        assert tracker.current_step == expected_steps
        if dry_run:
            assert runner.calls == []
            assert outputs == []
        else:
            assert len(runner.calls) == commands * expected_steps
            assert len(outputs) == commands * expected_steps

    @pytest.mark.parametrize(("driver_cls", "environment"), SETUPS)
    @pytest.mark.asyncio
    async def test_failures_still_consume_every_step(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        fake_binary: Callable[[str], str],
        tmp_path: Path,
        driver_cls: type[BaseDriver],
        environment: Callable[..., dict[str, str]],
    ) -> None:
        runner.fail([], output="error\n")
        config = make_init_config(environment=environment(fake_binary, tmp_path))
        driver = driver_cls(config, runner, MANY_USERS[:2])
        tracker = Incrementer(driver.steps() + 5)

        await driver.update(tracker)

        assert tracker.current_step == driver.steps()
        assert tracker.failed_increments == driver.steps()

    @pytest.mark.parametrize(("driver_cls", "environment"), SETUPS)
    @pytest.mark.asyncio
    async def test_dry_run_check_runs_nothing(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        fake_binary: Callable[[str], str],
        tmp_path: Path,
        driver_cls: type[BaseDriver],
        environment: Callable[..., dict[str, str]],
    ) -> None:
        config = make_init_config(dry_run=True, environment=environment(fake_binary, tmp_path))
        driver = driver_cls(config, runner)

        assert await driver.check() is True
        assert runner.calls == []
