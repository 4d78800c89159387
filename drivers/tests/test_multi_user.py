"""Tests for the Flatpak and Distrobox drivers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from core.progress import Incrementer
from drivers.distrobox import DISTROBOX_BINARY_ENV, DistroboxDriver
from drivers.flatpak import FLATPAK_BINARY_ENV, FlatpakDriver

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import RecordingRunner
    from core.models import UpdaterInitConfig, User


def make_flatpak(
    make_init_config: Callable[..., UpdaterInitConfig],
    runner: RecordingRunner,
    binary: str,
    users: list[User] | None,
    *,
    dry_run: bool = False,
) -> FlatpakDriver:
    config = make_init_config(dry_run=dry_run, environment={FLATPAK_BINARY_ENV: binary})
    return FlatpakDriver(config, runner, users)


class TestFlatpakDriver:
    """Tests for FlatpakDriver."""

    def test_descriptor(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        driver = FlatpakDriver(make_init_config(dry_run=True), runner)

        assert driver.config.title == "Flatpak"
        assert driver.config.description == "System Apps"
        assert driver.config.user_description == "Apps for User:"
        assert driver.config.multi_user is True
        assert driver.binary_path == "/usr/bin/flatpak"

    def test_binary_from_configuration(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        config = make_init_config(
            dry_run=True, modules={"flatpak": {"flatpak-binary": "/opt/flatpak"}}
        )
        assert FlatpakDriver(config, runner).binary_path == "/opt/flatpak"

    def test_environment_beats_configuration(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        config = make_init_config(
            dry_run=True,
            environment={FLATPAK_BINARY_ENV: "/env/flatpak"},
            modules={"flatpak": {"flatpak-binary": "/opt/flatpak"}},
        )
        assert FlatpakDriver(config, runner).binary_path == "/env/flatpak"

    def test_missing_binary_disables(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        users: list[User],
    ) -> None:
        driver = make_flatpak(make_init_config, runner, "/nonexistent/flatpak", users)

        assert driver.config.enabled is False
        assert driver.steps() == 0

    def test_dry_run_skips_binary_probe(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        driver = make_flatpak(make_init_config, runner, "/nonexistent/flatpak", None, dry_run=True)
        assert driver.config.enabled is True

    def test_disabled_in_configuration(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        fake_binary: Callable[[str], str],
    ) -> None:
        config = make_init_config(
            environment={FLATPAK_BINARY_ENV: fake_binary("flatpak")},
            modules={"flatpak": {"disable": True}},
        )
        assert FlatpakDriver(config, runner).steps() == 0

    @pytest.mark.asyncio
    async def test_system_then_users(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        fake_binary: Callable[[str], str],
        users: list[User],
    ) -> None:
        binary = fake_binary("flatpak")
        driver = make_flatpak(make_init_config, runner, binary, users)
        tracker = Incrementer(driver.steps() + 1)

        outputs = await driver.update(tracker)

        assert [call.argv for call in runner.calls] == [
            [binary, "update", "-y", "--noninteractive"],
            [binary, "update", "-y"],
            [binary, "update", "-y"],
        ]
        assert [call.uid for call in runner.calls] == [None, 1000, 1001]
        assert [output.context for output in outputs] == [
            "System Apps",
            "Apps for User: alice",
            "Apps for User: bob",
        ]
        assert tracker.current_step == 3

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_user_passes(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        fake_binary: Callable[[str], str],
        users: list[User],
    ) -> None:
        runner.fail(["update", "-y", "--noninteractive"], output="error: remote not found\n")
        driver = make_flatpak(make_init_config, runner, fake_binary("flatpak"), users)
        tracker = Incrementer(driver.steps() + 1)

        outputs = await driver.update(tracker)

        assert [output.failure for output in outputs] == [True, False, False]
        assert outputs[0].stdout == "error: remote not found\n"
        assert tracker.current_step == 3
        assert tracker.failed_increments == 1


class TestDistroboxDriver:
    """Tests for DistroboxDriver."""

    def test_descriptor(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        driver = DistroboxDriver(make_init_config(dry_run=True), runner)

        assert driver.config.title == "Distrobox"
        assert driver.config.description == "Rootful Distroboxes"
        assert driver.config.user_description == "Distroboxes for User:"
        assert driver.binary_path == "/usr/bin/distrobox"

    @pytest.mark.asyncio
    async def test_rootful_pass_runs_as_root(
        self,
        make_init_config: Callable[..., UpdaterInitConfig],
        runner: RecordingRunner,
        fake_binary: Callable[[str], str],
        users: list[User],
    ) -> None:
        binary = fake_binary("distrobox")
        config = make_init_config(environment={DISTROBOX_BINARY_ENV: binary})
        driver = DistroboxDriver(config, runner, users[:1])
        tracker = Incrementer(driver.steps() + 1)

        outputs = await driver.update(tracker)

        assert [(call.argv, call.uid) for call in runner.calls] == [
            ([binary, "upgrade", "-a"], 0),
            ([binary, "upgrade", "-a"], 1000),
        ]
        assert [output.context for output in outputs] == [
            "Rootful Distroboxes",
            "Distroboxes for User: alice",
        ]

    def test_missing_binary_disables(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        config = make_init_config(environment={DISTROBOX_BINARY_ENV: "/nonexistent/distrobox"})
        assert DistroboxDriver(config, runner).config.enabled is False
