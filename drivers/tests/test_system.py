"""Tests for the bootc system image driver."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from core.progress import Incrementer, ProgressReporter
from core.runner import CommandError
from drivers.base import DriverError
from drivers.system import (
    BOOTC_BINARY_ENV,
    BootcDriver,
    BootcStatus,
    is_bootc_compatible,
    parse_bootc_progress,
    parse_timestamp,
    read_bootc_status,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import RecordingRunner
    from core.models import UpdaterInitConfig


def status_json(
    timestamp: str | None = "2024-05-01T10:00:00Z",
    *,
    booted_incompatible: bool = False,
    staged_incompatible: bool | None = None,
) -> str:
    status: dict = {
        "booted": {"incompatible": booted_incompatible, "image": {"timestamp": timestamp}},
        "staged": None,
    }
    if staged_incompatible is not None:
        status["staged"] = {"incompatible": staged_incompatible, "image": None}
    return json.dumps({"apiVersion": "org.containers.bootc/v1", "status": status})


class LabelRecorder(ProgressReporter):
    """Reporter that remembers every label and section percent shown."""

    def __init__(self) -> None:
        self.seen: list[tuple[str, float]] = []

    def status_changed(self, tracker: Incrementer) -> None:
        self.seen.append((tracker.description, tracker.section_progress))

    def section_completed(self, tracker: Incrementer, *, failed: bool) -> None:
        pass


@pytest.fixture
def bootc_driver(
    make_init_config: Callable[..., UpdaterInitConfig],
    runner: RecordingRunner,
    fake_binary: Callable[[str], str],
) -> BootcDriver:
    config = make_init_config(environment={BOOTC_BINARY_ENV: fake_binary("bootc")})
    return BootcDriver(config, runner)


class TestParseBootcProgress:
    """Tests for mapping progress lines onto the section bar."""

    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            (
                '{"type": "ProgressBytes", "task": "pulling", "bytes": 50, "bytesTotal": 100}',
                ("Downloading", 40.0),
            ),
            (
                '{"type": "ProgressBytes", "task": "pulling", "bytes": 100, "bytesTotal": 100}',
                ("Downloading", 80.0),
            ),
            (
                '{"type": "ProgressSteps", "task": "importing", "steps": 1, "stepsTotal": 1}',
                ("Importing", 85.0),
            ),
            (
                '{"type": "ProgressSteps", "task": "staging", "steps": 3, "stepsTotal": 3}',
                ("Deploying", 97.5),
            ),
            (
                '{"type": "ProgressSteps", "task": "mystery", "steps": 1, "stepsTotal": 4}',
                ("Loading", 100.0),
            ),
        ],
    )
    def test_stages(self, line: str, expected: tuple[str, float]) -> None:
        assert parse_bootc_progress(line) == expected

    def test_zero_byte_total(self) -> None:
        line = '{"type": "ProgressBytes", "task": "pulling", "bytes": 10, "bytesTotal": 0}'
        assert parse_bootc_progress(line) == ("Downloading", 0.0)

    def test_overshoot_is_clamped_to_stage(self) -> None:
        line = '{"type": "ProgressBytes", "task": "importing", "bytes": 300, "bytesTotal": 100}'
        assert parse_bootc_progress(line) == ("Importing", 90.0)

    def test_extra_fields_are_ignored(self) -> None:
        line = json.dumps(
            {
                "type": "ProgressSteps",
                "task": "staging",
                "description": "Deploying",
                "id": "staging",
                "steps": 0,
                "stepsTotal": 1,
                "subtasks": [],
            }
        )
        assert parse_bootc_progress(line) == ("Deploying", 90.0)

    @pytest.mark.parametrize(
        "line",
        ["not json", "[1, 2]", '{"type": "Start", "task": "pulling"}', '{"task": "pulling"}'],
    )
    def test_lines_without_progress(self, line: str) -> None:
        assert parse_bootc_progress(line) is None


class TestBootcStatus:
    """Tests for status parsing helpers."""

    def test_timestamp(self) -> None:
        status = BootcStatus.model_validate_json(status_json("2024-05-01T10:00:00Z"))
        assert status.booted_timestamp == "2024-05-01T10:00:00Z"
        assert status.compatible is True

    def test_incompatible_booted(self) -> None:
        status = BootcStatus.model_validate_json(status_json(booted_incompatible=True))
        assert status.compatible is False

    def test_incompatible_staged(self) -> None:
        status = BootcStatus.model_validate_json(status_json(staged_incompatible=True))
        assert status.compatible is False

    def test_missing_booted(self) -> None:
        status = BootcStatus.model_validate_json('{"status": {"booted": null}}')
        assert status.booted_timestamp is None
        assert status.compatible is True

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_unparsable_timestamp(self, value: str | None) -> None:
        assert parse_timestamp(value) is None

    def test_parse_timestamp(self) -> None:
        assert parse_timestamp("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_read_status(self, runner: RecordingRunner) -> None:
        runner.respond(["status", "--format=json"], status_json())

        status = await read_bootc_status(runner, "/usr/bin/bootc")

        assert runner.calls[0].argv == ["/usr/bin/bootc", "status", "--format=json"]
        assert status.compatible is True

    @pytest.mark.asyncio
    async def test_read_status_garbage(self, runner: RecordingRunner) -> None:
        runner.respond(["status"], "error: not booted via bootc")

        with pytest.raises(DriverError):
            await read_bootc_status(runner, "/usr/bin/bootc")

    @pytest.mark.asyncio
    async def test_compatibility_probe(self, runner: RecordingRunner) -> None:
        runner.respond(["status"], status_json(staged_incompatible=True))
        assert await is_bootc_compatible(runner, "/usr/bin/bootc") is False

    @pytest.mark.asyncio
    async def test_compatibility_probe_failure(self, runner: RecordingRunner) -> None:
        runner.fail(["status"])
        assert await is_bootc_compatible(runner, "/usr/bin/bootc") is False


class TestBootcDriver:
    """Tests for BootcDriver."""

    def test_descriptor(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        driver = BootcDriver(make_init_config(dry_run=True), runner)

        assert driver.config.title == "System"
        assert driver.config.description == "Bootc"
        assert driver.binary_path == "/usr/bin/bootc"
        assert driver.steps() == 1

    def test_disabled_in_ci(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        driver = BootcDriver(make_init_config(dry_run=True, ci=True), runner)
        assert driver.steps() == 0

    def test_disabled_in_configuration(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        config = make_init_config(dry_run=True, modules={"system": {"disable": True}})
        assert BootcDriver(config, runner).config.enabled is False

    def test_missing_binary_disables(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        config = make_init_config(environment={BOOTC_BINARY_ENV: "/nonexistent/bootc"})
        assert BootcDriver(config, runner).config.enabled is False

    @pytest.mark.asyncio
    async def test_check_no_changes(
        self, bootc_driver: BootcDriver, runner: RecordingRunner
    ) -> None:
        runner.respond(["upgrade", "--check"], "No changes in: ostree-image-signed:docker://x\n")

        assert await bootc_driver.check() is False
        assert runner.calls[0].argv[1:] == ["upgrade", "--check"]

    @pytest.mark.asyncio
    async def test_check_update_available(
        self, bootc_driver: BootcDriver, runner: RecordingRunner
    ) -> None:
        runner.respond(["upgrade", "--check"], "Update available for: docker://x\n")
        assert await bootc_driver.check() is True

    @pytest.mark.asyncio
    async def test_check_failure_propagates(
        self, bootc_driver: BootcDriver, runner: RecordingRunner
    ) -> None:
        runner.fail(["upgrade", "--check"])
        with pytest.raises(CommandError):
            await bootc_driver.check()

    @pytest.mark.asyncio
    async def test_outdated(self, bootc_driver: BootcDriver, runner: RecordingRunner) -> None:
        runner.respond(["status"], status_json("2001-01-01T00:00:00Z"))
        assert await bootc_driver.outdated() is True

    @pytest.mark.asyncio
    async def test_recent_image_is_not_outdated(
        self, bootc_driver: BootcDriver, runner: RecordingRunner
    ) -> None:
        recent = (datetime.now(tz=UTC) - timedelta(days=3)).isoformat()
        runner.respond(["status"], status_json(recent))
        assert await bootc_driver.outdated() is False

    @pytest.mark.asyncio
    async def test_unreadable_timestamp_is_not_outdated(
        self, bootc_driver: BootcDriver, runner: RecordingRunner
    ) -> None:
        runner.respond(["status"], status_json(None))
        assert await bootc_driver.outdated() is False

    @pytest.mark.asyncio
    async def test_update_reports_progress(
        self, bootc_driver: BootcDriver, runner: RecordingRunner
    ) -> None:
        runner.progress_lines = [
            '{"type": "ProgressBytes", "task": "pulling", "bytes": 25, "bytesTotal": 100}',
            "garbage",
            '{"type": "ProgressSteps", "task": "staging", "steps": 1, "stepsTotal": 1}',
        ]
        reporter = LabelRecorder()
        tracker = Incrementer(bootc_driver.steps(), reporter)

        outputs = await bootc_driver.update(tracker)

        call = runner.calls[0]
        assert call.argv == [bootc_driver.binary_path, "upgrade", "--quiet"]
        assert call.progress_flag == "--progress-fd"
        assert reporter.seen == [("Bootc", 0.0), ("Downloading", 20.0), ("Deploying", 95.0)]
        assert [output.context for output in outputs] == ["System Update"]
        assert tracker.current_step == 1

    @pytest.mark.asyncio
    async def test_update_failure_is_recorded(
        self, bootc_driver: BootcDriver, runner: RecordingRunner
    ) -> None:
        runner.fail(["upgrade", "--quiet"], output="error: pulling image\n")
        tracker = Incrementer(bootc_driver.steps() + 1)

        outputs = await bootc_driver.update(tracker)

        assert outputs[0].failure is True
        assert outputs[0].stdout == "error: pulling image\n"
        assert tracker.failed_increments == 1

    @pytest.mark.asyncio
    async def test_dry_run(
        self, make_init_config: Callable[..., UpdaterInitConfig], runner: RecordingRunner
    ) -> None:
        driver = BootcDriver(make_init_config(dry_run=True), runner)
        tracker = Incrementer(driver.steps() + 1)

        assert await driver.check() is True
        assert await driver.outdated() is False
        assert await driver.update(tracker) == []
        assert runner.calls == []
        assert tracker.current_step == 1
