"""System image update driver backed by bootc.

bootc reports structured progress while upgrading: JSON lines written to
an extra file descriptor. Each line names a task (``pulling``,
``importing``, ``staging``) which is mapped onto a slice of the section
bar so the system update shows fine-grained progress.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, NamedTuple

from pydantic import BaseModel, Field, ValidationError

from core.interfaces import SystemImageDriver
from core.runner import CommandError
from drivers.base import BaseDriver, DriverError, older_than_a_month

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.models import CommandOutput, UpdaterInitConfig, User
    from core.progress import Incrementer
    from core.runner import CommandRunner

BOOTC_BINARY_ENV = "UUPD_BOOTC_BINARY"
NO_CHANGES_MARKER = "No changes in:"
SYSTEM_UPDATE_CONTEXT = "System Update"


class Stage(NamedTuple):
    """Slice of the section bar covered by one bootc task."""

    text: str
    start: int
    length: int


PROGRESS_STAGES: dict[str, Stage] = {
    "pulling": Stage("Downloading", 0, 80),
    "importing": Stage("Importing", 80, 10),
    "staging": Stage("Deploying", 90, 10),
}
UNKNOWN_STAGE = Stage("Loading", 100, 0)


class BootcProgress(BaseModel):
    """One progress line emitted by ``bootc upgrade --progress-fd``."""

    type: str = ""
    description: str = ""
    task: str = ""
    steps: int = 0
    steps_total: int = Field(default=0, alias="stepsTotal")
    bytes: int = 0
    bytes_total: int = Field(default=0, alias="bytesTotal")


class _Image(BaseModel):
    timestamp: str | None = None


class _Deployment(BaseModel):
    incompatible: bool = False
    image: _Image | None = None


class _HostStatus(BaseModel):
    booted: _Deployment | None = None
    staged: _Deployment | None = None


class BootcStatus(BaseModel):
    """Subset of ``bootc status --format=json`` used by uupd."""

    status: _HostStatus = Field(default_factory=_HostStatus)

    @property
    def compatible(self) -> bool:
        """False if the booted or staged deployment cannot be managed by bootc."""
        return not any(
            deployment is not None and deployment.incompatible
            for deployment in (self.status.booted, self.status.staged)
        )

    @property
    def booted_timestamp(self) -> str | None:
        """Build timestamp of the booted image, as reported."""
        booted = self.status.booted
        if booted is None or booted.image is None:
            return None
        return booted.image.timestamp


def parse_bootc_progress(line: str) -> tuple[str, float] | None:
    """Translate one bootc progress line into a label and section percent.

    Args:
        line: Raw line read from the progress descriptor.

    Returns:
        ``(label, percent)`` or None if the line carries no progress.
    """
    try:
        progress = BootcProgress.model_validate_json(line)
    except ValidationError:
        return None

    stage = PROGRESS_STAGES.get(progress.task, UNKNOWN_STAGE)
    if progress.type == "ProgressSteps":
        fraction = progress.steps / (progress.steps_total + 1)
    elif progress.type == "ProgressBytes":
        if progress.bytes_total <= 0:
            fraction = 0.0
        else:
            fraction = progress.bytes / progress.bytes_total
    else:
        return None

    return stage.text, stage.start + min(float(stage.length), fraction * stage.length)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp, None if it is missing or malformed."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


async def read_bootc_status(runner: CommandRunner, binary_path: str) -> BootcStatus:
    """Run ``bootc status`` and parse its JSON output.

    Raises:
        CommandError: If bootc failed.
        DriverError: If the output is not the expected JSON.
    """
    output = await runner.run([binary_path, "status", "--format=json"])
    try:
        return BootcStatus.model_validate_json(output)
    except ValidationError as e:
        raise DriverError(f"unable to parse bootc status: {e}") from e


async def is_bootc_compatible(runner: CommandRunner, binary_path: str) -> bool:
    """Return True if bootc can manage the booted and staged deployments."""
    try:
        status = await read_bootc_status(runner, binary_path)
    except (CommandError, DriverError):
        return False
    return status.compatible


class BootcDriver(BaseDriver, SystemImageDriver):
    """Driver for bootc-managed system images.

    Executes:
    1. bootc upgrade --quiet --progress-fd N - stage the new image
    """

    TITLE = "System"
    DESCRIPTION = "Bootc"

    def __init__(
        self,
        init_config: UpdaterInitConfig,
        runner: CommandRunner,
        users: Sequence[User] | None = None,
    ) -> None:
        """Initialize the driver."""
        super().__init__(init_config, runner, users)
        settings = init_config.modules.system
        self.binary_path = init_config.env_or_fallback(BOOTC_BINARY_ENV, settings.bootc_binary)

        if init_config.ci:
            self._disable("system image updates are skipped in CI")
        if settings.disable:
            self._disable("disabled in configuration")
        self._require_binary(self.binary_path)

    async def check(self) -> bool:
        """Return True unless bootc reports no changes."""
        if self.dry_run:
            return True

        output = await self.runner.run([self.binary_path, "upgrade", "--check"])
        needed = NO_CHANGES_MARKER not in output
        self._log.debug("update_check_executed", output=output, update=needed)
        return needed

    async def outdated(self) -> bool:
        """Return True if the booted image is more than a month old.

        A missing or unparsable timestamp counts as not outdated.
        """
        if self.dry_run:
            return False

        status = await read_bootc_status(self.runner, self.binary_path)
        timestamp = parse_timestamp(status.booted_timestamp)
        if timestamp is None:
            self._log.debug("image_timestamp_unreadable", timestamp=status.booted_timestamp)
            return False
        return older_than_a_month(timestamp)

    async def update(self, tracker: Incrementer) -> list[CommandOutput]:
        """Stage the new system image."""
        title = self.config.title
        tracker.report_status_change(title, self.config.description)

        if self.dry_run:
            tracker.increment_section()
            return []

        def on_progress(line: str) -> None:
            parsed = parse_bootc_progress(line)
            if parsed is None:
                return
            label, percent = parsed
            tracker.section_percent(percent)
            tracker.report_status_change(title, label)

        output = await self._invoke(
            [self.binary_path, "upgrade", "--quiet"],
            SYSTEM_UPDATE_CONTEXT,
            progress=("--progress-fd", on_progress),
        )
        tracker.increment_section(output.error if output.failure else None)
        return [output]
