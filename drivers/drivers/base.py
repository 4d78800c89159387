"""Base driver implementation with common functionality."""

from __future__ import annotations

import calendar
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

import structlog

from core.interfaces import UpdateDriver
from core.models import CommandOutput, DriverConfig
from core.runner import CommandError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from core.models import UpdaterInitConfig, User
    from core.progress import Incrementer
    from core.runner import CommandRunner

logger = structlog.get_logger(__name__)

ROOT_UID = 0


class DriverError(Exception):
    """A driver could not interpret the state of its subsystem."""


def is_executable(path: str | Path) -> bool:
    """Return True if ``path`` is a regular file with an execute bit set."""
    candidate = Path(path)
    return candidate.is_file() and os.access(candidate, os.X_OK)


def one_month_before(moment: datetime) -> datetime:
    """Return the same wall-clock time one calendar month earlier.

    The day is clamped to the length of the target month (March 31st
    becomes February 28th or 29th).
    """
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def older_than_a_month(timestamp: datetime, now: datetime | None = None) -> bool:
    """Return True if ``timestamp`` lies more than one calendar month before ``now``."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    current = now or datetime.now(tz=UTC)
    return timestamp.astimezone(UTC) < one_month_before(current.astimezone(UTC))


class BaseDriver(UpdateDriver):
    """Base class for all update drivers with common functionality.

    Provides:
    - The immutable driver descriptor, downgraded only during construction
    - Step accounting for single- and multi-user drivers
    - Command invocation that turns failures into ``CommandOutput`` records
    - Structured logging bound to the driver
    """

    TITLE: ClassVar[str]
    DESCRIPTION: ClassVar[str]
    USER_DESCRIPTION: ClassVar[str | None] = None
    MULTI_USER: ClassVar[bool] = False

    def __init__(
        self,
        init_config: UpdaterInitConfig,
        runner: CommandRunner,
        users: Sequence[User] | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            init_config: Settings shared by every driver.
            runner: Command runner for external invocations.
            users: Logged-in users for the per-user passes. None means the
                driver only performs its system-wide pass.
        """
        self.init_config = init_config
        self.runner = runner
        self.users: list[User] | None = list(users) if users is not None else None
        self._config = DriverConfig(
            title=self.TITLE,
            description=self.DESCRIPTION,
            user_description=self.USER_DESCRIPTION,
            enabled=True,
            multi_user=self.MULTI_USER,
            dry_run=init_config.dry_run,
            environment=dict(init_config.environment),
        )
        self._log = logger.bind(driver=self.TITLE.lower())

    @property
    def config(self) -> DriverConfig:
        """Return the driver descriptor."""
        return self._config

    @property
    def dry_run(self) -> bool:
        """Whether mutating commands are skipped."""
        return self._config.dry_run

    def _disable(self, reason: str) -> None:
        """Downgrade ``enabled``. Only called from constructors."""
        if self._config.enabled:
            self._config = self._config.disabled()
            self._log.info("driver_self_disabled", reason=reason)

    def _require_binary(self, path: str) -> None:
        """Disable the driver unless ``path`` is executable (skipped in dry-run)."""
        if not self.dry_run and not is_executable(path):
            self._disable(f"{path} is missing or not executable")

    def steps(self) -> int:
        """Return the number of progress units this driver consumes."""
        if not self._config.enabled:
            return 0
        steps = 1
        if self.MULTI_USER and self.users is not None:
            steps += len(self.users)
        return steps

    async def check(self) -> bool:
        """Assume an update is needed; tools without a cheap probe keep this."""
        return True

    async def _invoke(
        self,
        argv: Sequence[str],
        context: str,
        *,
        uid: int | None = None,
        env: Mapping[str, str] | None = None,
        progress: tuple[str, Callable[[str], None]] | None = None,
    ) -> CommandOutput:
        """Run one command and record its result.

        Args:
            argv: Command and arguments.
            context: Label identifying the logical operation.
            uid: User to run as. None means the invoking user.
            env: Extra environment variables.
            progress: Optional ``(flag, callback)`` for commands that report
                progress on an extra descriptor.

        Returns:
            A ``CommandOutput``; failures are recorded, not raised.
        """
        cli = list(argv)
        log = self._log.bind(context=context)
        log.debug("executing_update", cli=cli, uid=uid)

        try:
            if progress is not None:
                flag, callback = progress
                stdout = await self.runner.run_with_progress(
                    cli, progress_flag=flag, on_progress=callback, env=env
                )
            else:
                stdout = await self.runner.run(cli, uid=uid, env=env)
        except CommandError as e:
            log.warning("command_failed", exit_code=e.exit_code, error=e.reason)
            return CommandOutput(
                context=context,
                cli=cli,
                stdout=e.output,
                failure=True,
                error=e.reason,
            )

        return CommandOutput(context=context, cli=cli, stdout=stdout)

    async def _update_multi_user(
        self,
        tracker: Incrementer,
        system_argv: Sequence[str],
        user_argv: Sequence[str],
        *,
        system_uid: int | None = None,
    ) -> list[CommandOutput]:
        """Run the system-wide pass followed by one pass per user.

        Each pass advances the tracker by one section.

        Args:
            tracker: Progress tracker of the run.
            system_argv: Command for the system-wide pass.
            user_argv: Command for each per-user pass.
            system_uid: User for the system-wide pass. None means the invoking user.

        Returns:
            Outputs of every pass, in order. Empty in dry-run mode.
        """
        outputs: list[CommandOutput] = []
        title = self._config.title

        tracker.report_status_change(title, self._config.description)
        if self.dry_run:
            tracker.increment_section()
        else:
            output = await self._invoke(system_argv, self._config.description, uid=system_uid)
            outputs.append(output)
            tracker.increment_section(output.error if output.failure else None)

        for user in self.users or []:
            context = self._config.user_context(user)
            tracker.report_status_change(title, context)
            if self.dry_run:
                tracker.increment_section()
                continue
            output = await self._invoke(user_argv, context, uid=user.uid)
            outputs.append(output)
            tracker.increment_section(output.error if output.failure else None)

        return outputs
