"""Orchestrator for a complete uupd run.

This module provides the orchestrator that takes the single-instance lock,
enumerates users, builds the drivers, runs them one after another and
aggregates their outputs into an ``UpdateSummary``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from .interfaces import SystemImageDriver
from .lock import DEFAULT_LOCKFILE, DEFAULT_MAX_TRIES, DEFAULT_RETRY_DELAY, hold_lock
from .models import CommandOutput, UpdateSummary
from .notifications import NotificationError
from .progress import Incrementer

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from pathlib import Path

    from .interfaces import UpdateDriver
    from .models import User
    from .notifications import NotificationManager
    from .progress import ProgressReporter

    UserSource = Callable[[], Awaitable[list[User]]]
    DriverFactory = Callable[[list[User]], Awaitable[list[UpdateDriver]]]

logger = structlog.get_logger(__name__)


def format_failure(output: CommandOutput) -> str:
    """Render one failed output for the final report.

    The captured command output is indented under the context label.
    """
    lines = (output.stdout.rstrip("\n") or "").split("\n")
    indented = "\n".join(f"\t |  {line}" for line in lines)
    return (
        f"---> {output.context}\n"
        f"\t | Failure error: {output.error}\n"
        f"\t | Command Output:\n"
        f"{indented}"
    )


def format_failure_report(summary: UpdateSummary) -> str:
    """Render every failure of a run, in execution order."""
    return "\n".join(format_failure(output) for output in summary.failures)


class UpdateOrchestrator:
    """Drives every enabled update driver through one update run.

    The orchestrator is responsible for:
    - Holding the single-instance lock for the whole run
    - Computing the total number of progress sections up front
    - Running drivers strictly one after another
    - Keeping one driver's failure from stopping the others
    - Reporting failures once, after the lock is released
    """

    def __init__(
        self,
        *,
        driver_factory: DriverFactory,
        user_source: UserSource,
        notifier: NotificationManager | None = None,
        reporter: ProgressReporter | None = None,
        lockfile: Path | str = DEFAULT_LOCKFILE,
        lock_tries: int = DEFAULT_MAX_TRIES,
        lock_retry_delay: float = DEFAULT_RETRY_DELAY,
        dry_run: bool = False,
        force: bool = False,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            driver_factory: Builds the drivers, in run order, for the given users.
            user_source: Enumerates logged-in users.
            notifier: Sends desktop notifications. None disables them.
            reporter: Renders progress. None keeps progress silent.
            lockfile: Path of the single-instance lock file.
            lock_tries: Lock acquisition attempts before giving up.
            lock_retry_delay: Seconds between lock acquisition attempts.
            dry_run: Whether drivers were built in dry-run mode (reporting only).
            force: Skip update checks and always update.
        """
        self.driver_factory = driver_factory
        self.user_source = user_source
        self.notifier = notifier
        self.reporter = reporter
        self.lockfile = lockfile
        self.lock_tries = lock_tries
        self.lock_retry_delay = lock_retry_delay
        self.dry_run = dry_run
        self.force = force
        self.tracker: Incrementer | None = None
        self._log = logger.bind(component="orchestrator")

    async def run(self) -> UpdateSummary:
        """Run all enabled drivers.

        Returns:
            UpdateSummary with the outputs of every invocation.

        Raises:
            AlreadyRunningError: If another instance holds the lock.
            SessionError: If users cannot be enumerated.
        """
        run_id = str(uuid.uuid4())[:8]
        start_time = datetime.now(tz=UTC)
        log = self._log.bind(run_id=run_id)

        async with hold_lock(
            self.lockfile, max_tries=self.lock_tries, retry_delay=self.lock_retry_delay
        ):
            log.debug("lock_acquired", path=str(self.lockfile))

            users = await self.user_source()
            log.debug("users_enumerated", users=[user.name for user in users])

            drivers = await self.driver_factory(users)
            enabled = [driver for driver in drivers if driver.config.enabled]
            for driver in drivers:
                if not driver.config.enabled:
                    log.info("driver_disabled", driver=driver.name)

            await self._warn_if_outdated(enabled, users)

            tracker = Incrementer(sum(driver.steps() for driver in enabled), self.reporter)
            self.tracker = tracker
            log.info(
                "run_started",
                drivers=[driver.name for driver in enabled],
                total_steps=tracker.max_increments,
                dry_run=self.dry_run,
            )

            outputs: list[CommandOutput] = []
            tracker.start()
            try:
                for driver in enabled:
                    outputs.extend(await self._run_driver(driver, tracker))
            finally:
                tracker.stop()

            summary = UpdateSummary(
                run_id=run_id,
                start_time=start_time,
                end_time=datetime.now(tz=UTC),
                dry_run=self.dry_run,
                outputs=outputs,
                total_steps=tracker.max_increments,
                completed_steps=tracker.current_step,
            )

        log.debug("lock_released", path=str(self.lockfile))
        await self._report(summary, users)
        return summary

    async def _run_driver(self, driver: UpdateDriver, tracker: Incrementer) -> list[CommandOutput]:
        """Run one driver through check and update.

        Args:
            driver: The driver to run.
            tracker: Progress tracker of the run.

        Returns:
            Outputs of the driver, or a single failed output if it raised.
        """
        log = self._log.bind(driver=driver.name)
        steps = driver.steps()
        first_step = tracker.current_step

        if self.force:
            needed = True
        else:
            try:
                needed = await driver.check()
            except Exception as e:
                # An unreadable probe must not hide a real update
                log.warning("update_check_failed", error=str(e), assumed="update needed")
                needed = True

        if not needed:
            log.info("driver_up_to_date")
            tracker.report_status_change(driver.config.title, "Up to date")
            tracker.advance_to(first_step + steps)
            return []

        log.info("driver_started", steps=steps)

        try:
            outputs = await driver.update(tracker)
        except Exception as e:
            log.exception("driver_error", error=str(e))
            tracker.advance_to(first_step + steps, error=e)
            return [
                CommandOutput(
                    context=driver.config.description,
                    failure=True,
                    error=str(e),
                )
            ]

        if tracker.current_step != first_step + steps:
            log.debug(
                "step_count_mismatch",
                declared=steps,
                performed=tracker.current_step - first_step,
            )

        log.info(
            "driver_completed",
            invocations=len(outputs),
            failures=sum(1 for output in outputs if output.failure),
        )
        return outputs

    async def _warn_if_outdated(self, drivers: Sequence[UpdateDriver], users: list[User]) -> None:
        for driver in drivers:
            if not isinstance(driver, SystemImageDriver):
                continue
            try:
                outdated = await driver.outdated()
            except Exception as e:
                self._log.warning("outdated_check_failed", driver=driver.name, error=str(e))
                continue
            if outdated:
                self._log.warning(
                    "image_outdated",
                    message=(
                        "There hasn't been an update in over a month. "
                        "Consider rebooting or running updates manually"
                    ),
                )
                if self.notifier is not None:
                    try:
                        await self.notifier.notify_outdated(users)
                    except NotificationError as e:
                        self._log.warning("notification_failed", error=str(e))

    async def _report(self, summary: UpdateSummary, users: list[User]) -> None:
        if summary.success:
            self._log.info(
                "updates_completed",
                run_id=summary.run_id,
                invocations=len(summary.outputs),
                duration_seconds=summary.duration_seconds,
            )
            return

        for output in summary.failures:
            self._log.error(
                "update_failed",
                context=output.context,
                cli=output.cli,
                error=output.error,
                output=output.stdout,
            )
        self._log.warning(
            "updates_completed_with_failures",
            run_id=summary.run_id,
            failed=[output.context for output in summary.failures],
            succeeded=len(summary.successes),
        )

        if self.notifier is not None:
            try:
                await self.notifier.notify_failures(
                    users, [output.context for output in summary.failures]
                )
            except NotificationError as e:
                self._log.warning("notification_failed", error=str(e))
