"""Run-wide progress accounting.

The run is a flat sequence of sections: one per driver pass and one per
per-user pass. ``Incrementer`` counts completed sections and keeps the
fractional progress of the section currently running; a
``ProgressReporter`` turns those numbers into output.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger(__name__)


class ProgressReporter(ABC):
    """Renders progress state changes.

    Reporters only read the tracker; they never change it.
    """

    def start(self, tracker: Incrementer) -> None:  # noqa: B027
        """Called once when the total number of sections is known."""

    @abstractmethod
    def status_changed(self, tracker: Incrementer) -> None:
        """Called when the title, description or section progress changes."""
        ...

    @abstractmethod
    def section_completed(self, tracker: Incrementer, *, failed: bool) -> None:
        """Called after a section has been counted as done."""
        ...

    def stop(self, tracker: Incrementer) -> None:  # noqa: B027
        """Called once when the run is over."""


class LogProgressReporter(ProgressReporter):
    """Emits one structured log line per status change."""

    def __init__(self) -> None:
        """Initialize the reporter."""
        self._log = logger.bind(component="progress")

    def status_changed(self, tracker: Incrementer) -> None:
        """Log the new status."""
        self._log.info(
            "updating",
            title=tracker.title,
            description=tracker.description,
            progress=tracker.current_step,
            total=tracker.max_increments,
            step_progress=tracker.section_progress,
            overall=tracker.overall_percent(),
        )

    def section_completed(self, tracker: Incrementer, *, failed: bool) -> None:
        """Log the completed section."""
        self._log.debug(
            "section_completed",
            title=tracker.title,
            description=tracker.description,
            progress=tracker.current_step,
            total=tracker.max_increments,
            failed=failed,
        )


class Incrementer:
    """Progress state of one update run.

    ``done_increments`` never decreases and never exceeds
    ``max_increments``; incrementing past the maximum is ignored.
    """

    def __init__(self, max_increments: int, reporter: ProgressReporter | None = None) -> None:
        """Initialize the tracker.

        Args:
            max_increments: Total sections of the run, fixed before any work starts.
            reporter: Output for state changes. None keeps the state silent.
        """
        if max_increments < 0:
            raise ValueError("max_increments must not be negative")
        self.max_increments = max_increments
        self.done_increments = 0
        self.failed_increments = 0
        self.section_progress = 0.0
        self.title = ""
        self.description = ""
        self.reporter = reporter

    @property
    def current_step(self) -> int:
        """Number of completed sections."""
        return self.done_increments

    def overall_percent(self) -> float:
        """Return overall completion in whole percent.

        Rounded half away from zero.
        """
        fraction = (self.done_increments + self.section_progress / 100.0) / (
            self.max_increments + 1
        )
        return float(math.floor(fraction * 100.0 + 0.5))

    def start(self) -> None:
        """Announce the run to the reporter."""
        if self.reporter is not None:
            self.reporter.start(self)

    def stop(self) -> None:
        """Announce the end of the run to the reporter."""
        if self.reporter is not None:
            self.reporter.stop(self)

    def report_status_change(self, title: str, description: str) -> None:
        """Change the displayed message without advancing progress."""
        self.title = title
        self.description = description
        if self.reporter is not None:
            self.reporter.status_changed(self)

    def section_percent(self, percent: float) -> None:
        """Set the fractional progress (0-100) of the running section."""
        self.section_progress = min(100.0, max(0.0, percent))

    def increment_section(self, error: BaseException | str | None = None) -> None:
        """Count the running section as done.

        ``error`` only marks the section as failed for display; it never
        stops the run.
        """
        if self.done_increments + 1 > self.max_increments:
            return

        self.done_increments += 1
        failed = error is not None
        if failed:
            self.failed_increments += 1
        self.section_progress = 0.0

        if self.reporter is not None:
            self.reporter.section_completed(self, failed=failed)

    def advance_to(self, target: int, error: BaseException | str | None = None) -> None:
        """Increment until ``target`` sections are done (or the maximum is reached)."""
        while self.done_increments < min(target, self.max_increments):
            self.increment_section(error)
