"""Progress display component using Rich."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

from rich.console import Console
from rich.live import Live
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)

from core.progress import ProgressReporter

if TYPE_CHECKING:
    from core.progress import Incrementer

# Redraw every 200 ms
REFRESH_PER_SECOND = 5

OSC_PROGRESS = "\033]9;4;1;{percent}\a"
OSC_RESET = "\033]9;4;0\a"


def osc_progress(percent: float) -> str:
    """Return the terminal progress hint for ``percent`` (clamped to 0-100)."""
    return OSC_PROGRESS.format(percent=int(min(100.0, max(0.0, percent))))


def format_status(tracker: Incrementer) -> str:
    """Return the message shown next to the section bar."""
    return (
        f"Updating {tracker.title} ({tracker.description}) "
        f"Step: [{tracker.current_step + 1}/{tracker.max_increments + 1}]"
    )


class RichProgressReporter(ProgressReporter):
    """Interactive progress display for an update run.

    Shows an overall bar plus one bar per section. Completed sections stay
    on screen, drawn green or red. Rich's Live display redraws on its own
    thread; this reporter only pushes state into it.
    """

    def __init__(
        self,
        console: Console | None = None,
        stream: TextIO | None = None,
        *,
        osc: bool = True,
    ) -> None:
        """Initialize the progress display.

        Args:
            console: Optional Rich console to use. Creates one if not provided.
            stream: Where terminal progress hints are written. Defaults to stdout.
            osc: Whether to emit terminal progress hints at all.
        """
        self.console = console or Console()
        self.stream = stream if stream is not None else sys.stdout
        self.osc = osc
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>5.1f}%"),
            TextColumn("{task.fields[status]}"),
            console=self.console,
        )
        self._live: Live | None = None
        self._overall: TaskID | None = None
        self._section: TaskID | None = None

    def start(self, tracker: Incrementer) -> None:
        """Start the live display."""
        self._overall = self._progress.add_task("[bold]Overall", total=100, status="")
        self._new_section(tracker)
        self._live = Live(
            self._progress,
            console=self.console,
            refresh_per_second=REFRESH_PER_SECOND,
        )
        self._live.start()

    def status_changed(self, tracker: Incrementer) -> None:
        """Show the new title and section progress."""
        if self._section is None:
            self._new_section(tracker)
        assert self._section is not None
        self._progress.update(
            self._section,
            description=f"[bold blue]{tracker.title}",
            completed=tracker.section_progress,
            status=format_status(tracker),
        )
        self._update_overall(tracker)

    def section_completed(self, tracker: Incrementer, *, failed: bool) -> None:
        """Freeze the finished section bar and open the next one."""
        if self._section is not None:
            status = "[red]✗ Failed[/red]" if failed else "[green]✓ Done[/green]"
            self._progress.update(self._section, completed=100, status=status)
            self._progress.stop_task(self._section)
            self._section = None
        if tracker.current_step < tracker.max_increments:
            self._new_section(tracker)
        self._update_overall(tracker)

    def stop(self, tracker: Incrementer) -> None:
        """Stop the live display and clear the terminal progress hint."""
        if self._live is not None:
            self._live.stop()
            self._live = None
        self._write_osc(OSC_RESET)

    def _new_section(self, tracker: Incrementer) -> None:
        self._section = self._progress.add_task(
            f"[bold blue]{tracker.title or 'Updating'}",
            total=100,
            status="[dim]Pending...[/dim]",
        )

    def _update_overall(self, tracker: Incrementer) -> None:
        percent = tracker.overall_percent()
        if self._overall is not None:
            self._progress.update(self._overall, completed=percent)
        self._write_osc(osc_progress(percent))

    def _write_osc(self, sequence: str) -> None:
        if not self.osc:
            return
        self.stream.write(sequence)
        self.stream.flush()
