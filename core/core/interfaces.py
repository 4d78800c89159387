"""Core interfaces for uupd.

This module defines abstract base classes for update drivers and
configuration loaders.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import CommandOutput, DriverConfig
    from .progress import Incrementer


class UpdateDriver(ABC):
    """Abstract base class for update drivers.

    One driver updates one subsystem of the host. Drivers are constructed
    fully initialized: anything that can disable a driver (configuration,
    a missing binary, CI mode) is decided in the constructor and reflected
    in ``config.enabled``.
    """

    @property
    @abstractmethod
    def config(self) -> DriverConfig:
        """Return the static descriptor of this driver."""
        ...

    @property
    def name(self) -> str:
        """Return the driver title, used as a log and report key."""
        return self.config.title

    @abstractmethod
    def steps(self) -> int:
        """Return the number of progress units ``update()`` will consume.

        Returns:
            0 when disabled, otherwise 1 plus one per user for multi-user
            drivers that were given users.
        """
        ...

    @abstractmethod
    async def check(self) -> bool:
        """Probe whether an update is available or needed.

        Must not change the system. In dry-run mode always returns True
        without running anything.

        Returns:
            True if an update should be performed.

        Raises:
            Exception: Any probe failure. Callers treat it as "update needed".
        """
        ...

    @abstractmethod
    async def update(self, tracker: Incrementer) -> list[CommandOutput]:
        """Perform the update.

        Calls ``tracker.increment_section`` exactly ``steps()`` times, in
        order. Failed invocations are reported as outputs with
        ``failure=True`` rather than raised.

        Args:
            tracker: Progress tracker of the current run.

        Returns:
            Outputs of every invocation, in execution order.
        """
        ...


class SystemImageDriver(UpdateDriver):
    """Driver for the immutable system image.

    Besides updating, it can tell whether the booted image is stale.
    """

    @abstractmethod
    async def outdated(self) -> bool:
        """Return True if the booted image is older than one month."""
        ...


class ConfigLoader(ABC):
    """Abstract base class for configuration loaders."""

    @abstractmethod
    def load(self, path: str) -> dict[str, Any]:
        """Load configuration from a file.

        Args:
            path: Path to the configuration file

        Returns:
            Configuration dictionary
        """
        ...

    @abstractmethod
    def save(self, config: dict[str, Any], path: str) -> None:
        """Save configuration to a file.

        Args:
            config: Configuration dictionary
            path: Path to save the configuration
        """
        ...
