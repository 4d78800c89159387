"""Core data models for uupd.

This module defines Pydantic models for configuration, driver descriptors,
command results, logged-in users and the summary of a complete update run.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - needed at runtime by Pydantic
from enum import Enum
from pathlib import Path  # noqa: TC003 - needed at runtime by Pydantic

from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    """Log level for uupd output."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# Configuration models
# =============================================================================


class _Section(BaseModel):
    """Base for configuration sections.

    YAML keys are dashed (``bootc-binary``); Python attributes are not.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class LoggingConfig(_Section):
    """Logging configuration."""

    level: LogLevel = Field(default=LogLevel.INFO, description="Minimum log level")
    json_output: bool = Field(default=False, alias="json", description="Emit JSON log lines")
    quiet: bool = Field(default=False, description="Only log errors")
    file: Path | None = Field(default=None, description="Log file, None means stderr")


class SystemModuleConfig(_Section):
    """System image module configuration."""

    disable: bool = False
    bootc_binary: str = Field(default="/usr/bin/bootc", alias="bootc-binary")
    rpm_ostree_binary: str = Field(default="/usr/bin/rpm-ostree", alias="rpm-ostree-binary")
    skopeo_binary: str = Field(default="/usr/bin/skopeo", alias="skopeo-binary")


class FlatpakModuleConfig(_Section):
    """Flatpak module configuration."""

    disable: bool = False
    flatpak_binary: str = Field(default="/usr/bin/flatpak", alias="flatpak-binary")


class DistroboxModuleConfig(_Section):
    """Distrobox module configuration."""

    disable: bool = False
    distrobox_binary: str = Field(default="/usr/bin/distrobox", alias="distrobox-binary")


class BrewModuleConfig(_Section):
    """Brew module configuration."""

    disable: bool = False


class ModulesConfig(_Section):
    """Configuration of every update module."""

    system: SystemModuleConfig = Field(default_factory=SystemModuleConfig)
    flatpak: FlatpakModuleConfig = Field(default_factory=FlatpakModuleConfig)
    distrobox: DistroboxModuleConfig = Field(default_factory=DistroboxModuleConfig)
    brew: BrewModuleConfig = Field(default_factory=BrewModuleConfig)


class UpdateConfig(_Section):
    """Behaviour of the update run."""

    force: bool = Field(default=False, description="Skip update checks and always update")
    verbose: bool = Field(default=False, description="Verbose output")


class NotificationSettings(_Section):
    """Desktop notification settings."""

    enabled: bool = True
    on_failure: bool = Field(default=True, alias="on-failure")
    on_outdated: bool = Field(default=True, alias="on-outdated")
    app_name: str = Field(default="uupd", alias="app-name")


class LockConfig(_Section):
    """Single-instance lock settings."""

    path: Path = Field(default=Path("/run/uupd.lock"), description="Lock file path")
    max_tries: int = Field(default=5, ge=1, alias="max-tries", description="Acquire attempts")


class UupdConfig(_Section):
    """Complete uupd configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    modules: ModulesConfig = Field(default_factory=ModulesConfig)
    update: UpdateConfig = Field(default_factory=UpdateConfig)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    lock: LockConfig = Field(default_factory=LockConfig)


# =============================================================================
# Runtime models
# =============================================================================


class User(BaseModel):
    """A logged-in user as reported by the session manager."""

    model_config = ConfigDict(frozen=True)

    uid: int = Field(..., ge=0, lt=2**32, description="Numeric user id")
    name: str = Field(..., min_length=1, description="Login name")


class UpdaterInitConfig(BaseModel):
    """Settings shared by every driver constructor.

    Built once by the entry point and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    dry_run: bool = Field(default=False, description="Do not run mutating commands")
    ci: bool = Field(default=False, description="Running inside a CI environment")
    environment: dict[str, str] = Field(
        default_factory=dict, description="Environment overrides such as binary paths"
    )
    modules: ModulesConfig = Field(
        default_factory=ModulesConfig, description="Per-module binaries and disable flags"
    )

    def env_or_fallback(self, key: str, fallback: str) -> str:
        """Return a non-empty environment override or the fallback value."""
        value = self.environment.get(key)
        if value:
            return value
        return fallback


class DriverConfig(BaseModel):
    """Static descriptor of one update driver.

    Only ``enabled`` may change, and only from True to False while the driver
    is being constructed (see ``DriverConfig.disabled``).
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="Short driver name, e.g. 'Flatpak'")
    description: str = Field(..., description="What is being updated, e.g. 'System Apps'")
    user_description: str | None = Field(
        default=None, description="Prefix used for per-user passes, e.g. 'Apps for User:'"
    )
    enabled: bool = Field(default=True, description="Whether the driver takes part in the run")
    multi_user: bool = Field(default=False, description="Whether the driver has per-user passes")
    dry_run: bool = Field(default=False, description="Skip mutating commands")
    environment: dict[str, str] = Field(default_factory=dict, description="Environment overrides")

    def disabled(self) -> DriverConfig:
        """Return a copy of this descriptor with ``enabled`` downgraded."""
        return self.model_copy(update={"enabled": False})

    def user_context(self, user: User) -> str:
        """Return the context label for the per-user pass of ``user``."""
        prefix = self.user_description or f"{self.description} for User:"
        return f"{prefix} {user.name}"


class CommandOutput(BaseModel):
    """Result of one external invocation performed by a driver."""

    model_config = ConfigDict(frozen=True)

    context: str = Field(..., description="Logical operation, e.g. 'Apps for User: alice'")
    cli: list[str] = Field(default_factory=list, description="The argv that was run")
    stdout: str = Field(default="", description="Captured combined output")
    failure: bool = Field(default=False, description="Whether the invocation failed")
    error: str | None = Field(default=None, description="Error message if failed")


class UpdateSummary(BaseModel):
    """Summary of a complete update run."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(..., description="Unique run identifier")
    start_time: datetime = Field(..., description="Run start time")
    end_time: datetime | None = Field(default=None, description="Run end time")
    dry_run: bool = Field(default=False, description="Whether this was a dry run")
    outputs: list[CommandOutput] = Field(
        default_factory=list, description="Outputs of every invocation, in execution order"
    )
    total_steps: int = Field(default=0, description="Progress units planned for the run")
    completed_steps: int = Field(default=0, description="Progress units completed")

    @property
    def failures(self) -> list[CommandOutput]:
        """Outputs of the invocations that failed."""
        return [output for output in self.outputs if output.failure]

    @property
    def successes(self) -> list[CommandOutput]:
        """Outputs of the invocations that succeeded."""
        return [output for output in self.outputs if not output.failure]

    @property
    def success(self) -> bool:
        """True when no invocation failed."""
        return not self.failures

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration of the run."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()
