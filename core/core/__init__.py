"""uupd Core Library.

Core library providing models, interfaces, and utilities for uupd.

This package contains the foundational components used by the other
uupd subprojects (drivers, ui, cli).

Module Overview:
    config: YAML-based configuration loading with UUPD_* environment overrides
    interfaces: Abstract base classes for update drivers and config loaders
    lock: File-backed single-instance lock
    models: Pydantic data models for configuration, drivers and results
    notifications: Desktop notifications sent into users' sessions
    orchestrator: Sequential driver execution and failure aggregation
    progress: Run-wide progress accounting and the log-line reporter
    runner: Command execution, including as another logged-in user
    session: Logged-in user enumeration via systemd-logind
"""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_package_version

from core.config import ConfigError, ConfigManager, YamlConfigLoader, get_config_search_paths
from core.interfaces import ConfigLoader, SystemImageDriver, UpdateDriver
from core.lock import (
    DEFAULT_LOCKFILE,
    OSTREE_SYSROOT_LOCK,
    AlreadyRunningError,
    LockError,
    acquire_lock,
    hold_lock,
    is_file_locked,
    open_lockfile,
    release_lock,
    wait_until_unlocked,
)
from core.models import (
    CommandOutput,
    DriverConfig,
    LogLevel,
    ModulesConfig,
    UpdaterInitConfig,
    UpdateSummary,
    UupdConfig,
    User,
)
from core.notifications import (
    NotificationConfig,
    NotificationError,
    NotificationManager,
    NotificationUrgency,
)
from core.orchestrator import UpdateOrchestrator, format_failure, format_failure_report
from core.progress import Incrementer, LogProgressReporter, ProgressReporter
from core.runner import CommandError, CommandRunner
from core.session import SessionError, list_users, parse_users

try:
    __version__ = get_package_version("uupd")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "DEFAULT_LOCKFILE",
    "OSTREE_SYSROOT_LOCK",
    "AlreadyRunningError",
    "CommandError",
    "CommandOutput",
    "CommandRunner",
    "ConfigError",
    "ConfigLoader",
    "ConfigManager",
    "DriverConfig",
    "Incrementer",
    "LockError",
    "LogLevel",
    "LogProgressReporter",
    "ModulesConfig",
    "NotificationConfig",
    "NotificationError",
    "NotificationManager",
    "NotificationUrgency",
    "ProgressReporter",
    "SessionError",
    "SystemImageDriver",
    "UpdateDriver",
    "UpdateOrchestrator",
    "UpdateSummary",
    "UpdaterInitConfig",
    "UupdConfig",
    "User",
    "YamlConfigLoader",
    "__version__",
    "acquire_lock",
    "format_failure",
    "format_failure_report",
    "get_config_search_paths",
    "hold_lock",
    "is_file_locked",
    "list_users",
    "open_lockfile",
    "parse_users",
    "release_lock",
    "wait_until_unlocked",
]
