"""Driver construction in run order."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from drivers.base import is_executable
from drivers.brew import BrewDriver
from drivers.distrobox import DistroboxDriver
from drivers.flatpak import FlatpakDriver
from drivers.rpm_ostree import RpmOstreeDriver
from drivers.system import BootcDriver, is_bootc_compatible

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.interfaces import SystemImageDriver, UpdateDriver
    from core.models import UpdaterInitConfig, User
    from core.runner import CommandRunner

logger = structlog.get_logger(__name__)


async def create_system_driver(
    init_config: UpdaterInitConfig, runner: CommandRunner
) -> SystemImageDriver:
    """Pick the system image driver for this host.

    bootc is used when it can manage the booted and staged deployments;
    otherwise rpm-ostree takes over. Dry runs assume bootc without probing.
    """
    bootc = BootcDriver(init_config, runner)
    if init_config.dry_run:
        return bootc

    if is_executable(bootc.binary_path) and await is_bootc_compatible(runner, bootc.binary_path):
        return bootc

    logger.debug("using_rpm_ostree_fallback", bootc_binary=bootc.binary_path)
    return RpmOstreeDriver(init_config, runner)


async def build_drivers(
    init_config: UpdaterInitConfig,
    runner: CommandRunner,
    users: Sequence[User] | None = None,
) -> list[UpdateDriver]:
    """Construct every driver in the fixed run order.

    Order: system image, Brew, Flatpak, Distrobox. Disabled drivers are
    included; callers filter on ``config.enabled``.

    Args:
        init_config: Settings shared by every driver.
        runner: Command runner for external invocations.
        users: Logged-in users for the per-user passes.

    Returns:
        The drivers, in run order.
    """
    system = await create_system_driver(init_config, runner)
    return [
        system,
        BrewDriver(init_config, runner),
        FlatpakDriver(init_config, runner, users),
        DistroboxDriver(init_config, runner, users),
    ]
