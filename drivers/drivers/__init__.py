"""uupd Drivers package.

This package contains one update driver per host subsystem and the
factory that assembles them in run order.
"""

from __future__ import annotations

from drivers.base import BaseDriver, DriverError, is_executable
from drivers.brew import BrewDriver
from drivers.distrobox import DistroboxDriver
from drivers.factory import build_drivers, create_system_driver
from drivers.flatpak import FlatpakDriver
from drivers.rpm_ostree import RpmOstreeDriver, expand_reference
from drivers.system import BootcDriver, is_bootc_compatible, parse_bootc_progress

__all__ = [
    "BaseDriver",
    "BootcDriver",
    "BrewDriver",
    "DistroboxDriver",
    "DriverError",
    "FlatpakDriver",
    "RpmOstreeDriver",
    "build_drivers",
    "create_system_driver",
    "expand_reference",
    "is_bootc_compatible",
    "is_executable",
    "parse_bootc_progress",
]
