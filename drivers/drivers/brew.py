"""Homebrew update driver."""

from __future__ import annotations

import os
import stat
from typing import TYPE_CHECKING

from drivers.base import BaseDriver

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.models import CommandOutput, UpdaterInitConfig, User
    from core.progress import Incrementer
    from core.runner import CommandRunner

DEFAULT_BREW_PREFIX = "/home/linuxbrew/.linuxbrew"


class BrewDriver(BaseDriver):
    """Driver for Homebrew on Linux.

    Homebrew refuses to run as root, so both commands run as the user that
    owns the Homebrew prefix.

    Executes:
    1. brew update - refresh formulae
    2. brew upgrade - upgrade installed formulae (skipped if step 1 failed)
    """

    TITLE = "Brew"
    DESCRIPTION = "CLI Apps"

    def __init__(
        self,
        init_config: UpdaterInitConfig,
        runner: CommandRunner,
        users: Sequence[User] | None = None,
    ) -> None:
        """Initialize the driver and locate the Homebrew installation."""
        super().__init__(init_config, runner, users)
        env = init_config.env_or_fallback
        self.prefix = env("HOMEBREW_PREFIX", DEFAULT_BREW_PREFIX)
        self.repository = env("HOMEBREW_REPOSITORY", f"{self.prefix}/Homebrew")
        self.cellar = env("HOMEBREW_CELLAR", f"{self.prefix}/Cellar")
        self.binary_path = env("HOMEBREW_PATH", f"{self.prefix}/bin/brew")
        self.owner_uid: int | None = None

        if init_config.modules.brew.disable:
            self._disable("disabled in configuration")
            return
        if self.dry_run:
            return

        self.owner_uid = self._prefix_owner()
        if self.owner_uid is None:
            self._disable(f"brew prefix {self.prefix} is not a directory")
            return
        self._require_binary(self.binary_path)

    def _prefix_owner(self) -> int | None:
        try:
            info = os.stat(self.prefix)
        except OSError:
            return None
        if not stat.S_ISDIR(info.st_mode):
            return None
        return info.st_uid

    @property
    def brew_environment(self) -> dict[str, str]:
        """HOMEBREW_* variables passed to every brew invocation."""
        return {
            "HOMEBREW_PREFIX": self.prefix,
            "HOMEBREW_REPOSITORY": self.repository,
            "HOMEBREW_CELLAR": self.cellar,
        }

    async def update(self, tracker: Incrementer) -> list[CommandOutput]:
        """Run brew update followed by brew upgrade."""
        outputs: list[CommandOutput] = []
        tracker.report_status_change(self.config.title, self.config.description)

        if self.dry_run:
            tracker.increment_section()
            return outputs

        refresh = await self._invoke(
            [self.binary_path, "update"],
            "Brew Update",
            uid=self.owner_uid,
            env=self.brew_environment,
        )
        outputs.append(refresh)
        if refresh.failure:
            tracker.increment_section(refresh.error)
            return outputs

        upgrade = await self._invoke(
            [self.binary_path, "upgrade"],
            "Brew Upgrade",
            uid=self.owner_uid,
            env=self.brew_environment,
        )
        outputs.append(upgrade)
        tracker.increment_section(upgrade.error if upgrade.failure else None)
        return outputs
