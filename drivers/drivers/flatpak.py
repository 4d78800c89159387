"""Flatpak update driver."""

from __future__ import annotations

from typing import TYPE_CHECKING

from drivers.base import BaseDriver

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.models import CommandOutput, UpdaterInitConfig, User
    from core.progress import Incrementer
    from core.runner import CommandRunner

FLATPAK_BINARY_ENV = "UUPD_FLATPAK_BINARY"


class FlatpakDriver(BaseDriver):
    """Driver for Flatpak applications.

    Executes:
    1. flatpak update -y --noninteractive - system-wide installation
    2. flatpak update -y - once per logged-in user, inside their session
    """

    TITLE = "Flatpak"
    DESCRIPTION = "System Apps"
    USER_DESCRIPTION = "Apps for User:"
    MULTI_USER = True

    def __init__(
        self,
        init_config: UpdaterInitConfig,
        runner: CommandRunner,
        users: Sequence[User] | None = None,
    ) -> None:
        """Initialize the driver and probe the flatpak binary."""
        super().__init__(init_config, runner, users)
        settings = init_config.modules.flatpak
        self.binary_path = init_config.env_or_fallback(FLATPAK_BINARY_ENV, settings.flatpak_binary)

        if settings.disable:
            self._disable("disabled in configuration")
        self._require_binary(self.binary_path)

    async def update(self, tracker: Incrementer) -> list[CommandOutput]:
        """Update system-wide Flatpaks, then each user's."""
        return await self._update_multi_user(
            tracker,
            [self.binary_path, "update", "-y", "--noninteractive"],
            [self.binary_path, "update", "-y"],
        )
