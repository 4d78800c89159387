"""Distrobox update driver."""

from __future__ import annotations

from typing import TYPE_CHECKING

from drivers.base import ROOT_UID, BaseDriver

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.models import CommandOutput, UpdaterInitConfig, User
    from core.progress import Incrementer
    from core.runner import CommandRunner

DISTROBOX_BINARY_ENV = "UUPD_DISTROBOX_BINARY"


class DistroboxDriver(BaseDriver):
    """Driver for Distrobox containers.

    Rootful containers are upgraded as root, then every logged-in user's
    rootless containers are upgraded inside that user's session.
    """

    TITLE = "Distrobox"
    DESCRIPTION = "Rootful Distroboxes"
    USER_DESCRIPTION = "Distroboxes for User:"
    MULTI_USER = True

    def __init__(
        self,
        init_config: UpdaterInitConfig,
        runner: CommandRunner,
        users: Sequence[User] | None = None,
    ) -> None:
        """Initialize the driver and probe the distrobox binary."""
        super().__init__(init_config, runner, users)
        settings = init_config.modules.distrobox
        self.binary_path = init_config.env_or_fallback(
            DISTROBOX_BINARY_ENV, settings.distrobox_binary
        )

        if settings.disable:
            self._disable("disabled in configuration")
        self._require_binary(self.binary_path)

    async def update(self, tracker: Incrementer) -> list[CommandOutput]:
        """Upgrade rootful containers, then each user's."""
        argv = [self.binary_path, "upgrade", "-a"]
        return await self._update_multi_user(tracker, argv, argv, system_uid=ROOT_UID)
