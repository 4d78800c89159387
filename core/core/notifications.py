"""Desktop notifications for uupd.

uupd normally runs as root from a systemd unit, so notifications are sent
into each logged-in user's session with notify-send through the command
runner.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from .runner import CommandError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import NotificationSettings, User
    from .runner import CommandRunner

logger = structlog.get_logger(__name__)

DEFAULT_NOTIFY_SEND = "/usr/bin/notify-send"


class NotificationUrgency(str, Enum):
    """Urgency level for notifications."""

    LOW = "low"
    NORMAL = "normal"
    CRITICAL = "critical"


class NotificationError(Exception):
    """Error sending notification."""


@dataclass
class NotificationConfig:
    """Configuration for notifications."""

    enabled: bool = True
    on_failure: bool = True
    on_outdated: bool = True
    app_name: str = "uupd"
    notify_send_path: str = DEFAULT_NOTIFY_SEND

    @classmethod
    def from_settings(cls, settings: NotificationSettings) -> NotificationConfig:
        """Build the notification config from the ``notifications`` config section."""
        return cls(
            enabled=settings.enabled,
            on_failure=settings.on_failure,
            on_outdated=settings.on_outdated,
            app_name=settings.app_name,
        )


class NotificationManager:
    """Sends desktop notifications to logged-in users."""

    def __init__(self, runner: CommandRunner, config: NotificationConfig | None = None) -> None:
        """Initialize the notification manager.

        Args:
            runner: Command runner used to reach each user's session.
            config: Notification configuration. Uses defaults if not provided.
        """
        self.runner = runner
        self.config = config or NotificationConfig()

    async def notify(
        self,
        users: Sequence[User],
        title: str,
        message: str,
        urgency: NotificationUrgency = NotificationUrgency.NORMAL,
    ) -> int:
        """Send a notification to every user.

        A failure for one user is logged and does not affect the others.

        Args:
            users: Recipients.
            title: Notification title.
            message: Notification message body.
            urgency: Urgency level.

        Returns:
            Number of users the notification was delivered to.

        Raises:
            NotificationError: If there were recipients but none received it.
        """
        if not self.config.enabled:
            logger.debug("notifications_disabled")
            return 0

        cmd = [
            self.config.notify_send_path,
            "--app-name",
            self.config.app_name,
            "--urgency",
            urgency.value,
            title,
            message,
        ]

        delivered = 0
        for user in users:
            try:
                await self.runner.run(cmd, uid=user.uid)
            except CommandError as e:
                logger.debug("notification_failed", user=user.name, error=str(e))
                continue
            delivered += 1
            logger.debug("notification_sent", user=user.name, title=title)

        if users and not delivered:
            raise NotificationError(f"notification '{title}' reached none of {len(users)} user(s)")
        return delivered

    async def notify_failures(self, users: Sequence[User], failed_contexts: Sequence[str]) -> int:
        """Tell users which updates failed.

        Args:
            users: Recipients.
            failed_contexts: Context labels of the failed invocations.

        Returns:
            Number of users notified.
        """
        if not self.config.on_failure or not failed_contexts:
            return 0

        return await self.notify(
            users,
            title="Updates failed",
            message=(
                f"uupd failed to update: {', '.join(failed_contexts)}, "
                "consider seeing logs with `journalctl -exu uupd.service`"
            ),
            urgency=NotificationUrgency.CRITICAL,
        )

    async def notify_outdated(self, users: Sequence[User]) -> int:
        """Warn users that the system image has not been updated for a month.

        Returns:
            Number of users notified.
        """
        if not self.config.on_outdated:
            return 0

        return await self.notify(
            users,
            title="System Warning",
            message=(
                "There hasn't been an update in over a month. "
                "Consider rebooting or running updates manually"
            ),
        )
