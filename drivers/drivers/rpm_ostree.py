"""rpm-ostree fallback for the system image driver.

Used on hosts where bootc cannot manage the booted deployment. The update
check compares the digest of the deployed container image with the one
currently published in the registry.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from core.interfaces import SystemImageDriver
from drivers.base import BaseDriver, DriverError, older_than_a_month
from drivers.system import SYSTEM_UPDATE_CONTEXT

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.models import CommandOutput, UpdaterInitConfig, User
    from core.progress import Incrementer
    from core.runner import CommandRunner

RPM_OSTREE_BINARY_ENV = "UUPD_RPMOSTREE_BINARY"
SKOPEO_BINARY_ENV = "UUPD_SKOPEO_BINARY"
DOCKER_TRANSPORT = "docker://"


class RpmOstreeDeployment(BaseModel):
    """One deployment from ``rpm-ostree status --json``."""

    timestamp: int = 0
    digest: str | None = Field(default=None, alias="ostree.manifest-digest")
    reference: str | None = Field(default=None, alias="container-image-reference")


class RpmOstreeStatus(BaseModel):
    """Subset of ``rpm-ostree status --json --booted`` used by uupd."""

    deployments: list[RpmOstreeDeployment] = Field(default_factory=list)


class SkopeoInspect(BaseModel):
    """Subset of ``skopeo inspect`` output."""

    digest: str | None = Field(default=None, alias="Digest")


def expand_reference(reference: str) -> str:
    """Turn an ostree container reference into a skopeo image URL.

    ``ostree-unverified-registry:ghcr.io/org/img:tag`` becomes
    ``docker://ghcr.io/org/img:tag``.

    Raises:
        DriverError: If the reference has no transport prefix.
    """
    _, sep, url = reference.partition(":")
    if not sep:
        raise DriverError(f"malformed container reference: {reference}")
    if DOCKER_TRANSPORT not in url:
        url = DOCKER_TRANSPORT + url
    return url


class RpmOstreeDriver(BaseDriver, SystemImageDriver):
    """Driver for rpm-ostree based system images.

    Executes:
    1. rpm-ostree upgrade - stage the new deployment
    """

    TITLE = "System"
    DESCRIPTION = "rpm-ostree"

    def __init__(
        self,
        init_config: UpdaterInitConfig,
        runner: CommandRunner,
        users: Sequence[User] | None = None,
    ) -> None:
        """Initialize the driver."""
        super().__init__(init_config, runner, users)
        settings = init_config.modules.system
        self.binary_path = init_config.env_or_fallback(
            RPM_OSTREE_BINARY_ENV, settings.rpm_ostree_binary
        )
        self.skopeo_path = init_config.env_or_fallback(SKOPEO_BINARY_ENV, settings.skopeo_binary)

        if init_config.ci:
            self._disable("system image updates are skipped in CI")
        if settings.disable:
            self._disable("disabled in configuration")
        self._require_binary(self.binary_path)

    async def _booted_deployment(self) -> RpmOstreeDeployment:
        output = await self.runner.run([self.binary_path, "status", "--json", "--booted"])
        try:
            status = RpmOstreeStatus.model_validate_json(output)
        except ValidationError as e:
            raise DriverError(f"unable to parse rpm-ostree status: {e}") from e
        if not status.deployments:
            raise DriverError("rpm-ostree reported no booted deployment")
        return status.deployments[0]

    async def check(self) -> bool:
        """Return True if the registry digest differs from the deployed one."""
        if self.dry_run:
            return True

        deployment = await self._booted_deployment()
        if not deployment.reference:
            raise DriverError("booted deployment is not a container image")

        image = expand_reference(deployment.reference)
        output = await self.runner.run([self.skopeo_path, "inspect", image])
        try:
            inspect = SkopeoInspect.model_validate_json(output)
        except ValidationError as e:
            raise DriverError(f"unable to parse skopeo inspect: {e}") from e

        needed = inspect.digest != deployment.digest
        self._log.debug(
            "update_check_executed",
            remote_digest=inspect.digest,
            booted_digest=deployment.digest,
            update=needed,
        )
        return needed

    async def outdated(self) -> bool:
        """Return True if the booted deployment is more than a month old."""
        if self.dry_run:
            return False

        deployment = await self._booted_deployment()
        return older_than_a_month(datetime.fromtimestamp(deployment.timestamp, tz=UTC))

    async def update(self, tracker: Incrementer) -> list[CommandOutput]:
        """Stage the new deployment."""
        tracker.report_status_change(self.config.title, self.config.description)

        if self.dry_run:
            tracker.increment_section()
            return []

        output = await self._invoke([self.binary_path, "upgrade"], SYSTEM_UPDATE_CONTEXT)
        tracker.increment_section(output.error if output.failure else None)
        return [output]
