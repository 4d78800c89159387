"""Logged-in user enumeration.

Users are read once per run from systemd-logind (``loginctl list-users``)
and are not refreshed while the run is in progress.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from .models import User
from .runner import CommandError

if TYPE_CHECKING:
    from .runner import CommandRunner

logger = structlog.get_logger(__name__)

DEFAULT_LOGINCTL = "/usr/bin/loginctl"
ROOT_UID = 0


class SessionError(Exception):
    """Logged-in users could not be enumerated."""


def parse_user(entry: Any) -> User:
    """Parse one ``loginctl list-users --output=json`` entry.

    Args:
        entry: Decoded JSON object with ``uid`` and ``user`` keys.

    Returns:
        The parsed user.

    Raises:
        SessionError: If the uid is not an unsigned 32-bit integer or the
            name is not a non-empty string.
    """
    if not isinstance(entry, dict):
        raise SessionError(f"invalid user entry, expected an object: {entry!r}")

    uid = entry.get("uid")
    name = entry.get("user", entry.get("name"))

    # bool is an int subclass; reject it explicitly
    if not isinstance(uid, int) or isinstance(uid, bool):
        raise SessionError(f"invalid UID type, expected unsigned integer: {uid!r}")
    if not isinstance(name, str):
        raise SessionError(f"invalid Name type, expected string: {name!r}")

    try:
        return User(uid=uid, name=name)
    except ValidationError as e:
        raise SessionError(f"invalid user entry {entry!r}: {e}") from e


def parse_users(payload: str, *, include_root: bool = False) -> list[User]:
    """Parse the JSON output of ``loginctl list-users``.

    Args:
        payload: Raw command output.
        include_root: Keep the super-user in the result.

    Returns:
        Users in the order logind reported them.

    Raises:
        SessionError: If the payload is not a JSON list of valid users.
    """
    try:
        entries = json.loads(payload) if payload.strip() else []
    except json.JSONDecodeError as e:
        raise SessionError(f"could not decode user list: {e}") from e

    if not isinstance(entries, list):
        raise SessionError("user list must be a JSON array")

    users = [parse_user(entry) for entry in entries]
    if include_root:
        return users
    return [user for user in users if user.uid != ROOT_UID]


async def list_users(
    runner: CommandRunner,
    *,
    loginctl_path: str = DEFAULT_LOGINCTL,
    include_root: bool = False,
) -> list[User]:
    """Enumerate logged-in users.

    Args:
        runner: Command runner used to query logind.
        loginctl_path: Path of the loginctl binary.
        include_root: Keep the super-user in the result.

    Returns:
        Logged-in users, excluding root unless requested.

    Raises:
        SessionError: If logind could not be queried or answered garbage.
    """
    try:
        output = await runner.run([loginctl_path, "list-users", "--output=json", "--no-pager"])
    except CommandError as e:
        raise SessionError(f"failed to list logged-in users: {e}") from e

    users = parse_users(output, include_root=include_root)
    logger.debug("users_listed", users=[user.name for user in users])
    return users
