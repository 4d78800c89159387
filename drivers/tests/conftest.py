"""Test fixtures for driver tests.

Drivers only talk to the outside world through their command runner, so
the fixtures here replace it with a recorder that answers from a script.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import pytest

from core.models import ModulesConfig, UpdaterInitConfig, User
from core.runner import CommandError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from pathlib import Path


class RecordedCall(NamedTuple):
    """One command the driver asked the runner to execute."""

    argv: list[str]
    uid: int | None
    env: dict[str, str] | None
    progress_flag: str | None = None


class RecordingRunner:
    """Command runner double that records calls and replays scripted results.

    Responses are matched on an argv suffix after the binary, so a test can
    script ``("upgrade", "--check")`` without knowing where the binary lives.
    Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._responses: list[tuple[tuple[str, ...], str | CommandError]] = []
        self.progress_lines: list[str] = []

    def respond(self, args: Sequence[str], result: str | CommandError) -> None:
        """Script the output (or failure) of commands whose arguments start with ``args``."""
        self._responses.append((tuple(args), result))

    def fail(self, args: Sequence[str], output: str = "", exit_code: int = 1) -> None:
        """Script a failure with ``exit_code`` for commands matching ``args``."""
        self.respond(args, CommandError(["scripted", *args], exit_code, output))

    def _answer(self, argv: list[str]) -> str:
        arguments = tuple(argv[1:])
        for prefix, result in self._responses:
            if arguments[: len(prefix)] == prefix:
                if isinstance(result, CommandError):
                    raise CommandError(argv, result.exit_code, result.output)
                return result
        return ""

    async def run(
        self,
        argv: Sequence[str],
        *,
        uid: int | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Record the call and return the scripted output."""
        call = RecordedCall(list(argv), uid, dict(env) if env is not None else None)
        self.calls.append(call)
        return self._answer(call.argv)

    async def run_with_progress(
        self,
        argv: Sequence[str],
        *,
        progress_flag: str,
        on_progress: Callable[[str], None],
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Record the call, feed ``progress_lines`` and return the scripted output."""
        call = RecordedCall(list(argv), None, dict(env) if env is not None else None, progress_flag)
        self.calls.append(call)
        for line in self.progress_lines:
            on_progress(line)
        return self._answer(call.argv)


@pytest.fixture
def runner() -> RecordingRunner:
    """Provide a fresh recording runner."""
    return RecordingRunner()


@pytest.fixture
def make_init_config() -> Callable[..., UpdaterInitConfig]:
    """Build driver settings with optional module overrides."""

    def factory(
        *,
        dry_run: bool = False,
        ci: bool = False,
        environment: dict[str, str] | None = None,
        modules: dict[str, Any] | None = None,
    ) -> UpdaterInitConfig:
        return UpdaterInitConfig(
            dry_run=dry_run,
            ci=ci,
            environment=environment or {},
            modules=ModulesConfig.model_validate(modules or {}),
        )

    return factory


@pytest.fixture
def fake_binary(tmp_path: Path) -> Callable[[str], str]:
    """Create executable placeholder files that pass the binary probes."""

    def factory(name: str) -> str:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\nexit 0\n")
        path.chmod(0o755)
        return str(path)

    return factory


@pytest.fixture
def users() -> list[User]:
    """Two logged-in users."""
    return [User(uid=1000, name="alice"), User(uid=1001, name="bob")]
