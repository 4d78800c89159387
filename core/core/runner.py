"""Command execution for uupd drivers.

This module runs external commands either directly or as another logged-in
user. Crossing to another user goes through ``machinectl shell``, which
reports its own exit status rather than the wrapped command's. The child
therefore writes its exit status to a sentinel file, and that file is the
only thing trusted to decide success.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = structlog.get_logger(__name__)

DEFAULT_MACHINECTL = "/usr/bin/machinectl"
DEFAULT_SHELL = "/bin/bash"
DEFAULT_SENTINEL_DIR = Path("/tmp")

# Lines of progress-style output can be long; asyncio's default limit is 64 KiB
STREAM_LIMIT = 1024 * 1024


class CommandError(Exception):
    """External command failed or could not be started."""

    def __init__(
        self,
        argv: Sequence[str],
        exit_code: int | None,
        output: str,
        message: str | None = None,
    ) -> None:
        """Initialize the command error.

        Args:
            argv: The command that failed.
            exit_code: Exit status of the command, None if it is unknown.
            output: Captured combined stdout and stderr.
            message: Optional headline replacing the default one.
        """
        self.argv = list(argv)
        self.exit_code = exit_code
        self.output = output
        self.reason = message or f"command failed with exit code {exit_code}: {shlex.join(self.argv)}"
        headline = self.reason
        if output:
            headline = f"{headline}\n{output.rstrip()}"
        super().__init__(headline)


def read_exit_code(sentinel: Path) -> int | None:
    """Read the exit status a wrapped command wrote to its sentinel file.

    Returns:
        The exit status, or None if the file is missing, empty or garbled.
    """
    try:
        content = sentinel.read_text().strip()
    except OSError:
        return None
    try:
        return int(content)
    except ValueError:
        return None


class CommandRunner:
    """Runs commands and captures their combined output.

    Commands targeting the effective user of this process run directly.
    Commands targeting another uid run inside that user's session through
    ``machinectl shell`` so user-scoped tools see the right keyring,
    environment and container namespace.
    """

    def __init__(
        self,
        *,
        machinectl_path: str = DEFAULT_MACHINECTL,
        shell_path: str = DEFAULT_SHELL,
        sentinel_dir: Path = DEFAULT_SENTINEL_DIR,
        current_uid: int | None = None,
    ) -> None:
        """Initialize the command runner.

        Args:
            machinectl_path: Binary used to enter another user's session.
            shell_path: Shell used to run the wrapped command.
            sentinel_dir: Directory for exit status sentinel files.
            current_uid: Identity of this process. Defaults to the effective uid.
        """
        self.machinectl_path = machinectl_path
        self.shell_path = shell_path
        self.sentinel_dir = sentinel_dir
        self.current_uid = os.geteuid() if current_uid is None else current_uid
        self._log = logger.bind(component="runner")

    def crosses_privilege(self, uid: int | None) -> bool:
        """Return True if running as ``uid`` requires entering another session."""
        return uid is not None and uid != self.current_uid

    async def run(
        self,
        argv: Sequence[str],
        *,
        uid: int | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Run a command and return its combined output.

        Args:
            argv: Command and arguments.
            uid: User to run as. None means the current user.
            env: Extra environment variables for the command.

        Returns:
            Combined stdout and stderr.

        Raises:
            CommandError: If the command (not the session wrapper) failed.
        """
        if not argv:
            raise ValueError("argv must be a non-empty sequence")

        if self.crosses_privilege(uid):
            assert uid is not None
            return await self._run_as_user(uid, argv, env)

        child_env = {**os.environ, **env} if env else None
        process = await self._spawn(argv, child_env)
        output = await self._collect(process)
        if process.returncode != 0:
            raise CommandError(argv, process.returncode, output)
        return output

    async def run_with_progress(
        self,
        argv: Sequence[str],
        *,
        progress_flag: str,
        on_progress: Callable[[str], None],
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Run a command that reports structured progress on an extra descriptor.

        A pipe is created and its write end handed to the child as
        ``<progress_flag> <fd>``. Every line read from the pipe is passed to
        ``on_progress`` while the command runs.

        Args:
            argv: Command and arguments, without the progress flag.
            progress_flag: Option naming the progress descriptor, e.g. ``--progress-fd``.
            on_progress: Called with each progress line.
            env: Extra environment variables for the command.

        Returns:
            Combined stdout and stderr.

        Raises:
            CommandError: If the command failed.
        """
        read_fd, write_fd = os.pipe()
        full_argv = [*argv, progress_flag, str(write_fd)]
        child_env = {**os.environ, **env} if env else None

        try:
            process = await self._spawn(full_argv, child_env, pass_fds=(write_fd,))
        except CommandError:
            os.close(read_fd)
            raise
        finally:
            os.close(write_fd)

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=STREAM_LIMIT)
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader),
            os.fdopen(read_fd, "rb", 0),
        )

        async def pump() -> None:
            async for raw in reader:
                line = raw.decode(errors="replace").strip()
                if line:
                    on_progress(line)

        try:
            output, _ = await asyncio.gather(self._collect(process), pump())
        finally:
            transport.close()

        if process.returncode != 0:
            raise CommandError(full_argv, process.returncode, output)
        return output

    def build_user_command(
        self,
        uid: int,
        argv: Sequence[str],
        sentinel: Path,
        env: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Build the ``machinectl shell`` invocation running ``argv`` as ``uid``.

        The wrapped shell writes the command's exit status to ``sentinel``.
        """
        wrapper = [self.machinectl_path, "shell", "--quiet"]
        for key, value in (env or {}).items():
            wrapper.append(f"--setenv={key}={value}")

        script = f"{shlex.join(argv)}; echo $? > {shlex.quote(str(sentinel))}"
        wrapper.extend([f"{uid}@", self.shell_path, "-c", script])
        return wrapper

    async def _run_as_user(
        self,
        uid: int,
        argv: Sequence[str],
        env: Mapping[str, str] | None,
    ) -> str:
        fd, name = tempfile.mkstemp(prefix="exitcode_", dir=self.sentinel_dir)
        os.close(fd)
        sentinel = Path(name)
        log = self._log.bind(uid=uid, command=shlex.join(argv))

        try:
            # mkstemp creates the file 0600; only the target user may write it
            if os.geteuid() == 0:
                os.chown(sentinel, uid, -1)
            wrapper = self.build_user_command(uid, argv, sentinel, env)

            process = await self._spawn(wrapper, None)
            output = await self._collect(process)
            exit_code = read_exit_code(sentinel)
        finally:
            sentinel.unlink(missing_ok=True)

        if exit_code is None:
            log.warning("child_exit_code_missing", wrapper_exit_code=process.returncode)
            raise CommandError(
                argv,
                None,
                output,
                message=(
                    f"command as uid {uid} did not report an exit status "
                    f"(session wrapper exited {process.returncode}): {shlex.join(argv)}"
                ),
            )

        if exit_code != 0:
            raise CommandError(
                argv,
                exit_code,
                output,
                message=f"command as uid {uid} failed with exit code {exit_code}: {shlex.join(argv)}",
            )

        if process.returncode != 0:
            log.warning("session_wrapper_failed", wrapper_exit_code=process.returncode)

        return output

    async def _spawn(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None,
        pass_fds: tuple[int, ...] = (),
    ) -> asyncio.subprocess.Process:
        self._log.debug("running_command", command=shlex.join(argv))
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
                pass_fds=pass_fds,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise CommandError(argv, None, "", message=f"failed to start {argv[0]}: {e}") from e

    async def _collect(self, process: asyncio.subprocess.Process) -> str:
        lines: list[str] = []
        assert process.stdout is not None
        async for raw in process.stdout:
            line = raw.decode(errors="replace")
            lines.append(line)
            self._log.debug("command_output", line=line.rstrip("\n"))
        await process.wait()
        return "".join(lines)
