"""Main CLI entry point for uupd.

This module defines the Typer application and its commands. Running
``uupd`` without a command performs the update run.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from core import (
    OSTREE_SYSROOT_LOCK,
    AlreadyRunningError,
    CommandError,
    CommandRunner,
    ConfigError,
    ConfigManager,
    LockError,
    LogLevel,
    LogProgressReporter,
    NotificationConfig,
    NotificationManager,
    SessionError,
    UpdateOrchestrator,
    UpdaterInitConfig,
    format_failure_report,
    list_users,
    wait_until_unlocked,
)
from drivers import DriverError, build_drivers, create_system_driver

from . import __version__
from .log_setup import configure_logging

if TYPE_CHECKING:
    from core import (
        ModulesConfig,
        ProgressReporter,
        UpdateDriver,
        UpdateSummary,
        UupdConfig,
        User,
    )

MODULE_NAMES = ("system", "brew", "flatpak", "distrobox")

# Create the main Typer app
app = typer.Typer(
    name="uupd",
    help="Universal update orchestrator for image-based Linux hosts.",
    invoke_without_command=True,
    rich_markup_mode="rich",
)

# Create console for rich output
console = Console()
err_console = Console(stderr=True)


# Options shared by the root command and ``update``
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", "-n", help="Do a dry run without changing anything."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Verbose output; disables the progress bar."),
]
ForceOption = Annotated[
    bool,
    typer.Option("--force", "-f", help="Skip update checks and always update."),
]
CiOption = Annotated[
    bool,
    typer.Option("--ci", help="Running in CI; skips system image updates."),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Emit JSON log lines."),
]
QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only log errors."),
]
LogLevelOption = Annotated[
    LogLevel | None,
    typer.Option("--log-level", "-l", case_sensitive=False, help="Minimum log level."),
]
LogFileOption = Annotated[
    Path | None,
    typer.Option("--log-file", help="Write logs to this file instead of stderr."),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Configuration file; disables the search path."),
]
DisableModuleOption = Annotated[
    list[str] | None,
    typer.Option(
        "--disable-module",
        "-d",
        help="Disable a module (system, brew, flatpak, distrobox). Repeatable.",
    ),
]
NoProgressOption = Annotated[
    bool,
    typer.Option("--no-progress", help="Log progress lines instead of drawing bars."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]uupd[/bold blue] version {__version__}")
        raise typer.Exit()


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]{escape(message)}[/red]", highlight=False)
    return typer.Exit(1)


def _load_config(config_path: Path | None) -> UupdConfig:
    """Load the effective configuration or exit with status 1."""
    try:
        return ConfigManager(config_path=config_path).load()
    except ConfigError as e:
        raise _fail(str(e)) from None


def _setup_logging(
    settings: UupdConfig,
    *,
    log_level: LogLevel | None = None,
    verbose: bool = False,
    json_output: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    progress_bars: bool = False,
) -> None:
    """Configure logging from command line flags layered over the config file."""
    level = log_level or (LogLevel.DEBUG if verbose else settings.logging.level)
    configure_logging(
        level.value,
        json_output=json_output or settings.logging.json_output,
        quiet=quiet or settings.logging.quiet,
        log_file=log_file or settings.logging.file,
        progress_bars=progress_bars,
    )


def disable_modules(modules: ModulesConfig, names: list[str] | None) -> ModulesConfig:
    """Return ``modules`` with the named modules disabled.

    Raises:
        typer.BadParameter: If a name is not a known module.
    """
    updates = {}
    for name in names or []:
        key = name.strip().lower()
        if key not in MODULE_NAMES:
            raise typer.BadParameter(
                f"unknown module {name!r}, expected one of: {', '.join(MODULE_NAMES)}",
                param_hint="--disable-module",
            )
        updates[key] = getattr(modules, key).model_copy(update={"disable": True})
    return modules.model_copy(update=updates)


def _select_reporter(
    *, verbose: bool, json_output: bool, quiet: bool, no_progress: bool
) -> ProgressReporter:
    """Draw progress bars on a terminal, log lines everywhere else."""
    if sys.stdout.isatty() and not (verbose or json_output or quiet or no_progress):
        from ui.progress import RichProgressReporter

        return RichProgressReporter(console)
    return LogProgressReporter()


def build_orchestrator(
    settings: UupdConfig,
    init_config: UpdaterInitConfig,
    *,
    force: bool = False,
    reporter: ProgressReporter | None = None,
    runner: CommandRunner | None = None,
) -> UpdateOrchestrator:
    """Wire the orchestrator to the real runner, session and drivers."""
    runner = runner or CommandRunner()

    async def user_source() -> list[User]:
        return await list_users(runner)

    async def driver_factory(users: list[User]) -> list[UpdateDriver]:
        return await build_drivers(init_config, runner, users)

    return UpdateOrchestrator(
        driver_factory=driver_factory,
        user_source=user_source,
        notifier=NotificationManager(
            runner, NotificationConfig.from_settings(settings.notifications)
        ),
        reporter=reporter,
        lockfile=settings.lock.path,
        lock_tries=settings.lock.max_tries,
        dry_run=init_config.dry_run,
        force=force or settings.update.force,
    )


def _print_summary(summary: UpdateSummary, *, quiet: bool) -> None:
    """Print the outcome of an update run."""
    if summary.success:
        if not quiet:
            mode = " (dry run)" if summary.dry_run else ""
            console.print(
                f"[green]✓ Updates completed{mode}[/green] "
                f"[dim]{summary.completed_steps}/{summary.total_steps} steps[/dim]"
            )
        return

    err_console.print(
        f"[red]✗ {len(summary.failures)} update(s) failed[/red]: "
        + escape(", ".join(output.context for output in summary.failures)),
        highlight=False,
    )
    err_console.print(format_failure_report(summary), markup=False, highlight=False)


def _run_update(
    *,
    dry_run: bool,
    verbose: bool,
    force: bool,
    ci: bool,
    json_output: bool,
    quiet: bool,
    log_level: LogLevel | None,
    log_file: Path | None,
    config_path: Path | None,
    disable_module: list[str] | None,
    no_progress: bool,
) -> None:
    settings = _load_config(config_path)
    verbose = verbose or settings.update.verbose
    reporter = _select_reporter(
        verbose=verbose,
        json_output=json_output or settings.logging.json_output,
        quiet=quiet or settings.logging.quiet,
        no_progress=no_progress,
    )
    _setup_logging(
        settings,
        log_level=log_level,
        verbose=verbose,
        json_output=json_output,
        quiet=quiet,
        log_file=log_file,
        progress_bars=not isinstance(reporter, LogProgressReporter),
    )

    if not dry_run and os.geteuid() != 0:
        raise _fail("uupd needs to be invoked as root (or with --dry-run)")

    init_config = UpdaterInitConfig(
        dry_run=dry_run,
        ci=ci,
        environment=dict(os.environ),
        modules=disable_modules(settings.modules, disable_module),
    )
    orchestrator = build_orchestrator(settings, init_config, force=force, reporter=reporter)

    try:
        summary = asyncio.run(orchestrator.run())
    except AlreadyRunningError as e:
        raise _fail(f"{e}, is uupd already running?") from None
    except (LockError, SessionError) as e:
        raise _fail(str(e)) from None

    _print_summary(summary, quiet=quiet)
    if not summary.success:
        raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = False,
    force: ForceOption = False,
    ci: CiOption = False,
    json_output: JsonOption = False,
    quiet: QuietOption = False,
    log_level: LogLevelOption = None,
    log_file: LogFileOption = None,
    config: ConfigOption = None,
    disable_module: DisableModuleOption = None,
    no_progress: NoProgressOption = False,
) -> None:
    """uupd: update the system image, Brew, Flatpak and Distrobox in one run.

    Without a command, performs the update run.
    """
    if ctx.invoked_subcommand is not None:
        return
    _run_update(
        dry_run=dry_run,
        verbose=verbose,
        force=force,
        ci=ci,
        json_output=json_output,
        quiet=quiet,
        log_level=log_level,
        log_file=log_file,
        config_path=config,
        disable_module=disable_module,
        no_progress=no_progress,
    )


@app.command()
def update(
    dry_run: DryRunOption = False,
    verbose: VerboseOption = False,
    force: ForceOption = False,
    ci: CiOption = False,
    json_output: JsonOption = False,
    quiet: QuietOption = False,
    log_level: LogLevelOption = None,
    log_file: LogFileOption = None,
    config: ConfigOption = None,
    disable_module: DisableModuleOption = None,
    no_progress: NoProgressOption = False,
) -> None:
    """Run every enabled update driver.

    Exits with status 1 if any update failed or another instance is running.
    """
    _run_update(
        dry_run=dry_run,
        verbose=verbose,
        force=force,
        ci=ci,
        json_output=json_output,
        quiet=quiet,
        log_level=log_level,
        log_file=log_file,
        config_path=config,
        disable_module=disable_module,
        no_progress=no_progress,
    )


def _system_init_config(settings: UupdConfig) -> UpdaterInitConfig:
    return UpdaterInitConfig(environment=dict(os.environ), modules=settings.modules)


@app.command("update-check")
def update_check(
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Check whether a system image update is available."""
    settings = _load_config(config)
    _setup_logging(settings, verbose=verbose)
    init_config = _system_init_config(settings)

    async def _check() -> bool:
        driver = await create_system_driver(init_config, CommandRunner())
        return await driver.check()

    try:
        available = asyncio.run(_check())
    except (CommandError, DriverError) as e:
        raise _fail(f"Failed to check for updates: {e}") from None

    console.print(f"Update Available: {str(available).lower()}")


@app.command("is-img-outdated")
def is_img_outdated(
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Print whether the booted image is more than a month old."""
    settings = _load_config(config)
    _setup_logging(settings, verbose=verbose)
    init_config = _system_init_config(settings)

    async def _outdated() -> bool:
        driver = await create_system_driver(init_config, CommandRunner())
        return await driver.outdated()

    try:
        outdated = asyncio.run(_outdated())
    except (CommandError, DriverError) as e:
        raise _fail(f"Cannot determine if image is outdated: {e}") from None

    console.print(str(outdated).lower())


@app.command()
def wait(
    lockfile: Annotated[
        Path,
        typer.Option("--lockfile", help="Lock file to wait for."),
    ] = OSTREE_SYSROOT_LOCK,
    interval: Annotated[
        float,
        typer.Option("--interval", min=0.0, help="Seconds between checks."),
    ] = 2.0,
) -> None:
    """Wait until the ostree sysroot is unlocked."""
    configure_logging("info")
    asyncio.run(wait_until_unlocked(lockfile, poll_interval=interval))
    console.print("Done Waiting!")


@app.command("dump-config")
def dump_config(
    config: ConfigOption = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the configuration to this file."),
    ] = None,
) -> None:
    """Print the effective configuration as YAML, or write it to a file."""
    manager = ConfigManager(config_path=config)
    try:
        data = manager.dump()
    except ConfigError as e:
        raise _fail(str(e)) from None

    if output is not None:
        manager.save(output)
        console.print(f"Configuration written to {escape(str(output))}")
        return

    source = manager.loaded_from or "built-in defaults"
    console.print(f"# Loaded from {source}", markup=False, highlight=False)
    console.print(
        yaml.dump(data, default_flow_style=False, sort_keys=False).rstrip(),
        markup=False,
        highlight=False,
    )


def run() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    run()
