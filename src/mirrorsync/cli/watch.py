"""Watch and check commands for the mirrorsync CLI.

Commands:
- watch: Mirror SOURCE to TARGET continuously
- check: Validate configuration and show the rsync command lines

Exit codes:
- 0: graceful shutdown (Ctrl+C or SIGTERM)
- 1: invalid source, target or configuration
- 2: the watch source failed to start or terminated
"""

from __future__ import annotations

import logging
import shlex
import signal
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from mirrorsync.cli.config import build_config
from mirrorsync.core.config import WATCHERS, MirrorConfig
from mirrorsync.sync.types import InvalidConfigurationError, WatchSourceError

EXIT_INVALID_CONFIGURATION = 1
EXIT_WATCH_SOURCE_FAILURE = 2


class ClickEchoHandler(logging.Handler):
    """Logging handler that writes through click.echo.

    Warnings and errors go to stderr, everything else to stdout.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            click.echo(msg, err=record.levelno >= logging.WARNING)
        except Exception:
            self.handleError(record)


def configure_logging(verbose: bool, quiet: bool) -> None:
    """Route the mirrorsync logger hierarchy to the terminal."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = ClickEchoHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-7s %(message)s", datefmt="%H:%M:%S")
    )

    mirrorsync_logger = logging.getLogger("mirrorsync")
    # Remove any existing handlers
    for existing in mirrorsync_logger.handlers[:]:
        mirrorsync_logger.removeHandler(existing)
    mirrorsync_logger.addHandler(handler)
    mirrorsync_logger.setLevel(level)
    # Prevent propagation to root logger
    mirrorsync_logger.propagate = False


def config_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Arguments and options shared by watch and check."""
    decorators = [
        click.argument("source", required=False),
        click.argument("target", required=False),
        click.option(
            "--retry-delay",
            type=float,
            default=None,
            help="Seconds to wait before retrying a failed transfer (default: 1).",
        ),
        click.option("--rsync-path", default=None, help="rsync executable to run."),
        click.option(
            "--rsync-option",
            "rsync_options",
            multiple=True,
            help="Extra argument passed to every rsync call (repeatable).",
        ),
        click.option(
            "--exclude",
            "excludes",
            multiple=True,
            help="Ignore pattern, rsync --exclude style (repeatable).",
        ),
        click.option(
            "--watcher",
            type=click.Choice(WATCHERS),
            default=None,
            help="Watch source (default: watchdog).",
        ),
        click.option(
            "--watch-command",
            default=None,
            help='Command printing "EVENTS PATH" lines; implies --watcher command.',
        ),
        click.option(
            "--no-reconcile",
            is_flag=True,
            help="Skip the full pass after each burst of changes.",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _load_config_or_exit(
    ctx: click.Context,
    source: str | None,
    target: str | None,
    retry_delay: float | None,
    rsync_path: str | None,
    rsync_options: tuple[str, ...],
    excludes: tuple[str, ...],
    watcher: str | None,
    watch_command: str | None,
    no_reconcile: bool,
) -> MirrorConfig:
    if not source or not target:
        click.echo(ctx.get_usage(), err=True)
        click.echo("Error: SOURCE and TARGET are required.", err=True)
        sys.exit(EXIT_INVALID_CONFIGURATION)

    try:
        return build_config(
            source=Path(source),
            target=target,
            retry_delay=retry_delay,
            rsync_path=rsync_path,
            rsync_options=rsync_options,
            ignore_patterns=excludes,
            reconcile=False if no_reconcile else None,
            watcher=watcher,
            watch_command=shlex.split(watch_command) if watch_command else (),
        )
    except InvalidConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_INVALID_CONFIGURATION)


@click.command()
@config_options
@click.option("--verbose", "-v", is_flag=True, help="Log every queued path and rsync call.")
@click.option("--quiet", "-q", is_flag=True, help="Only log warnings and errors.")
@click.pass_context
def watch(
    ctx: click.Context,
    source: str | None,
    target: str | None,
    retry_delay: float | None,
    rsync_path: str | None,
    rsync_options: tuple[str, ...],
    excludes: tuple[str, ...],
    watcher: str | None,
    watch_command: str | None,
    no_reconcile: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """Mirror SOURCE to TARGET and keep it updated.

    TARGET is a local path, [user@]host:path or an rsync:// URL.
    A full pass (never deleting on the target) runs first, then every
    change under SOURCE is pushed incrementally.
    """
    from mirrorsync.sync.service import MirrorService

    config = _load_config_or_exit(
        ctx,
        source,
        target,
        retry_delay,
        rsync_path,
        rsync_options,
        excludes,
        watcher,
        watch_command,
        no_reconcile,
    )
    configure_logging(verbose=verbose, quiet=quiet)

    service = MirrorService(config)
    previous_handler = signal.signal(
        signal.SIGTERM,
        lambda signum, frame: service.request_stop(),
    )

    exit_code = 0
    click.echo(f"Mirroring {config.source} -> {config.target.raw}")
    try:
        service.start()
        if not service.stopping:
            click.echo("Watching for changes... (Ctrl+C to stop)")
        service.run()
    except WatchSourceError as e:
        click.echo(f"Error: {e}", err=True)
        exit_code = EXIT_WATCH_SOURCE_FAILURE
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        service.stop()
        signal.signal(signal.SIGTERM, previous_handler)

    stats = service.scheduler.stats
    malformed = service.adapter.stats.malformed
    click.echo(
        f"Synced {stats.paths_synced} path(s) in {stats.passes_completed} pass(es)"
        + (f", {malformed} malformed event(s) dropped" if malformed else "")
    )

    if exit_code:
        sys.exit(exit_code)


@click.command()
@config_options
@click.pass_context
def check(
    ctx: click.Context,
    source: str | None,
    target: str | None,
    retry_delay: float | None,
    rsync_path: str | None,
    rsync_options: tuple[str, ...],
    excludes: tuple[str, ...],
    watcher: str | None,
    watch_command: str | None,
    no_reconcile: bool,
) -> None:
    """Validate SOURCE and TARGET and show what watch would run."""
    from mirrorsync.sync.ignore import IGNORE_FILE_NAME, IgnorePatterns
    from mirrorsync.sync.transfer import RsyncTransferEngine

    config = _load_config_or_exit(
        ctx,
        source,
        target,
        retry_delay,
        rsync_path,
        rsync_options,
        excludes,
        watcher,
        watch_command,
        no_reconcile,
    )

    ignore = IgnorePatterns(config.ignore_patterns)
    ignore.load_from_file(config.source / IGNORE_FILE_NAME)
    engine = RsyncTransferEngine(
        source=config.source,
        destination=config.target.rsync_destination,
        rsync_path=config.rsync_path,
        extra_options=config.rsync_options,
        exclude_patterns=ignore.patterns,
    )

    click.echo(f"Source:      {config.source}")
    kind = f"remote ({config.target.host})" if config.target.is_remote else "local"
    click.echo(f"Target:      {config.target.raw} [{kind}]")
    click.echo(f"Watcher:     {config.watcher}")
    click.echo(f"Retry delay: {config.retry_delay:.1f}s")
    click.echo(f"Reconcile:   {'yes' if config.reconcile else 'no'}")
    if ignore:
        click.echo(f"Ignoring:    {', '.join(ignore.patterns)}")
    click.echo("\nFull pass:")
    click.echo(f"  {shlex.join(engine.build_full_command(exclude_deletes=True))}")
    click.echo("Incremental pass (paths on stdin):")
    click.echo(f"  {shlex.join(engine.build_path_command())}")
