"""Watch sources and the adapter that feeds changes to the scheduler.

This module provides:
- WatchAdapter: Validates watch events, appends their paths to the
  ChangeQueue and requests a sync
- parse_watch_line / make_watch_event: Normalize raw notifications
- FileWatcher: watchdog-based watch source (default)
- WatchSource: Protocol shared by the watch sources
- CommandWatchSource: Line-based watch source reading an external command
  such as inotifywait

Every event kind is treated alike: append(path) then request_sync(). Moves
feed both the source and the destination path so the target loses the old
name and gains the new one.

Paths are handed to rsync one per line, so a path containing a line break
cannot be represented. Such events are malformed: dropped with a warning and
counted, never queued.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from mirrorsync.sync.types import (
    ChangeKind,
    MalformedWatchEventError,
    WatchEvent,
    WatchSourceError,
    WatchStats,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from watchdog.observers.api import BaseObserver

    from mirrorsync.sync.ignore import IgnorePatterns
    from mirrorsync.sync.queue import ChangeQueue
    from mirrorsync.sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

# inotify event names as printed by inotifywait's %e
INOTIFY_EVENT_KINDS: dict[str, ChangeKind] = {
    "MODIFY": ChangeKind.MODIFY,
    "CREATE": ChangeKind.CREATE,
    "DELETE": ChangeKind.DELETE,
    "DELETE_SELF": ChangeKind.DELETE,
    "MOVED_FROM": ChangeKind.MOVE,
    "MOVED_TO": ChangeKind.MOVE,
    "MOVE_SELF": ChangeKind.MOVE,
    "ATTRIB": ChangeKind.ATTRIB,
    "CLOSE_WRITE": ChangeKind.CLOSE_WRITE,
}

# Flags that qualify an event without naming one
INOTIFY_FLAGS = frozenset({"ISDIR", "CLOSE"})

# Long-form names accepted from custom watch commands
KIND_ALIASES: dict[str, ChangeKind] = {
    "attribute-change": ChangeKind.ATTRIB,
    "write-complete": ChangeKind.CLOSE_WRITE,
}

DEFAULT_INOTIFYWAIT_COMMAND = (
    "inotifywait",
    "--monitor",
    "--recursive",
    "--quiet",
    "--event",
    "modify,move,create,delete,attrib,close_write",
    "--format",
    "%e %w%f",
)


def _lookup_kind(token: str) -> ChangeKind | None:
    """Resolve an inotify name or a ChangeKind value."""
    kind = INOTIFY_EVENT_KINDS.get(token.upper()) or KIND_ALIASES.get(token.lower())
    if kind is not None:
        return kind
    try:
        return ChangeKind(token.lower().replace("-", "_"))
    except ValueError:
        return None


def normalize_path(raw_path: str, base_path: Path) -> str:
    """Convert a raw watch path to a path relative to the source root.

    Args:
        raw_path: Absolute path, or path already relative to base_path
        base_path: Source root

    Returns:
        Relative path with forward slashes, "" for the root itself

    Raises:
        MalformedWatchEventError: For empty paths, line breaks, paths
            outside the root, or parent references
    """
    if not raw_path:
        raise MalformedWatchEventError(raw_path, "empty path")
    if "\n" in raw_path or "\r" in raw_path:
        raise MalformedWatchEventError(raw_path, "line break in path")

    path = Path(raw_path)
    if path.is_absolute():
        try:
            path = path.relative_to(base_path)
        except ValueError:
            raise MalformedWatchEventError(raw_path, "outside source root") from None

    rel = PurePosixPath(path.as_posix())
    if ".." in rel.parts:
        raise MalformedWatchEventError(raw_path, "parent reference in path")

    rel_str = str(rel)
    return "" if rel_str == "." else rel_str


def make_watch_event(
    kind: ChangeKind,
    raw_path: str,
    base_path: Path,
    is_directory: bool = False,
) -> WatchEvent | None:
    """Build a WatchEvent from a kind and a raw path.

    Returns:
        The event, or None for events on the source root itself

    Raises:
        MalformedWatchEventError: If the path is unusable
    """
    rel_path = normalize_path(raw_path, base_path)
    if not rel_path:
        return None
    return WatchEvent(kind=kind, path=rel_path, is_directory=is_directory)


def parse_watch_line(line: str, base_path: Path) -> WatchEvent | None:
    """Parse one line of a line-based watch source.

    Lines look like "EVENTS PATH" where EVENTS is a comma-separated list of
    inotify names (e.g. "CREATE,ISDIR /src/dir") or ChangeKind values.

    Args:
        line: Raw line, trailing newline allowed
        base_path: Source root

    Returns:
        The event, or None for events on the source root itself

    Raises:
        MalformedWatchEventError: If the line cannot be parsed
    """
    stripped = line.rstrip("\n")
    if not stripped.strip():
        raise MalformedWatchEventError(line, "empty line")

    events, sep, raw_path = stripped.partition(" ")
    if not sep or not raw_path:
        raise MalformedWatchEventError(line, "missing path")

    tokens = [token for token in events.split(",") if token]
    kinds = [kind for kind in map(_lookup_kind, tokens) if kind is not None]
    unknown = [
        token
        for token in tokens
        if _lookup_kind(token) is None and token.upper() not in INOTIFY_FLAGS
    ]
    if not kinds or unknown:
        raise MalformedWatchEventError(line, f"unknown event kind {events!r}")

    is_directory = "ISDIR" in (token.upper() for token in tokens)
    return make_watch_event(kinds[0], raw_path, base_path, is_directory=is_directory)


class WatchAdapter:
    """Feeds normalized watch events into the change queue and scheduler.

    Safe to call from several watch source threads at once.
    """

    def __init__(
        self,
        base_path: Path,
        queue: ChangeQueue,
        scheduler: SyncScheduler,
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            base_path: Source root that watch paths are relative to.
            queue: Queue receiving accepted paths.
            scheduler: Scheduler notified after each accepted path.
            ignore_patterns: Patterns for paths never to queue.
        """
        self._base_path = Path(base_path)
        self._queue = queue
        self._scheduler = scheduler
        self._ignore = ignore_patterns
        self._lock = threading.Lock()
        self._stats = WatchStats()

    @property
    def base_path(self) -> Path:
        """Get the source root."""
        return self._base_path

    @property
    def stats(self) -> WatchStats:
        """Get watch statistics."""
        return self._stats

    def handle(
        self,
        kind: ChangeKind,
        raw_path: str,
        is_directory: bool = False,
    ) -> bool:
        """Handle one (kind, path) notification.

        Args:
            kind: Event kind (informational only)
            raw_path: Absolute path under the root, or relative path
            is_directory: Whether the path is a directory

        Returns:
            True if the path was queued
        """
        self._count("received")
        try:
            event = make_watch_event(kind, raw_path, self._base_path, is_directory)
        except MalformedWatchEventError as e:
            self._reject(e)
            return False
        return self._accept(event)

    def handle_line(self, line: str) -> bool:
        """Handle one line from a line-based watch source.

        Returns:
            True if the path was queued
        """
        self._count("received")
        try:
            event = parse_watch_line(line, self._base_path)
        except MalformedWatchEventError as e:
            self._reject(e)
            return False
        return self._accept(event)

    def _count(self, name: str) -> None:
        with self._lock:
            setattr(self._stats, name, getattr(self._stats, name) + 1)

    def _reject(self, error: MalformedWatchEventError) -> None:
        self._count("malformed")
        logger.warning("Dropping malformed watch event: %s", error)

    def _accept(self, event: WatchEvent | None) -> bool:
        if event is None:
            self._count("ignored")
            return False

        if self._ignore and self._ignore.should_ignore(event.path, event.is_directory):
            self._count("ignored")
            logger.debug("Ignoring %s", event.path)
            return False

        self._queue.append(event.path)
        self._scheduler.request_sync()
        self._count("accepted")
        logger.debug("Queued %s (%s)", event.path, event.kind.value)
        return True


class WatchSource(Protocol):
    """Protocol for watch sources supervised by MirrorService."""

    @property
    def is_alive(self) -> bool:
        """Check if the source is still delivering events."""
        ...

    def describe(self) -> str:
        """Describe the watch source for log messages."""
        ...

    def start(self) -> None:
        """Start delivering events; raise WatchSourceError on failure."""
        ...

    def stop(self) -> None:
        """Stop delivering events."""
        ...


class ChangeEventHandler(FileSystemEventHandler):
    """watchdog handler forwarding every change to a WatchAdapter."""

    def __init__(self, adapter: WatchAdapter) -> None:
        super().__init__()
        self._adapter = adapter

    @staticmethod
    def _decode(path: str | bytes) -> str:
        if isinstance(path, bytes):
            return path.decode("utf-8", errors="surrogateescape")
        return path

    def _forward(self, kind: ChangeKind, event: FileSystemEvent) -> None:
        self._adapter.handle(kind, self._decode(event.src_path), event.is_directory)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._forward(ChangeKind.CREATE, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        self._forward(ChangeKind.MODIFY, event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        self._forward(ChangeKind.DELETE, event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event: both ends of the move need syncing."""
        self._forward(ChangeKind.MOVE, event)
        if event.dest_path:
            self._adapter.handle(
                ChangeKind.MOVE,
                self._decode(event.dest_path),
                event.is_directory,
            )

    def on_closed(self, event: FileSystemEvent) -> None:
        """Handle closed-after-write event."""
        self._forward(ChangeKind.CLOSE_WRITE, event)


class FileWatcher:
    """Watches the source tree with a watchdog observer."""

    def __init__(self, adapter: WatchAdapter) -> None:
        """Initialize the file watcher.

        Args:
            adapter: Adapter receiving the events; its base_path is watched.
        """
        self._adapter = adapter
        self._watch_path = adapter.base_path
        self._handler = ChangeEventHandler(adapter)
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_alive(self) -> bool:
        """Check if the observer thread is still delivering events."""
        return self._running and self._observer.is_alive()

    def describe(self) -> str:
        """Describe the watch source for log messages."""
        return f"watchdog ({type(self._observer).__name__})"

    def start(self) -> None:
        """Start watching for changes.

        Raises:
            WatchSourceError: If the observer cannot be started
        """
        if self._running:
            return

        try:
            self._observer.schedule(self._handler, str(self._watch_path), recursive=True)
            self._observer.start()
        except OSError as e:
            raise WatchSourceError(f"Cannot watch {self._watch_path}: {e}") from e
        self._running = True
        logger.debug("Watching %s with %s", self._watch_path, self.describe())

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return

        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> FileWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()


class CommandWatchSource:
    """Reads "EVENTS PATH" lines from an external watch command.

    Usage:
        source = CommandWatchSource.inotifywait(adapter)
        source.start()
    """

    def __init__(self, adapter: WatchAdapter, command: Sequence[str]) -> None:
        """Initialize the command source.

        Args:
            adapter: Adapter receiving each line.
            command: Command line; must print one event per line on stdout.
        """
        if not command:
            raise ValueError("Watch command must not be empty")
        self._adapter = adapter
        self._command = list(command)
        self._proc: subprocess.Popen[str] | None = None
        self._thread: threading.Thread | None = None
        self._stopping = False

    @classmethod
    def inotifywait(
        cls,
        adapter: WatchAdapter,
        executable: str = "inotifywait",
    ) -> CommandWatchSource:
        """Build a source running inotifywait over the adapter's root."""
        command = [executable, *DEFAULT_INOTIFYWAIT_COMMAND[1:], str(adapter.base_path)]
        return cls(adapter, command)

    @property
    def command(self) -> list[str]:
        """Get the command line."""
        return list(self._command)

    @property
    def returncode(self) -> int | None:
        """Get the command's exit status once it has exited."""
        return self._proc.poll() if self._proc else None

    @property
    def is_alive(self) -> bool:
        """Check if the command is still producing events."""
        return self._thread is not None and self._thread.is_alive()

    def describe(self) -> str:
        """Describe the watch source for log messages."""
        return " ".join(self._command)

    def start(self) -> None:
        """Launch the command and start reading its output.

        Raises:
            WatchSourceError: If the command cannot be launched
        """
        if self._proc is not None:
            return

        try:
            proc = subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                text=True,
                errors="surrogateescape",
            )
        except OSError as e:
            raise WatchSourceError(f"Cannot start {self._command[0]}: {e}") from e

        self._proc = proc
        self._thread = threading.Thread(
            target=self._read_lines,
            args=(proc,),
            name="CommandWatchSource",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Watch command started (pid %d): %s", proc.pid, self.describe())

    def _read_lines(self, proc: subprocess.Popen[str]) -> None:
        """Forward every output line to the adapter until EOF."""
        if proc.stdout is not None:
            for line in proc.stdout:
                self._adapter.handle_line(line)

        exit_code = proc.wait()
        if not self._stopping:
            logger.error("Watch command exited with code %d", exit_code)

    def stop(self, timeout: float = 5.0) -> None:
        """Terminate the command and wait for the reader thread."""
        if self._proc is None:
            return

        self._stopping = True
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
