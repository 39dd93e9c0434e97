"""Ignore patterns for mirrored paths.

This module provides:
- IgnorePatterns: rsync --exclude style matching on relative paths
- IGNORE_FILE_NAME: Per-source ignore file loaded at startup

Ignored paths are never queued by the watch adapter, and the same patterns
are passed to rsync as --exclude so full passes skip them too. Matching
follows rsync's rules so both sides agree:
- A pattern without "/" or "**" matches any single path component
- A pattern with "/" or "**" matches a leading part of the path; a leading
  "/" anchors it at the source root, otherwise it may start at any
  directory boundary
- "*" and "?" never match "/", "**" does
- A trailing "/" restricts the pattern to directories
- A matching directory takes everything below it
"""

from __future__ import annotations

import fnmatch
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

IGNORE_FILE_NAME = ".mirrorignore"


def translate_path_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a path pattern with rsync wildcard semantics.

    Args:
        pattern: Pattern containing "/" or "**", without a trailing "/"

    Returns:
        Regex matching a whole relative path
    """
    anchored = pattern.startswith("/")
    body = pattern.lstrip("/")

    parts: list[str] = []
    i = 0
    while i < len(body):
        if body.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif body.startswith("**", i):
            parts.append(".*")
            i += 2
        elif body[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif body[i] == "?":
            parts.append("[^/]")
            i += 1
        elif body[i] == "[" and "]" in body[i + 2:]:
            end = body.index("]", i + 2)
            chars = body[i + 1:end]
            if chars.startswith("!"):
                chars = "^" + chars[1:]
            parts.append("[" + chars.replace("\\", "\\\\") + "]")
            i = end + 1
        else:
            parts.append(re.escape(body[i]))
            i += 1

    prefix = "" if anchored else "(?:.*/)?"
    return re.compile(prefix + "".join(parts) + r"\Z")


class IgnorePatterns:
    """Handles ignore pattern matching for relative paths."""

    def __init__(self, patterns: Iterable[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: rsync --exclude style patterns.
        """
        self._patterns: list[str] = []
        self._path_regexes: dict[str, re.Pattern[str]] = {}
        for pattern in patterns or ():
            self.add_pattern(pattern)

    @property
    def patterns(self) -> list[str]:
        """Get the active patterns."""
        return list(self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """Add an ignore pattern."""
        pattern = pattern.strip()
        if not pattern or pattern in self._patterns:
            return
        self._patterns.append(pattern)

        body = pattern.rstrip("/")
        if "/" in body or "**" in body:
            self._path_regexes[pattern] = translate_path_pattern(body)

    def load_from_file(self, path: Path) -> int:
        """Load patterns from an ignore file.

        Returns:
            Number of patterns read
        """
        if not path.is_file():
            return 0

        count = 0
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                # Skip comments and empty lines
                if line and not line.startswith("#"):
                    self.add_pattern(line)
                    count += 1
        return count

    def should_ignore(self, rel_path: str, is_directory: bool = False) -> bool:
        """Check if a relative path should be ignored.

        Args:
            rel_path: Path relative to the source root, forward slashes.
            is_directory: Whether the path names a directory.

        Returns:
            True if the path should be ignored.
        """
        rel_path = rel_path.strip("/")
        if not rel_path:
            return False

        parts = rel_path.split("/")

        for pattern in self._patterns:
            # Every leading part of the path is a directory except possibly
            # the path itself
            depth = len(parts)
            if pattern.endswith("/") and not is_directory:
                depth -= 1

            regex = self._path_regexes.get(pattern)
            if regex is not None:
                if any(regex.match("/".join(parts[:k])) for k in range(1, depth + 1)):
                    return True
            elif any(fnmatch.fnmatchcase(part, pattern.rstrip("/")) for part in parts[:depth]):
                return True

        return False

    def __bool__(self) -> bool:
        return bool(self._patterns)
