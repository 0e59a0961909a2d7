"""
Polling file watcher.

Tracks the modification time of a fixed set of files and calls back when one
changes, appears, or disappears. Polling is driven by the caller; there is no
background thread.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

# Snapshot value of a watched file that does not exist.
ABSENT = -1


@dataclass
class WatchedFile:
    path: Path
    last_known_mtime: int | None = None  # None until first snapshot
    callbacks: list[Callable[[Path], None]] = field(default_factory=list)


class FileWatcher:
    """Polls watched files for modification time changes."""

    def __init__(self):
        self._files: dict[Path, WatchedFile] = {}

    @property
    def files(self) -> list[WatchedFile]:
        return list(self._files.values())

    def register(self, paths, on_change: Callable[[Path], None]):
        """Watch ``paths`` and call ``on_change(path)`` for each changed one.

        Paths are compared by absolute resolved form, so a file registered
        twice is still checked once per poll.
        """
        for path in paths:
            resolved = Path(path).resolve()
            watched = self._files.get(resolved)
            if watched is None:
                watched = WatchedFile(path=resolved)
                self._files[resolved] = watched
            if on_change not in watched.callbacks:
                watched.callbacks.append(on_change)

    def initialize(self):
        """Record the current state of every watched file without firing callbacks."""
        for watched in self._files.values():
            try:
                watched.last_known_mtime = self._stat(watched.path)
            except OSError as e:
                logger.warning(f"Unable to read modification time of {watched.path}: {e}")

    def poll(self) -> list[Path]:
        """Check every watched file once; returns the paths that changed."""
        changed = []
        for watched in list(self._files.values()):
            try:
                current = self._stat(watched.path)
            except OSError as e:
                logger.warning(f"Unable to read modification time of {watched.path}: {e}")
                continue

            if watched.last_known_mtime is None:
                watched.last_known_mtime = current
                continue

            if current == watched.last_known_mtime:
                continue

            # Snapshot first: edits made while the callbacks run show up on the next poll
            watched.last_known_mtime = current
            changed.append(watched.path)
            logger.debug(f"Detected change of {watched.path}")

            for callback in list(watched.callbacks):
                try:
                    callback(watched.path)
                except Exception as e:
                    logger.exception(f"Error handling change of {watched.path}: {e}")

        return changed

    @staticmethod
    def _stat(path: Path) -> int:
        try:
            return os.stat(path).st_mtime_ns
        except (FileNotFoundError, NotADirectoryError):
            return ABSENT
