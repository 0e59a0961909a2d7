"""
Worker count resolution for the PHP built-in web server.

PHP reads PHP_CLI_SERVER_WORKERS to decide how many requests it may serve in
parallel. The value is either given literally, detected from the host's
processor count, or left unset.
"""

import logging
import os
import subprocess
from typing import Protocol

from .config import ConfigurationError, config

logger = logging.getLogger(__name__)

WORKERS_VARIABLE = "PHP_CLI_SERVER_WORKERS"


class ProcessorCountQuery(Protocol):
    """Capability that reports the number of processors available."""

    description: str

    def query(self) -> int:
        """Return the processor count, raising ConfigurationError if it cannot be determined."""
        ...


class CommandProcessorCount:
    """Asks an OS command for the processor count and parses the first line of its output."""

    def __init__(self, command, shell: bool = False, timeout: float | None = None):
        self.command = command
        self.shell = shell
        self.timeout = timeout if timeout is not None else config.count_timeout
        self.description = command if isinstance(command, str) else " ".join(command)

    def query(self) -> int:
        try:
            result = subprocess.run(
                self.command,
                shell=self.shell,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Processor count command '{self.description}' failed: {e}")
            raise self._error() from e

        lines = result.stdout.strip().splitlines()
        first = lines[0].strip() if lines else ""
        if result.returncode != 0 or not first.isdigit():
            logger.debug(
                f"Processor count command '{self.description}' returned {result.returncode}: {first!r}"
            )
            raise self._error()
        return int(first)

    def _error(self) -> ConfigurationError:
        return ConfigurationError(
            f"Unable to determine number of cores available (used: {self.description})"
        )


def is_windows() -> bool:
    return os.name == "nt"


def default_processor_count() -> ProcessorCountQuery:
    """Pick the processor count query for the current platform."""
    if is_windows():
        return CommandProcessorCount("echo %NUMBER_OF_PROCESSORS%", shell=True)
    return CommandProcessorCount(["nproc"])


class WorkerCountResolver:
    """Turns a --workers token into the worker count environment variable."""

    def __init__(self, counter: ProcessorCountQuery | None = None, windows: bool | None = None):
        self._counter = counter
        self._windows = is_windows() if windows is None else windows

    @property
    def counter(self) -> ProcessorCountQuery:
        if self._counter is None:
            self._counter = default_processor_count()
        return self._counter

    def resolve(self, token, environment) -> int | None:
        """Apply ``token`` to ``environment``.

        Returns the worker count that was set, or None when the variable is
        left alone. Raises ConfigurationError for invalid tokens or a failed
        processor count query.
        """
        if token is None or token == "null":
            return None

        if not isinstance(token, str):
            raise ConfigurationError('Workers must be a number, "auto" or "null"')

        if token.isascii() and token.isdigit():
            workers = int(token)
        elif token == "auto":
            if self._windows:
                logger.warning(
                    f"{WORKERS_VARIABLE} is not supported by PHP on Windows but will be set anyway."
                )
            workers = self.counter.query()
            logger.debug(f"Detected {workers} processors using '{self.counter.description}'")
        else:
            raise ConfigurationError('Workers must be a number, "auto" or "null"')

        environment[WORKERS_VARIABLE] = str(workers)
        return workers
