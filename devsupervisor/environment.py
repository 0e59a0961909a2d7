"""
Environment passed to the server process.

The snapshot starts from the supervisor's own environment and is layered with
the project's dotenv files. It is re-read from a changed file before each
restart.
"""

import logging
import os
from collections.abc import Iterator, MutableMapping
from pathlib import Path

from dotenv import dotenv_values

from .config import ConfigurationError

logger = logging.getLogger(__name__)

APP_ENV = "APP_ENV"


def dotenv_file_name(root: Path, local: bool = False, env_name: str | None = None) -> Path:
    """Return the path of ``.env``, ``.env.local``, ``.env.<name>`` or ``.env.<name>.local``."""
    name = ".env"
    if env_name:
        name += f".{env_name}"
    if local:
        name += ".local"
    return Path(root) / name


def watched_env_files(root: Path, env_name: str | None = None) -> list[Path]:
    """The dotenv files whose changes restart the server, in load order."""
    files = [dotenv_file_name(root), dotenv_file_name(root, local=True)]
    if env_name:
        files.append(dotenv_file_name(root, env_name=env_name))
        files.append(dotenv_file_name(root, local=True, env_name=env_name))
    return files


class EnvironmentSnapshot(MutableMapping):
    """Ordered name -> value mapping handed to the child process as its full environment."""

    def __init__(self, root: Path, initial=None):
        self.root = Path(root)
        self._values: dict[str, str] = {}
        if initial:
            self.merge(initial)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __setitem__(self, key: str, value) -> None:
        self._values[str(key)] = str(value)

    def __delitem__(self, key: str) -> None:
        del self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"EnvironmentSnapshot(root={str(self.root)!r}, keys={len(self)})"

    def merge(self, values) -> None:
        """Merge key/value pairs; later keys win. Keys without a value are skipped."""
        for key, value in dict(values).items():
            if value is None:
                continue
            self[key] = value

    def load_file(self, path: Path) -> dict[str, str]:
        """Parse a dotenv file and merge it. Raises OSError if the file cannot be read."""
        with open(path, encoding="utf-8") as f:
            values = dotenv_values(stream=f, interpolate=True)
        loaded = {k: v for k, v in values.items() if v is not None}
        self.merge(loaded)
        logger.debug(f"Loaded {len(loaded)} variables from {path}")
        return loaded

    def load_if_exists(self, path: Path) -> bool:
        if not Path(path).is_file():
            return False
        self.load_file(path)
        return True

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)

    @property
    def env_name(self) -> str | None:
        return self._values.get(APP_ENV) or None

    def watched_files(self) -> list[Path]:
        return watched_env_files(self.root, self.env_name)


def build_environment(project_root: Path, env_name: str | None, base=None) -> EnvironmentSnapshot:
    """Assemble the initial environment for the server.

    Starts from ``base`` (the supervisor's own environment by default), loads
    ``.env`` and ``.env.local``, then sets APP_ENV and loads the named pair,
    unless ``env_name`` is "null".
    """
    environment = EnvironmentSnapshot(project_root, os.environ if base is None else base)

    try:
        environment.load_if_exists(dotenv_file_name(project_root))
        environment.load_if_exists(dotenv_file_name(project_root, local=True))

        if env_name and env_name != "null":
            environment[APP_ENV] = env_name
            environment.load_if_exists(dotenv_file_name(project_root, env_name=env_name))
            environment.load_if_exists(dotenv_file_name(project_root, local=True, env_name=env_name))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Unable to load environment file: {e}") from e

    return environment
