"""
Reload loop for the development server.

Runs the server process, polls the watched dotenv files, and restarts the
server with the updated environment when one of them changes. Supervision
ends when the server process exits on its own.
"""

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Callable

from .config import config
from .environment import EnvironmentSnapshot
from .process import ProcessHandle, ServerProcessSupervisor
from .watcher import FileWatcher

logger = logging.getLogger(__name__)


class SupervisorState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class ReloadOrchestrator:
    """Drives the server through start, restart and stop.

    The current process handle lives on this object only; a restart always
    stops the old process before the new one is started.
    """

    def __init__(
        self,
        supervisor: ServerProcessSupervisor,
        command: list[str],
        working_dir,
        environment: EnvironmentSnapshot,
        watcher: FileWatcher | None = None,
        auto_reload: bool = True,
        watched_files=None,
        poll_interval: float | None = None,
        settle_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.supervisor = supervisor
        self.command = list(command)
        self.working_dir = working_dir
        self.environment = environment
        self.watcher = watcher or FileWatcher()
        self.auto_reload = auto_reload
        self.watched_files = list(watched_files) if watched_files is not None else environment.watched_files()
        self.poll_interval = config.poll_interval if poll_interval is None else poll_interval
        self.settle_delay = config.settle_delay if settle_delay is None else settle_delay
        self._sleep = sleep

        self.state = SupervisorState.STARTING
        self.handle: ProcessHandle | None = None
        self.exit_code: int | None = None
        self.restart_count = 0

    def run(self) -> int:
        """Supervise until the server exits or the operator interrupts. Returns 0."""
        self.state = SupervisorState.STARTING
        try:
            self.handle = self.supervisor.start(self.command, self.working_dir, self.environment)
        except OSError:
            self.state = SupervisorState.STOPPED
            raise
        self.state = SupervisorState.RUNNING

        self.watcher.register(self.watched_files, self._on_file_changed)
        self.watcher.initialize()
        if self.auto_reload:
            logger.debug(f"Watching {', '.join(str(p) for p in self.watched_files)}")

        try:
            while self.state is not SupervisorState.STOPPED:
                if self.handle is None or not self.supervisor.is_running(self.handle):
                    self._mark_stopped()
                    break

                if self.auto_reload:
                    self.watcher.poll()

                self._sleep(self.poll_interval)

        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down server...")

        finally:
            if self.handle is not None and self.supervisor.is_running(self.handle):
                self.supervisor.stop(self.handle)
            self.state = SupervisorState.STOPPED

        return 0

    def restart(self, changed_path: Path | None = None) -> ProcessHandle | None:
        """Stop the server, apply the changed file to the environment, and start it again."""
        self.state = SupervisorState.RESTARTING

        if changed_path is not None:
            logger.warning(f"{Path(changed_path).name} file changed. Restarting server...")
            self._reload_environment(Path(changed_path))

        if self.handle is not None:
            self.supervisor.stop(self.handle)
            self.handle = None

        self._sleep(self.settle_delay)

        try:
            self.handle = self.supervisor.start(self.command, self.working_dir, self.environment)
        except OSError as e:
            logger.error(f"Failed to restart server: {e}")
            self.state = SupervisorState.STOPPED
            return None

        self.restart_count += 1
        self.state = SupervisorState.RUNNING
        return self.handle

    def _on_file_changed(self, path: Path):
        if not self.auto_reload or self.state is not SupervisorState.RUNNING:
            return
        self.restart(path)

    def _reload_environment(self, path: Path):
        try:
            self.environment.load_file(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Unable to read {path}, keeping previous environment: {e}")

    def _mark_stopped(self):
        if self.handle is not None:
            # Drains the remaining output before the exit is reported
            self.supervisor.stop(self.handle)
            self.exit_code = self.supervisor.exit_code(self.handle)
        self.state = SupervisorState.STOPPED
        code = "<unknown>" if self.exit_code is None else self.exit_code
        logger.warning(f"Server process exited with code {code}")
