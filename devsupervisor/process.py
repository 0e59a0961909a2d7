"""
Process supervisor for the development server.

Starts the server command as a child process, streams its combined
stdout/stderr into the log line classifier, and stops it again. Only the
caller decides when to restart; this module never restarts on its own.
"""

import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime

import psutil

from .config import config
from .logparse import LineSplitter, LogLineClassifier

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 8192


@dataclass(eq=False)
class ProcessHandle:
    """One running instance of the server process."""

    process: subprocess.Popen
    command: list[str]
    started_at: datetime = field(default_factory=datetime.now)
    reader: threading.Thread | None = None
    detached: bool = False
    output_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.poll() is None

    @property
    def exit_code(self) -> int | None:
        return self.process.poll()


class ServerProcessSupervisor:
    """Owns the server child process and its output stream."""

    def __init__(self, classifier: LogLineClassifier | None = None, verbose: bool = False):
        self.classifier = classifier or LogLineClassifier(verbose=verbose)
        self.verbose = verbose
        self._handles: list[ProcessHandle] = []
        self._lock = threading.Lock()

    def start(self, command, working_dir, environment) -> ProcessHandle:
        """Spawn the server and return without waiting for it to become ready.

        ``environment`` is passed as the child's complete environment. Raises
        OSError if the process cannot be created.
        """
        command = [str(part) for part in command]
        process = subprocess.Popen(
            command,
            cwd=str(working_dir),
            env=dict(environment),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=os.name != "nt",  # Own process group, so workers stop with it
        )
        handle = ProcessHandle(process=process, command=command)

        handle.reader = threading.Thread(
            target=self._capture_output,
            args=(handle,),
            name=f"server-output-{process.pid}",
            daemon=True,
        )
        handle.reader.start()

        with self._lock:
            self._handles.append(handle)

        if self.verbose:
            logger.info(f"Server process started (PID {process.pid}): {' '.join(command)}")
        else:
            logger.info(f"Server process started (PID {process.pid})")
        return handle

    def is_running(self, handle: ProcessHandle) -> bool:
        return handle.running

    def exit_code(self, handle: ProcessHandle) -> int | None:
        return handle.exit_code

    def stop(self, handle: ProcessHandle, timeout: float | None = None) -> int | None:
        """Terminate the server and wait for it to go down.

        Sends a terminate signal, force-kills after ``timeout`` seconds, then
        drains and detaches the output reader so nothing from this process is
        logged afterwards. Returns the exit code.
        """
        if timeout is None:
            timeout = config.stop_timeout
        process = handle.process

        if process.poll() is None:
            descendants = self._descendants(process.pid)
            self._signal(process, force=False)
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Server process {process.pid} did not stop gracefully, forcing kill")
                self._signal(process, force=True)
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    logger.error(f"Server process {process.pid} could not be killed")
            self._reap(descendants, timeout)

        self._detach(handle, timeout)

        with self._lock:
            if handle in self._handles:
                self._handles.remove(handle)

        exit_code = process.poll()
        uptime = (datetime.now() - handle.started_at).total_seconds()
        if self.verbose:
            logger.info(
                f"Server process stopped (PID {process.pid}, exit code {exit_code}, up {uptime:.1f}s): "
                f"{' '.join(handle.command)}"
            )
        else:
            logger.info(
                f"Server process stopped (PID {process.pid}, exit code {exit_code}, up {uptime:.1f}s)"
            )
        return exit_code

    def live_handles(self) -> list[ProcessHandle]:
        with self._lock:
            return [h for h in self._handles if h.running]

    def shutdown(self):
        """Stop every process started by this supervisor."""
        with self._lock:
            handles = list(self._handles)

        for handle in handles:
            try:
                self.stop(handle)
            except KeyboardInterrupt:
                logger.warning(f"Interrupted while stopping server process {handle.pid}, killing it")
                self._kill(handle)
            except Exception as e:
                logger.error(f"Failed to stop server process {handle.pid}: {e}")

    def _kill(self, handle: ProcessHandle):
        self._signal(handle.process, force=True)
        try:
            handle.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.error(f"Server process {handle.pid} could not be killed")
        with handle.output_lock:
            handle.detached = True
        with self._lock:
            if handle in self._handles:
                self._handles.remove(handle)

    def _signal(self, process: subprocess.Popen, force: bool):
        if os.name == "nt":
            if force:
                process.kill()
            else:
                process.terminate()
            return

        sig = signal.SIGKILL if force else signal.SIGTERM
        try:
            os.killpg(os.getpgid(process.pid), sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            # Process group already gone and the pid was reused
            process.send_signal(sig)

    def _descendants(self, pid: int) -> list[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return []

    def _reap(self, descendants: list[psutil.Process], timeout: float):
        if not descendants:
            return
        _, alive = psutil.wait_procs(descendants, timeout=min(timeout, 5))
        for proc in alive:
            logger.warning(f"Killing leftover server worker {proc.pid}")
            try:
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

    def _detach(self, handle: ProcessHandle, timeout: float):
        if handle.reader is not None and handle.reader is not threading.current_thread():
            handle.reader.join(timeout=min(timeout, 5))
            if handle.reader.is_alive():
                logger.warning(f"Output of server process {handle.pid} still open, detaching")
        with handle.output_lock:
            handle.detached = True

    def _capture_output(self, handle: ProcessHandle):
        """Read output chunks until EOF and hand complete lines to the classifier."""
        stream = handle.process.stdout
        splitter = LineSplitter()
        try:
            while True:
                chunk = stream.read1(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._publish(handle, lambda: self.classifier.handle_chunk(chunk, splitter))
            self._publish(handle, lambda: self.classifier.handle_lines(splitter.flush()))

        except Exception as e:
            logger.error(f"Error in output capture for server process {handle.pid}: {e}")
        finally:
            try:
                stream.close()
            except Exception:
                pass

    def _publish(self, handle: ProcessHandle, emit):
        with handle.output_lock:
            if handle.detached:
                return
            emit()
