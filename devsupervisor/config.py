"""
Configuration for the development server supervisor.

Loads tunables from environment variables with sensible defaults, and
validates the command-line settings that describe the served application.
"""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PORT_ERROR = "Port must be a number between 1 and 65535"


class ConfigurationError(Exception):
    """Raised when the server cannot be configured; nothing has been started yet."""


@dataclass
class Config:
    """Supervisor configuration."""

    # Logging
    log_file: str = os.environ.get("DEVSUPERVISOR_LOG_FILE", "")
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Argument defaults
    default_host: str = os.environ.get("SERVER_HOST", "localhost")
    default_port: str = os.environ.get("SERVER_PORT", "8000")
    default_env: str = os.environ.get("APP_ENV", "development")
    default_workers: str = os.environ.get("PHP_CLI_SERVER_WORKERS", "auto")
    php_binary: str = os.environ.get("PHP_BINARY", "")

    # Process management
    poll_interval: float = float(os.environ.get("DEVSUPERVISOR_POLL_INTERVAL", "0.5"))
    settle_delay: float = float(os.environ.get("DEVSUPERVISOR_SETTLE_DELAY", "1.0"))
    stop_timeout: float = float(os.environ.get("DEVSUPERVISOR_STOP_TIMEOUT", "10"))
    count_timeout: float = float(os.environ.get("DEVSUPERVISOR_COUNT_TIMEOUT", "10"))


config = Config()


def validate_port(token) -> tuple[int | None, str | None]:
    """Validate a port token.

    Returns ``(port, None)`` for a decimal string in [1, 65535], otherwise
    ``(None, message)``. Never raises.
    """
    if not isinstance(token, str) or not token.isascii() or not token.isdigit():
        return None, PORT_ERROR
    port = int(token)
    if port < 1 or port > 65535:
        return None, PORT_ERROR
    return port, None


def find_php_binary(explicit: str | None = None) -> str:
    """Locate the PHP executable, preferring an explicit path, then PHP_BINARY, then PATH."""
    candidate = explicit or config.php_binary
    if candidate:
        found = shutil.which(candidate)
        if found:
            return found
        raise ConfigurationError(f"PHP executable ({candidate}) not found")

    found = shutil.which("php")
    if not found:
        raise ConfigurationError("Unable to find a PHP executable on PATH")
    return found


@dataclass(frozen=True)
class ServerConfig:
    """Validated settings of the served application. Fixed for the supervisor's lifetime."""

    host: str
    port: int
    document_root: Path
    router_script: Path | None = None
    verbose: bool = False
    auto_reload: bool = True

    @property
    def project_root(self) -> Path:
        return self.document_root.parent

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_options(
        cls,
        host: str,
        port: int,
        root: str,
        router: str | None = None,
        verbose: bool = False,
        auto_reload: bool = True,
    ) -> "ServerConfig":
        """Resolve the document root and router script, raising ConfigurationError if invalid."""
        root_path = Path(root)
        if not root_path.is_dir():
            raise ConfigurationError(f"Root directory ({root}) does not exist")

        try:
            document_root = root_path.resolve(strict=True)
        except OSError as e:
            raise ConfigurationError(f"Unable to resolve document root: {e}") from e

        router_script = None
        if router is not None and router != "null":
            try:
                router_script = Path(router).resolve(strict=True)
            except OSError as e:
                raise ConfigurationError("Given router file does not exist") from e
            if not router_script.is_file():
                raise ConfigurationError("Given router file does not exist")

        return cls(
            host=host,
            port=port,
            document_root=document_root,
            router_script=router_script,
            verbose=verbose,
            auto_reload=auto_reload,
        )

    def command(self, php_binary: str) -> list[str]:
        """Build the argv of the PHP built-in web server."""
        cmd = [php_binary, "-S", f"{self.host}:{self.port}", "-t", str(self.document_root)]
        if self.router_script is not None:
            cmd.append(str(self.router_script))
        return cmd
