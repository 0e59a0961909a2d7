"""
Command line interface: ``devsupervisor [host] [port] [options]``.

Validates the configuration, assembles the server environment, and hands
over to the reload loop. Configuration errors are reported before any
process is started.
"""

import argparse
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler

from .config import ConfigurationError, ServerConfig, config, find_php_binary, validate_port
from .environment import build_environment
from .logparse import LogLineClassifier
from .process import ServerProcessSupervisor
from .reloader import ReloadOrchestrator
from .workers import WorkerCountResolver

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False):
    """Log to the console and, if DEVSUPERVISOR_LOG_FILE is set, to a rotating file."""
    log_formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    handlers = [console_handler]

    if config.log_file:
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(log_formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devsupervisor",
        description="Starts the PHP built-in webserver for your application",
    )
    parser.add_argument("host", nargs="?", default=config.default_host, help="Host to bind to")
    parser.add_argument(
        "port", nargs="?", default=config.default_port, help="Port to bind to (>=1, <=65535)"
    )
    parser.add_argument("--root", default="public", help="Root directory to serve from")
    parser.add_argument(
        "--env",
        default=config.default_env,
        help='The environment to use (e.g. development, staging or production), "null" to disable',
    )
    parser.add_argument("--router", default=None, help='The router script to use, "null" for none')
    parser.add_argument(
        "--workers",
        default=config.default_workers,
        help='How many threads to use for the PHP server: a number, "auto" or "null"',
    )
    parser.add_argument("--php", default=None, help="PHP executable to run")
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Do not restart the server upon env file changes",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Print debug output")
    return parser


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    port, error = validate_port(args.port)
    if error:
        parser.error(error)

    configure_logging(args.verbose)

    try:
        server_config = ServerConfig.from_options(
            host=args.host,
            port=port,
            root=args.root,
            router=args.router,
            verbose=args.verbose,
            auto_reload=not args.no_reload,
        )
        environment = build_environment(server_config.project_root, args.env)
        WorkerCountResolver().resolve(args.workers, environment)
        php_binary = find_php_binary(args.php)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    command = server_config.command(php_binary)
    logger.info(
        f"Starting PHP built-in webserver on {server_config.url}",
        extra={"command": " ".join(command)},
    )
    if server_config.verbose:
        logger.debug(f"Command: {' '.join(command)}")

    previous_handlers = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    signal.signal(signal.SIGTERM, _raise_interrupt)

    supervisor = ServerProcessSupervisor(
        classifier=LogLineClassifier(verbose=server_config.verbose),
        verbose=server_config.verbose,
    )
    orchestrator = ReloadOrchestrator(
        supervisor,
        command,
        server_config.document_root,
        environment,
        auto_reload=server_config.auto_reload,
    )

    try:
        return orchestrator.run()
    except OSError as e:
        logger.error(f"Failed to start server: {e}")
        return 1
    except KeyboardInterrupt:
        return 0
    finally:
        # A second interrupt must not cut the cleanup short
        for sig in previous_handlers:
            signal.signal(sig, signal.SIG_IGN)
        supervisor.shutdown()
        for sig, handler in previous_handlers.items():
            if handler is not None:
                signal.signal(sig, handler)


if __name__ == "__main__":
    sys.exit(main())
