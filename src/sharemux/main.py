"""sharemux command line: headless shared host or local interactive run."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Optional

from . import __version__
from .config import ServerConfig, config_from_env, load_config
from .core.errors import BindError, ConfigError
from .host import SessionHost, run_interactive
from .logging_setup import setup_logging

logger = logging.getLogger("sharemux")

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_IO = 2


class _UsageError(Exception):
    pass


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise _UsageError(message)


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {raw!r}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="sharemux",
        description="Share one terminal application between several network clients.",
        add_help=False,
    )
    parser.add_argument(
        "--server",
        metavar="PIDFILE",
        help="Run headless, listen on loopback and write the port to PIDFILE.",
    )
    parser.add_argument("--width", type=_positive_int, help="Screen width in columns.")
    parser.add_argument("--height", type=_positive_int, help="Screen height in rows.")
    parser.add_argument("--config", metavar="PATH", help="YAML or JSON server configuration.")
    parser.add_argument("--log-config", metavar="PATH", help="YAML file with a 'logging' dictConfig section.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    parser.add_argument("-h", "-?", "--help", dest="help", action="store_true", help="Show this help and exit.")
    parser.add_argument("--version", action="store_true", help="Print the version and exit.")
    return parser


def _resolve_config(args: argparse.Namespace) -> ServerConfig:
    config = load_config(args.config) if args.config else ServerConfig()
    config = config_from_env(config)
    overrides = {}
    if args.width is not None:
        overrides["width"] = args.width
    if args.height is not None:
        overrides["height"] = args.height
    if overrides:
        config = ServerConfig.model_validate({**config.model_dump(), **overrides})
    return config


def _run_server(config: ServerConfig, pidfile_path: str) -> int:
    host = SessionHost(config, pidfile_path=pidfile_path)
    try:
        port = host.start()
    except (BindError, OSError) as exc:
        logger.error("Cannot start server: %s", exc)
        return EXIT_IO

    def _on_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down", signum)
        host.request_stop()

    previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}

    logger.info("sharemux %s serving on %s:%d (pidfile %s)", __version__, config.bind_host, port, pidfile_path)
    try:
        host.wait()
    finally:
        host.stop()
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    if host.fault is not None:
        logger.error("Accept loop failed: %s", host.fault)
        return EXIT_IO
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except _UsageError as exc:
        parser.print_usage(sys.stderr)
        print(f"sharemux: error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if args.help:
        parser.print_help(sys.stdout)
        return EXIT_USAGE
    if args.version:
        print(f"sharemux {__version__}")
        return EXIT_USAGE

    setup_logging(args.log_config, default_level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = _resolve_config(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_IO

    if args.server:
        return _run_server(config, args.server)
    try:
        return run_interactive(config)
    except KeyboardInterrupt:
        return EXIT_OK
    except OSError as exc:
        logger.error("Terminal I/O failed: %s", exc)
        return EXIT_IO


if __name__ == "__main__":
    sys.exit(main())
