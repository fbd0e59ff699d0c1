"""
=============================================================================
STREAMHTTP CLI ENTRY POINT
=============================================================================

    # Plaintext only, events at /events, publish at /api/events
    python -m streamhttp

    # Serve ./public as the default route
    python -m streamhttp --static ./public

    # TLS on 8443, /admin only over TLS
    python -m streamhttp --secure-port 8443 --certfile cert.pem \\
        --keyfile key.pem --secure-path /admin

    # Publish an event to every connected browser
    curl -d 'hello' http://127.0.0.1:8080/api/events

Every option falls back to its environment variable (see
ServerConfig.from_env) and then to the built-in default.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig
from .handlers import EventStreamHandler, PublishHandler, StaticFileHandler
from .server import HTTPServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamhttp",
        description="HTTP/1.x server with Server-Sent-Events broadcast",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m streamhttp                              # Run with defaults
  python -m streamhttp --port 3000                  # Custom port
  python -m streamhttp --static ./public            # Serve static files
  python -m streamhttp --secure-port 8443 \\
      --certfile cert.pem --secure-path /admin      # TLS + redirects
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, help="Plaintext port (default: 8080)")
    parser.add_argument("--secure-port", type=int, help="TLS port (default: disabled)")
    parser.add_argument("--certfile", help="TLS certificate chain (PEM)")
    parser.add_argument("--keyfile", help="TLS private key (PEM)")
    parser.add_argument(
        "--secure-path",
        action="append",
        dest="secure_paths",
        metavar="PREFIX",
        help="Path prefix only served over TLS (repeatable, '/' for all)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # FEATURE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--static", "-s", help="Directory served for unrouted paths")

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Access log format (default: text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"streamhttp {__version__}",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then every CLI option that was given on top."""
    config = ServerConfig.from_env()
    overrides = {
        "host": args.host,
        "port": args.port,
        "secure_port": args.secure_port,
        "certfile": args.certfile,
        "keyfile": args.keyfile,
        "secure_paths": tuple(args.secure_paths) if args.secure_paths else None,
        "static_dir": args.static,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        server = HTTPServer(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    server.route("/events", EventStreamHandler(), name="events")
    server.route("/api/events", PublishHandler(server.broadcaster), name="publish")

    if config.static_dir:
        try:
            server.router.set_default(StaticFileHandler(config.static_dir, home_file=config.home_file))
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        server.broadcaster.close_all()
    return 0


if __name__ == "__main__":
    sys.exit(main())
