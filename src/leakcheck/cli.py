"""
leakcheck CLI entry point.

This module provides the command-line interface for leakcheck.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from leakcheck import __version__
from leakcheck.config import ServerConfig, load_config
from leakcheck.correlation import ScanSurface, build_correlator
from leakcheck.errors import LeakcheckError
from leakcheck.observability import (
    CloudWatchMetricsBackend,
    InMemoryMetricsBackend,
    configure_logging,
    configure_metrics,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SCAN_ERROR = 1
EXIT_BAD_TOKEN = 2


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="leakcheck",
        description="leakcheck - find Secrets Manager values exposed in Lambda functions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"leakcheck {__version__}",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )

    parser.add_argument(
        "--config",
        help="Path to a JSON or YAML configuration file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument(
        "--host",
        help="Host to bind to (default: from configuration, 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (default: from configuration, 1323)",
    )

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Run a scan and print JSON")
    scan_parser.add_argument(
        "surface",
        choices=[s.value for s in ScanSurface],
        help="Surface to scan: function environments or deployed code",
    )
    scan_parser.add_argument(
        "--token",
        default="",
        help="Resumption token from a previous page",
    )
    scan_parser.add_argument(
        "--all",
        action="store_true",
        help="Follow resumption tokens until every page is scanned",
    )
    scan_parser.add_argument(
        "--max-pages",
        type=int,
        help="With --all, stop after this many pages",
    )
    scan_parser.add_argument(
        "--region",
        help="AWS region (default: from configuration, eu-north-1)",
    )

    return parser


def _setup(args: argparse.Namespace) -> ServerConfig:
    """Load configuration and configure logging and metrics from it."""
    config = load_config(args.config)

    level = config.log_level
    if args.verbose:
        level = "DEBUG" if args.verbose > 1 else "INFO"
    configure_logging(level=level, format=config.log_format)

    if config.metrics_backend == "cloudwatch":
        configure_metrics(
            CloudWatchMetricsBackend(
                namespace=config.metrics_namespace, region=config.region
            )
        )
    else:
        configure_metrics(InMemoryMetricsBackend())

    return config


def cmd_serve(args: argparse.Namespace, config: ServerConfig) -> int:
    """Run the HTTP API until interrupted."""
    from leakcheck.web import serve

    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    try:
        config.validate()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return EXIT_SCAN_ERROR

    serve(config)
    return EXIT_OK


def cmd_scan(args: argparse.Namespace, config: ServerConfig) -> int:
    """Run one page, or all pages, of a scan and print the findings."""
    if args.region:
        config.region = args.region

    correlator = build_correlator(config)
    surface = ScanSurface(args.surface)

    try:
        if args.all:
            output = _scan_all(correlator, surface, args.token, args.max_pages)
        else:
            output = correlator.scan(surface, args.token).to_dict()
    except LeakcheckError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return EXIT_BAD_TOKEN if e.client_error else EXIT_SCAN_ERROR
    finally:
        correlator.metrics.flush()

    print(json.dumps(output, indent=2))
    return EXIT_OK


def _scan_all(
    correlator: Any, surface: ScanSurface, token: str, max_pages: int | None
) -> dict[str, Any]:
    """Aggregate every page of a scan into one result."""
    found_secrets: list[dict[str, Any]] = []
    next_token = ""
    pages = 0
    for page in correlator.scan_all(surface, token, max_pages=max_pages):
        pages += 1
        found_secrets.extend(f.to_dict() for f in page.found_secrets)
        next_token = page.next_token
    return {"found_secrets": found_secrets, "next_token": next_token, "pages": pages}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    try:
        config = _setup(args)
    except (OSError, ValueError, TypeError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return EXIT_SCAN_ERROR

    command_handlers = {
        "serve": cmd_serve,
        "scan": cmd_scan,
    }
    return command_handlers[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
