"""Command line entry point for the endpoint monitor."""

import argparse
import asyncio
import logging
import sys
from typing import Optional

import uvicorn

from .config import MonitorConfig
from .main import build_services
from .summary import check_all_summary

logger = logging.getLogger(__name__)


def start_server(host: str = "0.0.0.0", port: int = 8000, log_level: str = "info", reload: bool = False) -> None:
    """Start the endpoint monitor server.

    Args:
        host: Host to bind the server to
        port: Port to bind the server to
        log_level: Logging level (debug, info, warning, error, critical)
        reload: Enable auto-reload for development
    """
    logger.info(
        f"Starting Endpoint Monitor server - host: {host}, port: {port}, "
        f"log_level: {log_level}, reload: {reload}"
    )

    try:
        uvicorn.run(
            "endpoint_monitor.main:create_app",
            factory=True,
            host=host,
            port=port,
            log_level=log_level,
            reload=reload,
        )
    except Exception as e:
        logger.error(f"Failed to start server - error: {str(e)}", exc_info=True)
        sys.exit(1)


async def run_check(config: MonitorConfig) -> str:
    """Check every configured endpoint once and return the summary line."""
    services = build_services(config)
    try:
        await services.orchestrator.check_all(simulation=services.simulation)
        return check_all_summary(services.orchestrator.statuses())
    finally:
        await services.close()


async def run_digest(config: MonitorConfig) -> str:
    """Build the digest input from stored history."""
    services = build_services(config)
    try:
        return services.digest.builder.build_prompt(services.orchestrator.statuses())
    finally:
        await services.close()


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the endpoint monitor."""
    parser = argparse.ArgumentParser(description="Endpoint Monitor")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="info",
        help="Logging level (default: info)",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP API and background checks")
    serve.add_argument("--host", default="0.0.0.0", help="Host to bind the server to (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8000, help="Port to bind the server to (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    subparsers.add_parser("check", help="Check all endpoints once and print a summary")
    subparsers.add_parser("digest", help="Print the daily digest input built from stored history")

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
    )

    if args.command == "check":
        print(asyncio.run(run_check(MonitorConfig.from_env())))
    elif args.command == "digest":
        print(asyncio.run(run_digest(MonitorConfig.from_env())) or "No endpoints configured.")
    else:
        start_server(
            host=getattr(args, "host", "0.0.0.0"),
            port=getattr(args, "port", 8000),
            log_level=args.log_level,
            reload=getattr(args, "reload", False),
        )


if __name__ == "__main__":
    main()
