"""
RoundStats Web Server Entry Point

Provides the `roundstats-web` command to start the FastAPI server.

Usage:
    roundstats-web                    # Start on default port 8000
    roundstats-web --port 9000        # Start on custom port
    roundstats-web --host 127.0.0.1   # Bind to localhost only
    roundstats-web --reload           # Enable auto-reload for development
"""

import argparse
import logging

import uvicorn

logger = logging.getLogger(__name__)


def main() -> None:
    """Start the RoundStats web server."""
    parser = argparse.ArgumentParser(
        description="RoundStats CS2 Log Ingestion - Web Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    roundstats-web                     Start server on http://0.0.0.0:8000
    roundstats-web --port 9000         Start on port 9000
    roundstats-web --host 127.0.0.1    Bind to localhost only
    roundstats-web --reload            Enable auto-reload (development)
        """,
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (only 1 is supported)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )

    args = parser.parse_args()
    if args.workers != 1:
        # Run locks and match numbering live in the serving process
        parser.error("--workers must be 1: ingestion runs are coordinated in-process")

    logger.info("Starting RoundStats web server on http://%s:%s", args.host, args.port)
    logger.info("Press Ctrl+C to stop")

    uvicorn.run(
        "roundstats.api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
