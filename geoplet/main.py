"""
Main entry point for the Geoplet API service.

Examples:
  python -m geoplet                      # Serve on 0.0.0.0:8000
  python -m geoplet --port 8080          # Different port
  python -m geoplet --log-level DEBUG    # Override LOG_LEVEL
"""

import argparse
import logging

import uvicorn

from .api_server.main import create_api_server
from .config import settings
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Geoplet API - vouchers, generation storage and outreach",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log output format (default: text)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    """Main application entry point."""
    args = parse_arguments(argv)
    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(log_level=settings.log_level, log_format=args.log_format)

    missing = settings.missing_minting_credentials()
    if missing:
        logger.warning(f"Starting without minting credentials: {', '.join(missing)}")

    app = create_api_server(settings)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())
