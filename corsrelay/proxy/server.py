"""
Relay Server Entry Point

Standalone server for running corsrelay behind uvicorn.
"""

import argparse
import os
import sys
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI

from corsrelay import __version__
from corsrelay.config.log_setup import configure_logging
from corsrelay.config.settings import Settings, get_settings
from corsrelay.proxy.gateway import create_relay_app

logger = structlog.get_logger(__name__)


def run_relay_server(
    settings: Optional[Settings] = None,
    reload: bool = False,
) -> None:
    """
    Run the relay server.

    Args:
        settings: Relay settings (or load from environment)
        reload: Enable auto-reload for development
    """
    if settings is None:
        settings = get_settings()

    errors = settings.validate_runtime()
    if errors:
        logger.error("configuration_invalid", errors=errors)
        print(f"Configuration errors: {errors}")
        sys.exit(1)

    print_banner(settings)

    log_level = settings.server.log_level.lower()
    if reload:
        # The reloading worker is a fresh interpreter that rebuilds settings from
        # the environment, so command-line overrides are exported first
        os.environ.update(
            {
                "HOST": settings.server.host,
                "PORT": str(settings.server.port),
                "LOG_LEVEL": settings.server.log_level,
            }
        )
        uvicorn.run(
            "corsrelay.proxy.server:create_reload_app",
            factory=True,
            host=settings.server.host,
            port=settings.server.port,
            reload=True,
            log_level=log_level,
        )
        return

    app = create_relay_app(settings=settings)
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=log_level,
        access_log=True,
    )


def create_reload_app() -> FastAPI:
    """App factory run inside the reloading worker."""
    settings = get_settings()
    configure_logging(settings.server.log_level)
    return create_relay_app(settings=settings)


def print_banner(settings: Settings) -> None:
    """Print startup banner."""
    relay = settings.relay
    rate_limit = settings.rate_limit
    allow_list = ", ".join(relay.allowed_domains) if relay.allowed_domains else "disabled"
    limiter = (
        f"{rate_limit.max_requests} req/{rate_limit.window_seconds}s ({rate_limit.backend})"
        if rate_limit.enabled
        else "disabled"
    )

    print(f"""
┌─────────────────────────────────────────────────────────────────────────────┐
│  corsrelay {__version__:<65}│
├─────────────────────────────────────────────────────────────────────────────┤
│  Listen Address:    {settings.server.host + ':' + str(settings.server.port):<56}│
│  Upstream Timeout:  {str(relay.timeout) + 's':<56}│
│  Forward Headers:   {', '.join(relay.forward_headers) or 'none':<56}│
│  Allow-list:        {allow_list[:56]:<56}│
│  Rate Limit:        {limiter:<56}│
│  Compression:       {'Enabled' if settings.http.compression_enabled else 'Disabled':<56}│
└─────────────────────────────────────────────────────────────────────────────┘

  Endpoints:
    • GET  /                 - Health check
    • GET  /proxy?url=URL    - Fetch URL on the caller's behalf
""")


def parse_args(args):
    return get_parser().parse_args(args)


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="corsrelay",
        description="CORS forwarding relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with settings from the environment (PORT defaults to 3000)
  corsrelay

  # Run on a custom port
  corsrelay --port 9000

  # Only relay to listed domains
  RELAY_ALLOWED_DOMAINS=example.com,example.org corsrelay
        """,
    )
    parser.add_argument("--host", help="Host to bind to (default: $HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to listen on (default: $PORT or 3000)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: $LOG_LEVEL or info)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    return parser


def main(args=None):
    """Main entry point for the relay server."""
    options = parse_args(sys.argv[1:] if args is None else args)
    settings = get_settings()

    if options.host:
        settings.server.host = options.host
    if options.port is not None:
        settings.server.port = options.port
    if options.log_level:
        settings.server.log_level = options.log_level.upper()

    configure_logging(settings.server.log_level)
    logger.info(
        "starting_corsrelay",
        version=__version__,
        host=settings.server.host,
        port=settings.server.port,
    )

    run_relay_server(settings=settings, reload=options.reload)


if __name__ == "__main__":
    main()
