"""tokenwarden entry point.

Subcommands:
  serve            Run the HTTP API (with periodic cleanup + webhook retries)
  sweep            Run one cleanup pass and print what was removed
  retry-webhooks   Run one webhook retry pass
"""

import argparse
import asyncio
import logging
from datetime import timedelta
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from tokenwarden.config import get_settings
from tokenwarden.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("tokenwarden")
    except PackageNotFoundError:
        from tokenwarden import __version__

        return __version__


def run_sweep() -> int:
    from tokenwarden.oauth2.cleanup import CleanupSweeper
    from tokenwarden.oauth2.storage import get_oauth_store

    settings = get_settings()
    sweeper = CleanupSweeper(
        get_oauth_store(),
        delivery_retention=timedelta(days=settings.delivery_retention_days),
    )
    result = sweeper.sweep()
    for name, count in result.to_dict().items():
        print(f"  {name:<16} {count}")
    return 0


async def _retry_once() -> int:
    from tokenwarden.webhooks.delivery import get_delivery_engine

    engine = get_delivery_engine()
    try:
        return await engine.retry_failed_deliveries()
    finally:
        await engine.close()


def run_retry_webhooks() -> int:
    attempted = asyncio.run(_retry_once())
    print(f"  retried {attempted} deliveries")
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="tokenwarden",
        description="OAuth2 authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tokenwarden serve                   Start the API on 127.0.0.1:8888
  tokenwarden serve --host 0.0.0.0    Listen on all interfaces
  tokenwarden sweep                   Purge dead codes, tokens and old deliveries
  tokenwarden retry-webhooks          Re-send due webhook deliveries once
""",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument("--log-level", default=None, help="Override TOKENWARDEN_LOG_LEVEL")

    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None, help="Bind address")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on code changes")
    sub.add_parser("sweep", help="Run one cleanup pass")
    sub.add_parser("retry-webhooks", help="Run one webhook retry pass")

    args = parser.parse_args()
    settings = get_settings()
    setup_logging(level=args.log_level or settings.log_level)

    if args.command == "serve":
        from tokenwarden.api.serve import run_api_server

        run_api_server(
            host=args.host or settings.host,
            port=args.port or settings.port,
            dev=args.dev,
        )
    elif args.command == "sweep":
        raise SystemExit(run_sweep())
    elif args.command == "retry-webhooks":
        raise SystemExit(run_retry_webhooks())
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
