"""``partner-bot`` console entry point."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn

from partner_bot import __version__
from partner_bot.config import BotConfig
from partner_bot.context import build_service_context
from partner_bot.servers.app import create_app
from partner_bot.servers.correlation import CorrelationIdFilter
from partner_bot.utils.environment import env_int, env_str
from partner_bot.utils.logging import setup_logging

logger = logging.getLogger("partner-bot.server.main")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="partner-bot", description="Partner Center bot sign-in service")
    parser.add_argument("--host", default=env_str("BOT_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=env_int("BOT_PORT", 3978))
    parser.add_argument(
        "--log-level",
        default=env_str("BOT_LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    root = setup_logging(args.log_level)
    for handler in root.handlers:
        handler.addFilter(CorrelationIdFilter())
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    try:
        config = BotConfig.from_env()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    app = create_app(build_service_context(config))
    logger.info("Starting partner-bot %s on %s:%s", __version__, args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
