"""Starlette application serving the bot's HTTP surface."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from partner_bot import __version__
from partner_bot.context import ServiceContext
from partner_bot.servers.auth import oauth_callback_route
from partner_bot.servers.correlation import CorrelationIdMiddleware

logger = logging.getLogger("partner-bot.server.app")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": __version__})


def create_app(context: ServiceContext) -> Starlette:
    """Return the ASGI application bound to *context*."""

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Partner bot HTTP surface starting (callback=/%s)", context.config.callback_path)
        try:
            yield
        finally:
            context.close()
            logger.info("Partner bot HTTP surface stopped")

    routes = [
        Route("/healthz", health_check, methods=["GET"], name="healthz"),
        oauth_callback_route(context.authentication, path=f"/{context.config.callback_path}"),
    ]
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.context = context
    return app
