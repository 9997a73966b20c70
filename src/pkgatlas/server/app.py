"""Starlette application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from starlette.applications import Starlette

from pkgatlas.server.context import AppContext
from pkgatlas.server.middleware import RequestIdMiddleware
from pkgatlas.server.routes import create_routes

log = structlog.get_logger()


def create_app(context: AppContext) -> Starlette:
    """Create the Starlette application over an already-wired context.

    The context is closed when the application shuts down.
    """

    @asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        log.info("server.started", index=context.fulltext.index_name, model=context.generator.model_name)
        try:
            yield
        finally:
            await context.close()
            log.info("server.stopped")

    app = Starlette(routes=create_routes(context), lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)
    return app
