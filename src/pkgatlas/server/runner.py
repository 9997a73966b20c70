"""Run the search service under uvicorn."""

from __future__ import annotations

import structlog
import uvicorn

from pkgatlas.config.models import PkgAtlasConfig
from pkgatlas.server.app import create_app
from pkgatlas.server.context import AppContext

logger = structlog.get_logger()


async def run_server(config: PkgAtlasConfig) -> None:
    """Serve until a shutdown signal; uvicorn installs the signal handlers."""
    context = AppContext.create(config)
    await context.store.create_all()
    app = create_app(context)

    uvicorn_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="warning",  # Use structlog instead
        ws="none",
    )
    server = uvicorn.Server(uvicorn_config)

    base_url = f"http://{config.server.host}:{config.server.port}"
    logger.info("endpoint", name="health", url=f"{base_url}/health")
    logger.info("endpoint", name="search", url=f"{base_url}/search")
    await server.serve()
