"""HTTP routes for the search service.

Every search route parses query-string parameters into a SearchQuery and
hands it to the dispatcher with an explicit mode. Failures are reported
with a generic per-route message; client errors (bad parameters) carry
the specific reason.
"""

from __future__ import annotations

import importlib.metadata
import time
from typing import TYPE_CHECKING

import structlog
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from pkgatlas import __version__
from pkgatlas.core.errors import ErrorCode, InternalError, PkgAtlasError, QueryError
from pkgatlas.search.models import SearchMode, SearchQuery

if TYPE_CHECKING:
    from pkgatlas.server.context import AppContext

log = structlog.get_logger()

_UNAVAILABLE_CODES = frozenset(
    {
        ErrorCode.FULLTEXT_UNAVAILABLE,
        ErrorCode.FULLTEXT_TIMEOUT,
        ErrorCode.EMBEDDING_TIMEOUT,
    }
)

_FAILURE_MESSAGES: dict[SearchMode, str] = {
    SearchMode.KEYWORD: "Search failed",
    SearchMode.SEMANTIC: "Semantic search failed",
    SearchMode.HYBRID: "Hybrid search failed",
    SearchMode.EXTERNAL_INDEX: "Search failed",
}


def _get_version() -> str:
    """Get package version from installed metadata."""
    try:
        return importlib.metadata.version("pkgatlas")
    except importlib.metadata.PackageNotFoundError:
        return __version__


def status_for(error: PkgAtlasError) -> int:
    """HTTP status for a service error."""
    if isinstance(error, QueryError):
        return 400
    if error.code in _UNAVAILABLE_CODES:
        return 503
    return 500


def error_response(error: PkgAtlasError, generic_message: str) -> JSONResponse:
    status = status_for(error)
    message = error.message if status == 400 else generic_message
    return JSONResponse(
        {"error": message, "code": int(error.code), "kind": error.error_name},
        status_code=status,
    )


def create_routes(context: AppContext) -> list[Route]:
    """Create HTTP routes bound to the shared service objects."""
    start_time = time.time()
    version = _get_version()
    dispatcher = context.dispatcher

    async def health(request: Request) -> JSONResponse:
        """Liveness probe. Does not touch the store or the index."""
        _ = request  # unused
        return JSONResponse(
            {
                "status": "healthy",
                "version": version,
                "uptime_seconds": round(time.time() - start_time, 1),
            }
        )

    async def _search(request: Request, mode: SearchMode) -> JSONResponse:
        try:
            query = SearchQuery.from_params(request.query_params)
            response = await dispatcher.search(query, mode)
        except PkgAtlasError as e:
            status = status_for(e)
            if status >= 500:
                log.error("search.failed", mode=mode.value, status=status, error=str(e))
            else:
                log.info("search.rejected", mode=mode.value, error=str(e))
            return error_response(e, _FAILURE_MESSAGES[mode])
        except Exception as e:
            log.exception("search.crashed", mode=mode.value)
            return error_response(
                InternalError.unexpected(str(e), exc_type=type(e).__name__),
                _FAILURE_MESSAGES[mode],
            )
        return JSONResponse(response.to_json())

    async def keyword_search(request: Request) -> JSONResponse:
        return await _search(request, SearchMode.KEYWORD)

    async def semantic_search(request: Request) -> JSONResponse:
        return await _search(request, SearchMode.SEMANTIC)

    async def hybrid_search(request: Request) -> JSONResponse:
        return await _search(request, SearchMode.HYBRID)

    async def external_search(request: Request) -> JSONResponse:
        return await _search(request, SearchMode.EXTERNAL_INDEX)

    async def search_health(request: Request) -> JSONResponse:
        """Full-text service health; always 200, health is in the body."""
        _ = request  # unused
        return JSONResponse(await dispatcher.fulltext.health())

    return [
        Route("/health", health, methods=["GET"]),
        Route("/search", keyword_search, methods=["GET"]),
        Route("/search/semantic", semantic_search, methods=["GET"]),
        Route("/search/hybrid", hybrid_search, methods=["GET"]),
        Route("/search/external-index", external_search, methods=["GET"]),
        Route("/search/health", search_health, methods=["GET"]),
    ]
