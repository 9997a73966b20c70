"""pkgatlas HTTP server - Starlette routes over the search dispatcher."""

from pkgatlas.server.app import create_app
from pkgatlas.server.context import AppContext
from pkgatlas.server.runner import run_server

__all__ = [
    "AppContext",
    "create_app",
    "run_server",
]
