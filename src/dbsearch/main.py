"""
Admin API Application

FastAPI application factory for the search admin surface. The forum host
builds a DbSearchPlugin around its own stores and passes it in; the
plugin's lifecycle follows the application's.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .api import admin_routes
from .core.errors import unhandled_exception_handler
from .plugin import DbSearchPlugin

logger = logging.getLogger("dbsearch.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(plugin: DbSearchPlugin, *, manage_lifecycle: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    plugin : DbSearchPlugin
        The wired plugin served by the admin routes.
    manage_lifecycle : bool
        Start the plugin on startup and close it on shutdown. Tests that
        start the plugin themselves pass False.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            logger.info("Starting dbsearch admin API")
            await plugin.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                logger.info("Shutting down dbsearch admin API")
                await plugin.close()

    app = FastAPI(
        title="dbsearch",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.plugin = plugin

    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.include_router(admin_routes.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok", "backend": plugin.backend.name}

    return app
