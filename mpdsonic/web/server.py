"""
Web Server Module for mpdsonic.

This module provides the WebServer class that creates and manages the
FastAPI application, registers the REST routes and runs uvicorn.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from mpdsonic import __version__
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.routes.rest import register_rest_routes

logger = logging.getLogger(__name__)


def create_app(context: HandlerContext) -> FastAPI:
    """
    Build the FastAPI application serving the REST API.

    Args:
        context: Shared components handed to every handler.
    """
    app = FastAPI(
        title="mpdsonic",
        description="Subsonic-compatible REST gateway for MPD",
        version=__version__,
    )
    app.state.context = context
    app.state.credentials = context.credentials

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if not logger.isEnabledFor(logging.DEBUG):
            return await call_next(request)
        started = time.monotonic()
        response = await call_next(request)
        logger.debug(
            "%s %s -> %d (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - started) * 1000,
        )
        return response

    register_rest_routes(app)
    return app


class WebServer:
    """
    FastAPI-based web server for mpdsonic.

    Serves the REST API to Subsonic clients.
    """

    def __init__(self, context: HandlerContext) -> None:
        """
        Initialize the WebServer.

        Args:
            context: Shared components handed to every handler.
        """
        self.context = context
        self.app = create_app(context)

        # Server state
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._host = "127.0.0.1"
        self._port = 3000

    async def start(self, host: str = "127.0.0.1", port: int = 3000) -> None:
        """
        Start the web server.

        Args:
            host: Host address to bind to
            port: Port to listen on

        Raises:
            OSError: The listening socket could not be bound.
        """
        self._host = host
        self._port = port

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        # Start server in background
        self._task = asyncio.create_task(self._server.serve())

        # Surface bind failures instead of leaving a dead task behind
        while not self._server.started:
            if self._task.done():
                self._task.result()
                raise OSError(f"Web server failed to start on {host}:{port}")
            await asyncio.sleep(0.05)

        logger.info("Web server started on http://%s:%d", host, port)

    async def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.should_exit = True
            if self._task is not None:
                await self._task
            self._server = None
            self._task = None

        logger.info("Web server stopped")

    @property
    def port(self) -> int:
        """Get the server port."""
        return self._port

    @property
    def host(self) -> str:
        """Get the server host."""
        return self._host
