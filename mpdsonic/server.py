"""
mpdsonic - Main Server Module

This module contains the MpdsonicServer class that wires the backend pool,
the music library, the optional ListenBrainz client and the web server
together and manages the application lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from mpdsonic.backend.pool import ConnectionPool
from mpdsonic.config import Settings
from mpdsonic.core.library import Library, get_library
from mpdsonic.core.listenbrainz import ListenBrainzClient
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.server import WebServer

logger = logging.getLogger(__name__)


class MpdsonicServer:
    """
    Main mpdsonic server that coordinates all components.

    The server manages:
    - Pool of MPD connections (initial connect at startup)
    - Music library used to read song files for streaming
    - ListenBrainz client, if a token is configured
    - Web server for the REST API
    """

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the server.

        Args:
            settings: Validated settings.

        Raises:
            ConfigError: The credentials are incomplete.
            ValueError: The library location is not supported.
        """
        self.settings = settings
        self.credentials = settings.credentials()

        self.pool = ConnectionPool(
            settings.mpd_host,
            settings.mpd_port,
            settings.mpd_password,
            max_size=settings.pool_size,
            acquire_timeout=settings.pool_timeout,
            connect_timeout=settings.connect_timeout,
        )
        self.library: Library = get_library(settings.library or "")
        self.listenbrainz: ListenBrainzClient | None = None
        if settings.listenbrainz_token:
            self.listenbrainz = ListenBrainzClient(settings.listenbrainz_token)

        self.web_server: WebServer | None = None

        # Server state
        self._running = False
        self._shutdown_event: asyncio.Event | None = None

    async def start(self) -> None:
        """
        Start all server components.

        Raises:
            OSError: The backend is unreachable or the port cannot be bound.
            MpdClientError: The backend rejected the connection.
        """
        logger.info(
            "Starting mpdsonic for MPD at %s:%d",
            self.settings.mpd_host,
            self.settings.mpd_port,
        )

        self._running = True
        self._shutdown_event = asyncio.Event()

        await self.pool.start()

        context = HandlerContext(
            pool=self.pool,
            library=self.library,
            credentials=self.credentials,
            listenbrainz=self.listenbrainz,
            ffmpeg=self.settings.ffmpeg,
        )
        self.web_server = WebServer(context)
        await self.web_server.start(host=self.settings.address, port=self.settings.port)

        if self.listenbrainz is None:
            logger.info("ListenBrainz token not configured, scrobbling disabled")
        logger.info("mpdsonic started successfully")

    async def stop(self) -> None:
        """Stop all server components gracefully."""
        if not self._running:
            return

        logger.info("Stopping mpdsonic...")
        self._running = False

        # Stop Web server first so no request borrows a connection
        if self.web_server:
            await self.web_server.stop()

        if self.listenbrainz is not None:
            await self.listenbrainz.close()

        await self.library.close()

        # Close the pool last, after all users are gone
        await self.pool.close()

        if self._shutdown_event:
            self._shutdown_event.set()

        logger.info("mpdsonic stopped")

    async def run(self) -> None:
        """
        Run the server until shutdown is requested.

        This method starts all components and waits for a shutdown signal
        (SIGINT or SIGTERM).
        """
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise

        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Received shutdown signal")
            if self._shutdown_event:
                self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # Signal handlers not supported on Windows
                pass

        if self._shutdown_event:
            await self._shutdown_event.wait()

        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._running
