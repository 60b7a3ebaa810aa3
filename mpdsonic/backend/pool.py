"""
Backend Connection Pool for mpdsonic.

Manages a bounded set of sessions to the MPD server. Each request borrows a
connection for the duration of its handler and gives it back when done:

    async with pool.acquire() as conn:
        songs = await conn.listplaylistinfo("rock")

Connection lifecycle:
    Connecting -> Ready -> Validating -> Ready | Broken -> Closed

- A new connection runs a one-time customization step (raising the
  backend's binary payload limit) before it is considered usable.
- An idle connection is validated with a ``ping`` before it is handed out.
  Broken connections are discarded and replaced by a fresh one.
- A connection is never handed to two callers at once.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mpdsonic.protocol.mpd import MpdClientError, MpdConnection, ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 16
DEFAULT_ACQUIRE_TIMEOUT_SECONDS = 30.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0

# Large enough that cover art does not need hundreds of round trips
DEFAULT_BINARY_LIMIT = 128 * 1024


class PoolError(Exception):
    """Base exception for pool failures."""


class PoolTimeout(PoolError):
    """No connection became available in time."""


class PoolClosed(PoolError):
    """The pool has been shut down."""


class ConnectionPool:
    """
    Bounded pool of MPD connections.

    Args:
        host: Backend host.
        port: Backend port.
        password: Optional backend password.
        max_size: Maximum number of concurrently open connections.
        acquire_timeout: Seconds to wait for a connection before PoolTimeout.
        connect_timeout: Seconds allowed for connect + greeting.
        binary_limit: Binary chunk size requested after connecting.
    """

    def __init__(
        self,
        host: str,
        port: int,
        password: str | None = None,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        binary_limit: int = DEFAULT_BINARY_LIMIT,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.host = host
        self.port = port
        self._password = password
        self.max_size = max_size
        self.acquire_timeout = acquire_timeout
        self.connect_timeout = connect_timeout
        self.binary_limit = binary_limit

        # One permit per connection that may exist (idle or checked out)
        self._permits = asyncio.Semaphore(max_size)
        self._idle: deque[MpdConnection] = deque()
        self._checked_out = 0
        self._closed = False

    @property
    def idle(self) -> int:
        """Number of idle connections."""
        return len(self._idle)

    @property
    def size(self) -> int:
        """Number of open connections (idle + checked out)."""
        return len(self._idle) + self._checked_out

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """
        Open the first connection so that an unreachable backend fails at startup.

        Raises:
            OSError, MpdClientError: The backend cannot be reached or rejected us.
        """
        async with self.acquire():
            pass
        logger.info("Connected to backend at %s:%d", self.host, self.port)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[MpdConnection]:
        """
        Borrow a connection exclusively for the duration of the block.

        Raises:
            PoolTimeout: No connection became available within acquire_timeout.
            PoolClosed: The pool was closed.
        """
        if self._closed:
            raise PoolClosed("Connection pool is closed")

        try:
            await asyncio.wait_for(self._permits.acquire(), timeout=self.acquire_timeout)
        except TimeoutError:
            raise PoolTimeout(
                f"Timed out after {self.acquire_timeout:.1f}s waiting for a backend connection"
            ) from None

        # The pool may have been closed while we were waiting
        if self._closed:
            self._permits.release()
            raise PoolClosed("Connection pool is closed")

        try:
            conn = await self._checkout()
        except BaseException:
            self._permits.release()
            raise

        broken = False
        try:
            yield conn
        except (OSError, EOFError, ProtocolError, asyncio.CancelledError):
            broken = True
            raise
        finally:
            self._checked_out -= 1
            await self._checkin(conn, broken=broken)
            self._permits.release()

    async def close(self) -> None:
        """Close all idle connections and refuse further acquisitions."""
        if self._closed:
            return
        self._closed = True

        while self._idle:
            conn = self._idle.popleft()
            await conn.close()

        logger.debug("Connection pool closed (%d still checked out)", self._checked_out)

    async def _checkout(self) -> MpdConnection:
        """Return a validated idle connection, or a new one."""
        while self._idle:
            conn = self._idle.popleft()
            if await self._is_valid(conn):
                self._checked_out += 1
                return conn
            logger.debug("Discarding broken backend connection")
            await conn.close()

        conn = await self._connect()
        self._checked_out += 1
        return conn

    async def _checkin(self, conn: MpdConnection, *, broken: bool) -> None:
        if broken or self._closed or conn.is_closed:
            if broken:
                logger.debug("Discarding backend connection after transport failure")
            await conn.close()
            return
        self._idle.append(conn)

    async def _connect(self) -> MpdConnection:
        logger.debug("Opening backend connection to %s:%d", self.host, self.port)
        conn = await MpdConnection.connect(
            self.host,
            self.port,
            password=self._password,
            timeout=self.connect_timeout,
        )
        try:
            await self._customize(conn)
        except BaseException:
            await conn.close()
            raise
        return conn

    async def _customize(self, conn: MpdConnection) -> None:
        """One-time setup run on every new connection."""
        await conn.binarylimit(self.binary_limit)

    async def _is_valid(self, conn: MpdConnection) -> bool:
        if conn.is_closed:
            return False
        try:
            await asyncio.wait_for(conn.ping(), timeout=self.connect_timeout)
        except (OSError, EOFError, TimeoutError, MpdClientError) as e:
            logger.debug("Backend connection failed liveness check: %s", e)
            return False
        return True


__all__ = [
    "ConnectionPool",
    "PoolClosed",
    "PoolError",
    "PoolTimeout",
]
