"""
Backend access for mpdsonic.

Components:
    ConnectionPool: Bounded pool of validated MPD connections.
"""

from mpdsonic.backend.pool import ConnectionPool, PoolClosed, PoolError, PoolTimeout

__all__ = ["ConnectionPool", "PoolClosed", "PoolError", "PoolTimeout"]
