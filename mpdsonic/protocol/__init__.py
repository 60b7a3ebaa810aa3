"""
Protocol implementations for mpdsonic.

This package contains the network protocol clients:
- mpd: The MPD control protocol (port 6600)
"""

from mpdsonic.protocol.mpd import MpdConnection, MpdError, ProtocolError

__all__ = ["MpdConnection", "MpdError", "ProtocolError"]
