"""
REST Handlers Package.

This package contains the handler modules for the REST API.
Each module handles a specific category of endpoints.

Modules:
- system: ping, getLicense
- browsing: getMusicFolders, getArtists, getArtist, getAlbum, getSong
- playlists: getPlaylists, getPlaylist
- users: getUser
- scanning: startScan, getScanStatus
- annotation: scrobble, setRating, star, unstar
- retrieval: getCoverArt, stream, download, getAvatar
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mpdsonic.backend.pool import ConnectionPool
    from mpdsonic.config import Credentials
    from mpdsonic.core.library import Library
    from mpdsonic.core.listenbrainz import ListenBrainzClient


@dataclass
class HandlerContext:
    """
    Context object passed to all REST handlers.

    Holds the long-lived components shared by every request, so handlers can
    be stateless functions.
    """

    pool: ConnectionPool
    """Pool of backend connections."""

    library: Library
    """Source of raw song bytes for streaming."""

    credentials: Credentials
    """The configured account."""

    listenbrainz: ListenBrainzClient | None = None
    """Scrobbling client, if a token is configured."""

    ffmpeg: str = "ffmpeg"
    """Encoder binary used for transcoding."""
