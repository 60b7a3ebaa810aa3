"""
REST API Routes for mpdsonic.

Mounts every REST endpoint under ``/rest``. Each endpoint answers GET and
POST, both as ``/rest/<name>.view`` and as ``/rest/<name>``.

Every route is guarded by :func:`~mpdsonic.web.auth.require_auth`. An
authentication failure is raised as an ApiError from the dependency and
rendered by :func:`api_error_handler` in the format the client asked for.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, FastAPI, Request, Response

from mpdsonic.web.auth import require_auth
from mpdsonic.web.dispatch import Endpoint, handler, raw_handler
from mpdsonic.web.errors import ApiError
from mpdsonic.web.handlers import annotation, browsing, playlists, retrieval, scanning, system, users
from mpdsonic.web.handlers.common import UserParams
from mpdsonic.web.reply import negotiate_format, serialize_reply

logger = logging.getLogger(__name__)

REST_PREFIX = "/rest"
VIEW_SUFFIX = ".view"


def rest_endpoints() -> dict[str, Endpoint]:
    """Map of endpoint name to its adapted handler."""
    return {
        # System
        "ping": handler(system.ping),
        "getLicense": handler(system.get_license),
        # Browsing
        "getMusicFolders": handler(browsing.get_music_folders),
        "getArtists": handler(browsing.get_artists),
        "getArtist": handler(browsing.get_artist, browsing.ArtistParams),
        "getAlbum": handler(browsing.get_album, browsing.AlbumParams),
        "getSong": handler(browsing.get_song, browsing.SongParams),
        # Playlists
        "getPlaylists": handler(playlists.get_playlists, UserParams),
        "getPlaylist": handler(playlists.get_playlist, playlists.GetPlaylistParams),
        # Users
        "getUser": handler(users.get_user, users.GetUserParams),
        # Scanning
        "startScan": handler(scanning.start_scan),
        "getScanStatus": handler(scanning.get_scan_status),
        # Annotation
        "scrobble": handler(annotation.scrobble, annotation.ScrobbleParams),
        "setRating": handler(annotation.set_rating, annotation.SetRatingParams),
        "star": handler(annotation.star, annotation.StarParams),
        "unstar": handler(annotation.unstar, annotation.StarParams),
        # Media retrieval
        "getCoverArt": raw_handler(retrieval.get_cover_art, retrieval.CoverArtParams),
        "stream": raw_handler(retrieval.stream, retrieval.StreamParams),
        "download": raw_handler(retrieval.download, retrieval.DownloadParams),
        "getAvatar": raw_handler(retrieval.get_avatar, retrieval.AvatarParams),
    }


def build_rest_router() -> APIRouter:
    router = APIRouter(
        prefix=REST_PREFIX,
        tags=["rest"],
        dependencies=[Depends(require_auth)],
    )
    for name, endpoint in rest_endpoints().items():
        router.add_api_route(f"/{name}{VIEW_SUFFIX}", endpoint, methods=["GET", "POST"], name=name)
        router.add_api_route(
            f"/{name}",
            endpoint,
            methods=["GET", "POST"],
            name=f"{name}-bare",
            include_in_schema=False,
        )
    return router


async def api_error_handler(request: Request, exc: ApiError) -> Response:
    """Render an ApiError that escaped a handler (authentication) as an envelope."""
    return serialize_reply(exc.reply(), negotiate_format(request.query_params))


def register_rest_routes(app: FastAPI) -> None:
    """
    Register the REST API with the FastAPI app.

    Handlers read their shared state from ``app.state.context`` and the
    authentication guard from ``app.state.credentials``.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(ApiError, api_error_handler)
    app.include_router(build_rest_router())
    logger.debug("Registered REST routes under %s", REST_PREFIX)
