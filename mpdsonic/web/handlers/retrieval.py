"""
Media Retrieval Handlers.

- getCoverArt: Cover art bytes, read from the backend in chunks
- stream: Song audio, raw or transcoded to Ogg/Opus
- download: Song audio, always raw
- getAvatar: No avatars are stored

These handlers produce their own response bodies; only their errors are
wrapped in the reply envelope.
"""

from __future__ import annotations

import logging
import posixpath
from urllib.parse import quote

from fastapi import Response
from fastapi.responses import StreamingResponse
from pydantic import Field

from mpdsonic.streaming.transcoder import OUTPUT_CONTENT_TYPE, select_bitrate, transcode_stream
from mpdsonic.web.dispatch import CoverArtIDParam, QueryParams, SongIDParam
from mpdsonic.web.errors import generic_error, not_authorized, not_found
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.handlers.common import content_type_for

logger = logging.getLogger(__name__)

FORMAT_RAW = "raw"
FORMAT_OGG = "ogg"


class CoverArtParams(QueryParams):
    id: CoverArtIDParam


class StreamParams(QueryParams):
    id: SongIDParam
    max_bit_rate: int | None = Field(default=None, alias="maxBitRate", ge=0)
    format: str | None = None


class DownloadParams(QueryParams):
    id: SongIDParam


class AvatarParams(QueryParams):
    u: str
    username: str


async def get_cover_art(ctx: HandlerContext, params: CoverArtParams) -> Response:
    """
    Handle 'getCoverArt'.

    Playlist covers are the cover of the playlist's first song. The image is
    fetched with repeated ``albumart`` calls on one connection, each starting
    at the number of bytes received so far, until the reported size is
    reached.
    """
    cover = params.id
    data = bytearray()
    mime: str | None = None

    async with ctx.pool.acquire() as conn:
        if cover.is_playlist:
            songs = await conn.listplaylistinfo(cover.name or "")
            if not songs:
                raise not_found()
            path = songs[0].file
        else:
            path = cover.path or ""

        while True:
            chunk = await conn.albumart(path, len(data))
            if chunk is None:
                raise not_found()
            if not chunk.data and len(data) < chunk.size:
                raise generic_error(f"Cover art transfer for {path} stalled at {len(data)} bytes")
            data += chunk.data
            mime = mime or chunk.mime
            if len(data) >= chunk.size:
                break

    return Response(content=bytes(data), media_type=mime)


async def stream(ctx: HandlerContext, params: StreamParams) -> Response:
    """
    Handle 'stream'.

    ``format=raw`` streams the file as stored. ``format=ogg`` (the default)
    transcodes to Opus at the ladder bitrate closest to ``maxBitRate``
    without exceeding it. Any other format fails before anything is opened.
    """
    fmt = params.format if params.format is not None else FORMAT_OGG
    if fmt not in (FORMAT_RAW, FORMAT_OGG):
        raise generic_error("unsupported format")

    path = params.id.path
    source = await ctx.library.get_song(path)

    if fmt == FORMAT_RAW:
        return StreamingResponse(source, media_type=content_type_for(path))

    bitrate = select_bitrate(params.max_bit_rate)
    logger.info("Streaming %s as Opus at %d kbit/s", path, bitrate)
    body = await transcode_stream(source, bitrate, ctx.ffmpeg, label=path)
    return StreamingResponse(body, media_type=OUTPUT_CONTENT_TYPE)


async def download(ctx: HandlerContext, params: DownloadParams) -> Response:
    """Handle 'download'; the file as stored, offered as an attachment."""
    path = params.id.path
    source = await ctx.library.get_song(path)
    filename = posixpath.basename(path)
    headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}
    return StreamingResponse(source, media_type=content_type_for(path), headers=headers)


async def get_avatar(ctx: HandlerContext, params: AvatarParams) -> Response:
    """Handle 'getAvatar'. There is never an avatar, but only the user may ask."""
    if params.username != params.u:
        raise not_authorized(f"{params.u} is not authorized to get details for other users.")
    raise not_found()
