"""
Annotation Command Handlers.

- scrobble: Report a listen (or the song now playing) to ListenBrainz
- setRating: Rate a song; loved/hated songs are mirrored to ListenBrainz
- star / unstar: Flag a song as favourite

Ratings and stars live in backend stickers attached to the song.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from pydantic import Field

from mpdsonic.core.listenbrainz import Score
from mpdsonic.protocol.mpd import MpdConnection, MpdError
from mpdsonic.web.dispatch import QueryParams, SongIDParam
from mpdsonic.web.errors import generic_error, not_found
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.handlers.common import STICKER_RATING, STICKER_STARRED

logger = logging.getLogger(__name__)

# Ratings mirrored as ListenBrainz feedback
_FEEDBACK_SCORES = {
    0: Score.REMOVE,
    1: Score.HATE,
    5: Score.LOVE,
}


class ScrobbleParams(QueryParams):
    id: SongIDParam
    time: int | None = None
    """Listen time in milliseconds since the epoch."""
    submission: bool | None = None


class SetRatingParams(QueryParams):
    id: SongIDParam
    rating: int = Field(ge=0, le=5)


class StarParams(QueryParams):
    id: SongIDParam


async def _delete_sticker(conn: MpdConnection, uri: str, name: str) -> None:
    """Delete a sticker; deleting one that is not set is not an error."""
    try:
        await conn.sticker_delete(uri, name)
    except MpdError as e:
        if not e.is_not_found:
            raise
        logger.debug("No %s sticker on %s", name, uri)


async def scrobble(ctx: HandlerContext, params: ScrobbleParams) -> None:
    """
    Handle 'scrobble'.

    ``submission=true`` records a completed listen at ``time`` (now if
    absent); otherwise the song is announced as playing now.
    """
    if ctx.listenbrainz is None:
        raise generic_error("ListenBrainz client is not configured")

    async with ctx.pool.acquire() as conn:
        song = await conn.find_file(params.id.path)
    if song is None:
        raise not_found()

    if params.submission:
        timestamp = params.time // 1000 if params.time is not None else int(time.time())
        await ctx.listenbrainz.listen(song, timestamp)
        logger.info("Scrobbled %s", song.file)
    else:
        await ctx.listenbrainz.playing_now(song)
        logger.debug("Now playing %s", song.file)


async def set_rating(ctx: HandlerContext, params: SetRatingParams) -> None:
    """
    Handle 'setRating'.

    A rating of 0 clears the rating. With ListenBrainz configured, ratings
    of 5 and 1 are sent as love and hate feedback, and 0 clears it.
    """
    path = params.id.path
    async with ctx.pool.acquire() as conn:
        if params.rating > 0:
            await conn.sticker_set(path, STICKER_RATING, str(params.rating))
        else:
            await _delete_sticker(conn, path, STICKER_RATING)

        if ctx.listenbrainz is None:
            return
        song = await conn.find_file(path)

    if song is None:
        raise not_found()

    score = _FEEDBACK_SCORES.get(params.rating)
    if score is not None:
        await ctx.listenbrainz.feedback(song, score)


async def star(ctx: HandlerContext, params: StarParams) -> None:
    """Handle 'star'; the sticker holds the time the song was starred."""
    starred_at = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    async with ctx.pool.acquire() as conn:
        await conn.sticker_set(params.id.path, STICKER_STARRED, starred_at)


async def unstar(ctx: HandlerContext, params: StarParams) -> None:
    async with ctx.pool.acquire() as conn:
        await _delete_sticker(conn, params.id.path, STICKER_STARRED)
