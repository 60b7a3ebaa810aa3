"""
Playlist Command Handlers.

Stored backend playlists are exposed read-only, all owned by the
configured user.

- getPlaylists: All playlists with song counts and durations
- getPlaylist: One playlist with its songs
"""

from __future__ import annotations

from dataclasses import dataclass

from mpdsonic.core.ids import CoverArtID, PlaylistID
from mpdsonic.protocol.mpd import Song, parse_songs
from mpdsonic.web.dispatch import PlaylistIDParam, QueryParams
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.handlers.common import Child, UserParams, ensure_same_user, song_to_child
from mpdsonic.web.reply import Reply, child


class GetPlaylistParams(QueryParams):
    u: str
    id: PlaylistIDParam


@dataclass
class Playlist(Reply):
    id: PlaylistID
    name: str
    owner: str
    public: bool
    song_count: int
    duration: int
    changed: str | None = None
    cover_art: CoverArtID | None = None


@dataclass
class Playlists(Reply):
    field_name = "playlists"

    playlists: list[Playlist] = child("playlist")


@dataclass
class PlaylistWithSongs(Playlist):
    field_name = "playlist"

    entries: list[Child] = child("entry")


def _total_duration(songs: list[Song]) -> int:
    return sum(int(s.duration) for s in songs if s.duration is not None)


async def get_playlists(ctx: HandlerContext, params: UserParams) -> Playlists:
    """
    Handle 'getPlaylists'.

    Lists every stored playlist. Song counts and durations come from one
    pipelined ``listplaylistinfo`` per playlist, on a single connection.
    """
    owner = ensure_same_user(params)

    async with ctx.pool.acquire() as conn:
        playlists = await conn.listplaylists()
        frames = await conn.command_list([("listplaylistinfo", p.name) for p in playlists])

    result = []
    for playlist, frame in zip(playlists, frames):
        songs = parse_songs(frame)
        result.append(
            Playlist(
                id=PlaylistID(playlist.name),
                name=playlist.name,
                owner=owner,
                public=True,
                song_count=len(songs),
                duration=_total_duration(songs),
                changed=playlist.last_modified,
                cover_art=CoverArtID.playlist(playlist.name) if songs else None,
            )
        )
    return Playlists(playlists=result)


async def get_playlist(ctx: HandlerContext, params: GetPlaylistParams) -> PlaylistWithSongs:
    """Handle 'getPlaylist'. An unknown playlist fails with code 70."""
    name = params.id.name
    async with ctx.pool.acquire() as conn:
        songs = await conn.listplaylistinfo(name)

    return PlaylistWithSongs(
        id=params.id,
        name=name,
        owner=params.u,
        public=True,
        song_count=len(songs),
        duration=_total_duration(songs),
        cover_art=CoverArtID.playlist(name) if songs else None,
        entries=[song_to_child(s) for s in songs],
    )
