"""
Browsing Command Handlers.

The catalog is organised the way clients expect it, by album artist, then
album, then song. Nothing is cached; every request queries the backend.

- getMusicFolders: The single root folder
- getArtists: Album artists, indexed by initial
- getArtist: Albums of an artist
- getAlbum: Songs of an album
- getSong: A single song
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, TypeVar

from mpdsonic.core.ids import AlbumID, ArtistID, CoverArtID
from mpdsonic.protocol.mpd import Song, and_filter, tag_filter
from mpdsonic.web.dispatch import AlbumIDParam, ArtistIDParam, QueryParams, SongIDParam
from mpdsonic.web.errors import not_found
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.handlers.common import Child, single_int, song_to_child, year_of
from mpdsonic.web.reply import Reply, child

logger = logging.getLogger(__name__)

# Index name for artists not starting with a letter
OTHER_INDEX = "#"

E = TypeVar("E", bound="AlbumEntry")


class ArtistParams(QueryParams):
    id: ArtistIDParam


class AlbumParams(QueryParams):
    id: AlbumIDParam


class SongParams(QueryParams):
    id: SongIDParam


@dataclass
class MusicFolder(Reply):
    id: str
    name: str


@dataclass
class MusicFolders(Reply):
    field_name = "musicFolders"

    music_folders: list[MusicFolder] = child("musicFolder")


@dataclass
class ArtistEntry(Reply):
    id: ArtistID
    name: str
    album_count: int


@dataclass
class Index(Reply):
    name: str
    artists: list[ArtistEntry] = child("artist")


@dataclass
class Artists(Reply):
    field_name = "artists"

    ignored_articles: str = ""
    indexes: list[Index] = child("index")


@dataclass
class AlbumEntry(Reply):
    id: AlbumID
    name: str
    artist: str
    artist_id: ArtistID
    song_count: int
    duration: int
    year: int | None = None
    genre: str | None = None
    cover_art: CoverArtID | None = None


@dataclass
class ArtistWithAlbums(Reply):
    field_name = "artist"

    id: ArtistID
    name: str
    album_count: int
    albums: list[AlbumEntry] = child("album")


@dataclass
class AlbumWithSongs(AlbumEntry):
    field_name = "album"

    songs: list[Child] = child("song")


@dataclass
class SongReply(Child):
    field_name = "song"


def index_name(artist: str) -> str:
    """Index an artist falls into: its upper-cased initial, or '#'."""
    initial = artist.lstrip()[:1].upper()
    return initial if initial.isalpha() else OTHER_INDEX


def _song_order(song: Song) -> tuple[int, int, str]:
    return (single_int(song, "Disc") or 0, single_int(song, "Track") or 0, song.file)


def _album_entry(name: str, artist: str, songs: list[Song], cls: type[E] = AlbumEntry, **extra: Any) -> E:
    first = songs[0]
    genres = first.tag_values("Genre")
    return cls(
        id=AlbumID(name, artist),
        name=name,
        artist=artist,
        artist_id=ArtistID(artist),
        song_count=len(songs),
        duration=sum(int(s.duration) for s in songs if s.duration is not None),
        year=year_of(first),
        genre=", ".join(genres) if genres else None,
        cover_art=CoverArtID.song(first.file),
        **extra,
    )


async def get_music_folders(ctx: HandlerContext) -> MusicFolders:
    return MusicFolders(music_folders=[MusicFolder(id="/", name="Music")])


async def get_artists(ctx: HandlerContext) -> Artists:
    """
    Handle 'getArtists'.

    Lists album artists with their album counts, grouped into one index per
    initial letter, using a single ``list album group albumartist``.
    """
    async with ctx.pool.acquire() as conn:
        albums_by_artist = await conn.list_grouped("album", "albumartist")

    indexes: dict[str, list[ArtistEntry]] = defaultdict(list)
    for artist in sorted(albums_by_artist, key=str.casefold):
        if not artist:
            continue
        albums = albums_by_artist[artist]
        indexes[index_name(artist)].append(
            ArtistEntry(id=ArtistID(artist), name=artist, album_count=len(albums))
        )

    ordered = sorted(indexes, key=lambda name: (name == OTHER_INDEX, name))
    return Artists(indexes=[Index(name=name, artists=indexes[name]) for name in ordered])


async def get_artist(ctx: HandlerContext, params: ArtistParams) -> ArtistWithAlbums:
    """Handle 'getArtist'. An artist without songs fails with code 70."""
    artist = params.id.name
    async with ctx.pool.acquire() as conn:
        songs = await conn.find(tag_filter("AlbumArtist", artist))
    if not songs:
        raise not_found()

    by_album: dict[str, list[Song]] = {}
    for song in songs:
        if song.album is not None:
            by_album.setdefault(song.album, []).append(song)

    albums = [
        _album_entry(name, artist, album_songs)
        for name, album_songs in sorted(by_album.items(), key=lambda item: item[0].casefold())
    ]
    return ArtistWithAlbums(id=params.id, name=artist, album_count=len(albums), albums=albums)


async def get_album(ctx: HandlerContext, params: AlbumParams) -> AlbumWithSongs:
    """Handle 'getAlbum'. Songs are ordered by disc and track number."""
    album = params.id
    expression = and_filter(tag_filter("Album", album.name), tag_filter("AlbumArtist", album.artist))
    async with ctx.pool.acquire() as conn:
        songs = await conn.find(expression)
    if not songs:
        raise not_found()

    songs.sort(key=_song_order)
    return _album_entry(
        album.name,
        album.artist,
        songs,
        cls=AlbumWithSongs,
        songs=[song_to_child(s) for s in songs],
    )


async def get_song(ctx: HandlerContext, params: SongParams) -> SongReply:
    """Handle 'getSong'. An unknown path fails with code 70."""
    async with ctx.pool.acquire() as conn:
        song = await conn.find_file(params.id.path)
    if song is None:
        raise not_found()
    return song_to_child(song, cls=SongReply)
