"""
Payloads and helpers shared by several handler modules.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import TypeVar

from mpdsonic.core.ids import AlbumID, ArtistID, CoverArtID, SongID
from mpdsonic.protocol.mpd import Song
from mpdsonic.web.dispatch import QueryParams
from mpdsonic.web.errors import not_authorized
from mpdsonic.web.reply import Reply, attr

# Backend sticker names
STICKER_RATING = "rating"
STICKER_STARRED = "starred"

C = TypeVar("C", bound="Child")

# Content types by file suffix
_CONTENT_TYPES = {
    "aac": "audio/aac",
    "aif": "audio/aiff",
    "aiff": "audio/aiff",
    "alac": "audio/mp4",
    "ape": "audio/x-ape",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "mp3": "audio/mpeg",
    "mp4": "audio/mp4",
    "mpc": "audio/x-musepack",
    "oga": "audio/ogg",
    "ogg": "audio/ogg",
    "opus": "audio/ogg",
    "wav": "audio/wav",
    "wma": "audio/x-ms-wma",
    "wv": "audio/x-wavpack",
}


def suffix_of(path: str) -> str | None:
    return posixpath.splitext(path)[1].lstrip(".").lower() or None


def content_type_for(path: str) -> str | None:
    """Content type of a song file, guessed from its suffix."""
    return _CONTENT_TYPES.get(suffix_of(path) or "")


class UserParams(QueryParams):
    """The authenticated user plus the (optional) user a request is about."""

    u: str
    username: str | None = None


def ensure_same_user(params: UserParams) -> str:
    """
    Reject requests about another user.

    Returns:
        The username the request is about.

    Raises:
        ApiError: The request targets another user (code 50).
    """
    username = params.username if params.username is not None else params.u
    if username != params.u:
        raise not_authorized(f"{params.u} is not authorized to get details for other users.")
    return username


def single_int(song: Song, tag: str) -> int | None:
    """First value of a numeric tag; ``"3/12"`` style values yield 3."""
    value = song.tag(tag)
    if value is None:
        return None
    head = value.split("/", 1)[0].strip()
    try:
        return int(head)
    except ValueError:
        return None


def year_of(song: Song) -> int | None:
    value = song.tag("Date") or song.tag("OriginalDate")
    if not value:
        return None
    try:
        return int(value[:4])
    except ValueError:
        return None


@dataclass
class Child(Reply):
    """A song entry, rendered as ``<song>`` or ``<entry>`` by the enclosing payload."""

    id: SongID
    title: str | None = None
    album: str | None = None
    artist: str | None = None
    track: int | None = None
    disc_number: int | None = None
    year: int | None = None
    genre: str | None = None
    cover_art: CoverArtID | None = None
    duration: int | None = None
    path: str | None = None
    suffix: str | None = None
    content_type: str | None = None
    parent: AlbumID | None = attr(default=None)
    album_id: AlbumID | None = None
    artist_id: ArtistID | None = None
    is_dir: bool = False
    type: str = "music"


def song_to_child(song: Song, cls: type[C] = Child) -> C:
    """Convert a backend song record to its REST representation."""
    artist = ", ".join(song.artists)
    album_id = AlbumID(song.album, song.album_artist) if song.album is not None else None
    suffix = suffix_of(song.file)
    genres = song.tag_values("Genre")

    return cls(
        id=SongID(song.file),
        title=song.title,
        album=song.album,
        artist=artist or None,
        track=single_int(song, "Track"),
        disc_number=single_int(song, "Disc"),
        year=year_of(song),
        genre=", ".join(genres) if genres else None,
        cover_art=CoverArtID.song(song.file),
        duration=int(song.duration) if song.duration is not None else None,
        path=song.file,
        suffix=suffix,
        content_type=content_type_for(song.file),
        parent=album_id,
        album_id=album_id,
        artist_id=ArtistID(song.album_artist) if song.album_artist else None,
    )
