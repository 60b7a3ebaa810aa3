"""
Opaque entity identifiers.

Clients address artists, albums, songs, playlists and cover art through
self-contained tokens. A token is the compact JSON form of the identifier's
fields, base64 encoded with the URL-safe alphabet, so the gateway never has
to store a mapping between its IDs and the backend's entities.

    >>> token = SongID("Rock/track.flac").encode()
    >>> SongID.decode(token)
    SongID(path='Rock/track.flac')
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, fields
from typing import Any, ClassVar, TypeVar

T = TypeVar("T", bound="OpaqueID")

# Some clients prepend this to the cover art IDs of playlists
COVER_ART_COMPAT_PREFIX = "pl-"


class IDError(Exception):
    """Base class for identifier encoding/decoding failures."""


class SerializationFailure(IDError):
    """An in-memory identifier could not be serialized."""

    def __str__(self) -> str:
        return f"Failed to serialize: {self.args[0]}"


class DecodingFailure(IDError):
    """The token is not valid base64."""

    def __str__(self) -> str:
        return f"Failed to decode: {self.args[0]}"


class DeserializationFailure(IDError):
    """The token decoded, but its JSON does not describe the expected identifier."""

    def __str__(self) -> str:
        return f"Failed to deserialize: {self.args[0]}"


def _dump(value: Any) -> str:
    try:
        payload = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationFailure(e) from e
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def _load(token: str) -> Any:
    raw = token.strip().encode("ascii", errors="replace")
    raw += b"=" * (-len(raw) % 4)
    try:
        decoded = base64.b64decode(raw, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodingFailure(e) from e

    try:
        return json.loads(decoded.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DeserializationFailure(e) from e


def _fields_from(data: Any, names: tuple[str, ...], kind: str) -> dict[str, str]:
    """Validate that ``data`` is an object with exactly ``names`` as string fields."""
    if not isinstance(data, dict):
        raise DeserializationFailure(f"expected an object for {kind}")
    if set(data) != set(names):
        raise DeserializationFailure(f"expected fields {', '.join(names)} for {kind}")
    for name in names:
        if not isinstance(data[name], str):
            raise DeserializationFailure(f"field {name!r} of {kind} must be a string")
    return {name: data[name] for name in names}


@dataclass(frozen=True)
class OpaqueID:
    """Base class for identifiers that encode to an opaque token."""

    kind: ClassVar[str] = "ID"

    def to_json(self) -> Any:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_json(cls: type[T], data: Any) -> T:
        names = tuple(f.name for f in fields(cls))
        return cls(**_fields_from(data, names, cls.kind))

    def encode(self) -> str:
        """Encode to the canonical token form."""
        return _dump(self.to_json())

    @classmethod
    def decode(cls: type[T], token: str) -> T:
        """
        Decode a token produced by :meth:`encode`.

        Raises:
            DecodingFailure: The token is not base64.
            DeserializationFailure: The payload has the wrong shape.
        """
        return cls.from_json(_load(token))

    def __str__(self) -> str:
        return self.encode()


@dataclass(frozen=True)
class ArtistID(OpaqueID):
    kind: ClassVar[str] = "ArtistID"

    name: str


@dataclass(frozen=True)
class AlbumID(OpaqueID):
    kind: ClassVar[str] = "AlbumID"

    name: str
    artist: str


@dataclass(frozen=True)
class SongID(OpaqueID):
    kind: ClassVar[str] = "SongID"

    path: str


@dataclass(frozen=True)
class PlaylistID(OpaqueID):
    kind: ClassVar[str] = "PlaylistID"

    name: str


@dataclass(frozen=True)
class CoverArtID(OpaqueID):
    """
    Cover art source: a song file or a playlist.

    Exactly one of ``path`` and ``name`` is set. The JSON form is tagged
    with the variant name, e.g. ``{"Song":{"path":"a.flac"}}``.
    """

    kind: ClassVar[str] = "CoverArtID"

    path: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if (self.path is None) == (self.name is None):
            raise ValueError("CoverArtID needs exactly one of path or name")

    @classmethod
    def song(cls, path: str) -> CoverArtID:
        return cls(path=path)

    @classmethod
    def playlist(cls, name: str) -> CoverArtID:
        return cls(name=name)

    @property
    def is_playlist(self) -> bool:
        return self.name is not None

    def to_json(self) -> Any:
        if self.path is not None:
            return {"Song": {"path": self.path}}
        return {"Playlist": {"name": self.name}}

    @classmethod
    def from_json(cls, data: Any) -> CoverArtID:
        if not isinstance(data, dict) or len(data) != 1:
            raise DeserializationFailure("expected a single variant for CoverArtID")
        variant, body = next(iter(data.items()))
        if variant == "Song":
            return cls(path=_fields_from(body, ("path",), "CoverArtID::Song")["path"])
        if variant == "Playlist":
            return cls(name=_fields_from(body, ("name",), "CoverArtID::Playlist")["name"])
        raise DeserializationFailure(f"unknown CoverArtID variant {variant!r}")

    @classmethod
    def decode(cls, token: str) -> CoverArtID:
        token = token.strip()
        if token.startswith(COVER_ART_COMPAT_PREFIX):
            token = token[len(COVER_ART_COMPAT_PREFIX) :]
        return cls.from_json(_load(token))


__all__ = [
    "AlbumID",
    "ArtistID",
    "COVER_ART_COMPAT_PREFIX",
    "CoverArtID",
    "DecodingFailure",
    "DeserializationFailure",
    "IDError",
    "OpaqueID",
    "PlaylistID",
    "SerializationFailure",
    "SongID",
]
