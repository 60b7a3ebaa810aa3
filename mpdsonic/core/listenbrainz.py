"""
ListenBrainz scrobbling client.

Submits "playing now" notifications, listens and recording feedback for
songs played through the gateway.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import httpx

from mpdsonic import __version__
from mpdsonic.protocol.mpd import Song

logger = logging.getLogger(__name__)

API_ROOT = "https://api.listenbrainz.org/1/"


class ListenBrainzError(Exception):
    """A submission could not be made."""


class Score(Enum):
    """Recording feedback score."""

    LOVE = 1
    HATE = -1
    REMOVE = 0


def _single(song: Song, tag: str) -> str | None:
    return song.tag(tag) or None


def track_metadata(song: Song) -> dict[str, Any]:
    """
    Build the ``track_metadata`` object for a song.

    Raises:
        ListenBrainzError: The song has no artist or title tag.
    """
    artist = _single(song, "Artist")
    title = _single(song, "Title")
    if artist is None or title is None:
        raise ListenBrainzError(f"Song {song.file} lacks artist or title")

    additional: dict[str, Any] = {
        "media_player": "mpdsonic",
        "submission_client": "mpdsonic",
        "submission_client_version": __version__,
    }
    optional = {
        "release_mbid": _single(song, "MUSICBRAINZ_ALBUMID"),
        "recording_mbid": _single(song, "MUSICBRAINZ_TRACKID"),
        "track_mbid": _single(song, "MUSICBRAINZ_RELEASETRACKID"),
        "tracknumber": _single(song, "Track"),
    }
    additional.update({k: v for k, v in optional.items() if v is not None})
    if artist_mbids := song.tag_values("MUSICBRAINZ_ARTISTID"):
        additional["artist_mbids"] = artist_mbids
    if work_mbids := song.tag_values("MUSICBRAINZ_WORKID"):
        additional["work_mbids"] = work_mbids
    if song.duration is not None:
        additional["duration_ms"] = int(song.duration * 1000)

    metadata: dict[str, Any] = {"artist_name": artist, "track_name": title}
    if (release := _single(song, "Album")) is not None:
        metadata["release_name"] = release
    metadata["additional_info"] = additional
    return metadata


class ListenBrainzClient:
    """Thin async client for the ListenBrainz submission API."""

    def __init__(
        self,
        token: str,
        api_root: str = API_ROOT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=api_root,
            headers={"Authorization": f"Token {token}"},
            timeout=10.0,
            transport=transport,
        )

    async def listen(self, song: Song, timestamp: int) -> None:
        """Submit a completed listen."""
        await self._submit(
            {
                "listen_type": "single",
                "payload": [{"listened_at": timestamp, "track_metadata": track_metadata(song)}],
            }
        )

    async def playing_now(self, song: Song) -> None:
        """Announce the song that just started playing."""
        await self._submit(
            {
                "listen_type": "playing_now",
                "payload": [{"track_metadata": track_metadata(song)}],
            }
        )

    async def feedback(self, song: Song, score: Score) -> None:
        """Love, hate or clear feedback for the song's recording."""
        body: dict[str, Any] = {"score": score.value}
        if (mbid := _single(song, "MUSICBRAINZ_TRACKID")) is not None:
            body["recording_mbid"] = mbid
        await self._post("feedback/recording-feedback", body)

    async def close(self) -> None:
        await self._client.aclose()

    async def _submit(self, submission: dict[str, Any]) -> None:
        await self._post("submit-listens", submission)

    async def _post(self, path: str, body: dict[str, Any]) -> None:
        try:
            response = await self._client.post(path, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("ListenBrainz request to %s failed: %s", path, e)
            raise ListenBrainzError(str(e)) from e
