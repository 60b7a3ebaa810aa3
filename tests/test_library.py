"""
Tests for music library access and the ListenBrainz client.

Tests cover:
- Local directory reads, missing files and path escapes
- HTTP libraries (URL quoting, 404 and server errors)
- ListenBrainz payloads
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from mpdsonic.core.library import (
    FileSystemLibrary,
    HttpLibrary,
    LibraryError,
    LibraryNotFound,
    get_library,
)
from mpdsonic.core.listenbrainz import ListenBrainzClient, ListenBrainzError, Score, track_metadata
from mpdsonic.protocol.mpd import Song


async def _read_all(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


class TestFileSystemLibrary:
    """Tests for FileSystemLibrary."""

    async def test_read(self, music_dir: Path) -> None:
        library = FileSystemLibrary(music_dir)
        data = await _read_all(await library.get_song("Metal/song.flac"))
        assert data == (music_dir / "Metal" / "song.flac").read_bytes()

    async def test_missing(self, music_dir: Path) -> None:
        with pytest.raises(LibraryNotFound):
            await FileSystemLibrary(music_dir).get_song("Metal/missing.flac")

    async def test_directory(self, music_dir: Path) -> None:
        with pytest.raises(LibraryNotFound):
            await FileSystemLibrary(music_dir).get_song("Metal")

    async def test_escape(self, music_dir: Path) -> None:
        (music_dir.parent / "secret.txt").write_text("x")
        with pytest.raises(LibraryNotFound):
            await FileSystemLibrary(music_dir).get_song("../secret.txt")


class TestHttpLibrary:
    """Tests for HttpLibrary."""

    def _library(self, handler) -> HttpLibrary:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpLibrary("http://files.local/music", client)

    async def test_read(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=b"audio")

        library = self._library(handler)
        data = await _read_all(await library.get_song("Björk/Debut/01 Human Behaviour.flac"))
        assert data == b"audio"
        assert requested == ["http://files.local/music/Bj%C3%B6rk/Debut/01%20Human%20Behaviour.flac"]
        await library.close()

    async def test_not_found(self) -> None:
        library = self._library(lambda request: httpx.Response(404))
        with pytest.raises(LibraryNotFound):
            await library.get_song("missing.flac")
        await library.close()

    async def test_server_error(self) -> None:
        library = self._library(lambda request: httpx.Response(500))
        with pytest.raises(LibraryError) as exc_info:
            await library.get_song("a.flac")
        assert not isinstance(exc_info.value, LibraryNotFound)
        await library.close()

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        library = self._library(handler)
        with pytest.raises(LibraryError):
            await library.get_song("a.flac")
        await library.close()


class TestGetLibrary:
    """Tests for get_library."""

    def test_local(self, tmp_path: Path) -> None:
        assert isinstance(get_library(str(tmp_path)), FileSystemLibrary)

    def test_http(self) -> None:
        assert isinstance(get_library("https://files.local/music/"), HttpLibrary)

    def test_unsupported(self) -> None:
        with pytest.raises(ValueError):
            get_library("nfs://server/music")


def _song(**tags: str) -> Song:
    return Song(file="a.flac", tags={k: [v] for k, v in tags.items()}, duration=200.5)


class TestListenBrainz:
    """Tests for ListenBrainzClient."""

    def test_track_metadata(self) -> None:
        song = _song(Artist="Metallica", Title="Battery", Album="Master of Puppets", MUSICBRAINZ_TRACKID="mbid")
        metadata = track_metadata(song)
        assert metadata["artist_name"] == "Metallica"
        assert metadata["track_name"] == "Battery"
        assert metadata["release_name"] == "Master of Puppets"
        assert metadata["additional_info"]["recording_mbid"] == "mbid"
        assert metadata["additional_info"]["duration_ms"] == 200500

    def test_track_metadata_requires_title(self) -> None:
        with pytest.raises(ListenBrainzError):
            track_metadata(_song(Artist="Metallica"))

    async def test_listen(self) -> None:
        sent: list[tuple[str, dict]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append((request.url.path, json.loads(request.content)))
            assert request.headers["Authorization"] == "Token t0ken"
            return httpx.Response(200, json={"status": "ok"})

        client = ListenBrainzClient("t0ken", transport=httpx.MockTransport(handler))
        await client.listen(_song(Artist="A", Title="T"), 1657534797)
        await client.playing_now(_song(Artist="A", Title="T"))
        await client.close()

        (path, listen), (_, now) = sent
        assert path == "/1/submit-listens"
        assert listen["listen_type"] == "single"
        assert listen["payload"][0]["listened_at"] == 1657534797
        assert now["listen_type"] == "playing_now"
        assert "listened_at" not in now["payload"][0]

    async def test_feedback(self) -> None:
        sent: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/1/feedback/recording-feedback"
            sent.append(json.loads(request.content))
            return httpx.Response(200)

        client = ListenBrainzClient("t0ken", transport=httpx.MockTransport(handler))
        await client.feedback(_song(Artist="A", Title="T", MUSICBRAINZ_TRACKID="mbid"), Score.HATE)
        await client.close()
        assert sent == [{"score": -1, "recording_mbid": "mbid"}]

    async def test_rejected(self) -> None:
        client = ListenBrainzClient("t0ken", transport=httpx.MockTransport(lambda r: httpx.Response(401)))
        with pytest.raises(ListenBrainzError):
            await client.listen(_song(Artist="A", Title="T"), 0)
        await client.close()
