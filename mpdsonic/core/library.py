"""
Music library access for mpdsonic.

The backend only knows songs by their path relative to its music directory.
To stream a song, the gateway reads the file itself from a library location
that mirrors that directory:

- a local directory (``/srv/music``)
- an HTTP origin serving the directory (``https://files.example.com/music/``)

Every implementation returns an open async byte stream, so a missing file
is reported before the HTTP response starts.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from pathlib import Path
from urllib.parse import quote, urljoin

import httpx

logger = logging.getLogger(__name__)

# Buffer size for streaming (64KB chunks)
STREAM_BUFFER_SIZE = 65536


class LibraryError(Exception):
    """Base exception for library failures."""


class LibraryNotFound(LibraryError):
    """The requested song does not exist in the library."""


class Library(ABC):
    """Source of raw song bytes, keyed by backend path."""

    @abstractmethod
    async def get_song(self, uri: str) -> AsyncIterator[bytes]:
        """
        Open a song for reading.

        Args:
            uri: Song path as reported by the backend.

        Returns:
            An async iterator of byte chunks. Closing it releases the source.

        Raises:
            LibraryNotFound: The song does not exist.
            LibraryError: Any other failure opening the song.
        """

    async def close(self) -> None:
        """Release resources held by the library."""


class FileSystemLibrary(Library):
    """Library on top of an ordinary directory."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()

    def _resolve(self, uri: str) -> Path:
        path = (self.root / uri).resolve()
        if not path.is_relative_to(self.root):
            raise LibraryNotFound(f"Path escapes library root: {uri}")
        return path

    async def get_song(self, uri: str) -> AsyncIterator[bytes]:
        path = self._resolve(uri)
        try:
            f = await asyncio.to_thread(path.open, "rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise LibraryNotFound(f"File not found: {uri}") from e
        except OSError as e:
            raise LibraryError(f"Cannot open {uri}: {e}") from e

        return self._read(f)

    @staticmethod
    async def _read(f) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(f.read, STREAM_BUFFER_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            f.close()


class HttpLibrary(Library):
    """Library on top of an HTTP/HTTPS server."""

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._client = client or httpx.AsyncClient(follow_redirects=True, timeout=30.0)

    async def get_song(self, uri: str) -> AsyncIterator[bytes]:
        url = urljoin(self.base_url, quote(uri))
        request = self._client.build_request("GET", url)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise LibraryError(f"Cannot fetch {url}: {e}") from e

        if response.status_code == 404:
            await response.aclose()
            raise LibraryNotFound(f"Not found: {uri}")
        if response.is_error:
            await response.aclose()
            raise LibraryError(f"Cannot fetch {url}: HTTP {response.status_code}")

        return self._read(response)

    @staticmethod
    async def _read(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes(STREAM_BUFFER_SIZE):
                yield chunk
        finally:
            await response.aclose()

    async def close(self) -> None:
        await self._client.aclose()


def get_library(location: str) -> Library:
    """
    Build a library for a configured location.

    Raises:
        ValueError: The location uses an unsupported scheme.
    """
    if location.startswith(("http://", "https://")):
        return HttpLibrary(location)
    if "://" in location:
        scheme = location.split("://", 1)[0]
        raise ValueError(f"Unsupported library location scheme: {scheme}")
    return FileSystemLibrary(Path(location))
