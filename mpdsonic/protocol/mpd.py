"""
MPD Protocol Client for mpdsonic.

This module implements the subset of the MPD control protocol that the
gateway needs. The protocol is line oriented and runs over TCP (port 6600
by default).

Protocol Format:
    The server greets with ``OK MPD <version>``. Each command is a single
    line of space separated, double-quoted arguments. A response is a list
    of ``key: value`` lines terminated by ``OK`` or by an error line:

        ACK [<code>@<index>] {<command>} <message>

    Binary payloads (album art) are announced with ``binary: <n>`` and
    followed by exactly ``n`` raw bytes and a newline.

    Command lists opened with ``command_list_ok_begin`` answer each command
    with its own response terminated by ``list_OK``, followed by a final
    ``OK``.

Reference: https://mpd.readthedocs.io/en/latest/protocol.html
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

GREETING_PREFIX = "OK MPD "

# ACK error codes
ACK_ERROR_NOT_LIST = 1
ACK_ERROR_ARG = 2
ACK_ERROR_PASSWORD = 3
ACK_ERROR_PERMISSION = 4
ACK_ERROR_UNKNOWN = 5
ACK_ERROR_NO_EXIST = 50

_ACK_RE = re.compile(r"^ACK \[(\d+)@(\d+)\] \{([^}]*)\} ?(.*)$")

# Keys of a song record that are not tags
_SONG_META_KEYS = frozenset(
    {"file", "Last-Modified", "added", "duration", "Time", "Format", "Pos", "Id", "Range", "Prio"}
)

Command = Sequence[str]


class MpdClientError(Exception):
    """Base exception for the MPD client."""


class ProtocolError(MpdClientError):
    """The backend sent something that is not valid MPD protocol, or went away."""


class MpdError(MpdClientError):
    """The backend rejected a command with an ACK line."""

    def __init__(self, code: int, command: str, message: str, index: int = 0) -> None:
        self.code = code
        self.command = command
        self.message = message
        self.index = index
        super().__init__(f"[{code}@{index}] {{{command}}} {message}")

    @classmethod
    def from_line(cls, line: str) -> MpdError:
        match = _ACK_RE.match(line)
        if match is None:
            return cls(ACK_ERROR_UNKNOWN, "", line)
        return cls(
            code=int(match.group(1)),
            command=match.group(3),
            message=match.group(4),
            index=int(match.group(2)),
        )

    @property
    def is_not_found(self) -> bool:
        return self.code == ACK_ERROR_NO_EXIST


@dataclass
class Frame:
    """A single command response: ordered key/value pairs plus optional binary data."""

    fields: list[tuple[str, str]] = field(default_factory=list)
    binary: bytes | None = None

    def get(self, key: str) -> str | None:
        for k, v in self.fields:
            if k == key:
                return v
        return None

    def values(self, key: str) -> list[str]:
        return [v for k, v in self.fields if k == key]

    def as_dict(self) -> dict[str, str]:
        """Collapse to a dict, keeping the first value of repeated keys."""
        result: dict[str, str] = {}
        for k, v in self.fields:
            result.setdefault(k, v)
        return result

    def records(self, *start_keys: str) -> list[Frame]:
        """Split into one frame per entity; a new entity starts at any of ``start_keys``."""
        records: list[Frame] = []
        current: Frame | None = None
        for k, v in self.fields:
            if k in start_keys:
                current = Frame()
                records.append(current)
            if current is not None:
                current.fields.append((k, v))
        return records


@dataclass
class Song:
    """A song record as reported by the backend."""

    file: str
    tags: dict[str, list[str]] = field(default_factory=dict)
    duration: float | None = None
    last_modified: str | None = None

    def tag(self, name: str) -> str | None:
        values = self.tags.get(name)
        return values[0] if values else None

    def tag_values(self, name: str) -> list[str]:
        return list(self.tags.get(name, []))

    @property
    def title(self) -> str | None:
        return self.tag("Title")

    @property
    def album(self) -> str | None:
        return self.tag("Album")

    @property
    def artists(self) -> list[str]:
        return self.tag_values("Artist")

    @property
    def album_artist(self) -> str:
        """Album artist, falling back to the joined track artists."""
        return ", ".join(self.tag_values("AlbumArtist") or self.artists)


@dataclass
class PlaylistInfo:
    """A stored playlist as listed by ``listplaylists``."""

    name: str
    last_modified: str | None = None


@dataclass
class AlbumArtChunk:
    """One chunk of a binary cover art transfer."""

    size: int
    data: bytes
    mime: str | None = None


def quote(arg: str) -> str:
    """Quote a command argument."""
    escaped = arg.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_command(name: str, *args: str) -> bytes:
    """Build a single command line."""
    parts = [name, *(quote(str(a)) for a in args)]
    return (" ".join(parts) + "\n").encode("utf-8")


def tag_filter(tag: str, value: str) -> str:
    """Build a filter expression matching ``tag`` exactly."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("'", "\\'")
    return f'({tag} == "{escaped}")'


def and_filter(*expressions: str) -> str:
    """Combine filter expressions with AND."""
    if len(expressions) == 1:
        return expressions[0]
    return "(" + " AND ".join(expressions) + ")"


def parse_song(frame: Frame) -> Song:
    """Build a Song from a single song record."""
    song = Song(file=frame.get("file") or "")
    for k, v in frame.fields:
        if k == "duration":
            try:
                song.duration = float(v)
            except ValueError:
                pass
        elif k == "Time" and song.duration is None:
            try:
                song.duration = float(v)
            except ValueError:
                pass
        elif k == "Last-Modified":
            song.last_modified = v
        elif k not in _SONG_META_KEYS:
            song.tags.setdefault(k, []).append(v)
    return song


def parse_songs(frame: Frame) -> list[Song]:
    """Parse every song record of a response, skipping directories and playlists."""
    return [parse_song(r) for r in frame.records("file", "directory", "playlist") if r.get("file")]


class MpdConnection:
    """
    One session with the backend.

    A connection is not safe for concurrent use; the pool hands each
    connection to one caller at a time. A command interrupted mid-response
    (cancellation, transport error) leaves the session unusable, which is
    reported through :attr:`is_closed`.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        version: str = "",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.version = version
        self._in_flight = False
        self._closed = False

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int,
        password: str | None = None,
        timeout: float = 10.0,
    ) -> MpdConnection:
        """
        Open a session, read the greeting and authenticate if needed.

        Raises:
            OSError: Connection failure.
            ProtocolError: The peer is not an MPD server.
            MpdError: The password was rejected.
        """
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
        try:
            greeting = await asyncio.wait_for(reader.readline(), timeout)
            text = greeting.decode("utf-8", errors="replace").rstrip("\n")
            if not text.startswith(GREETING_PREFIX):
                raise ProtocolError(f"Unexpected greeting from {host}:{port}: {text!r}")

            conn = cls(reader, writer, version=text[len(GREETING_PREFIX) :])
            if password:
                await conn.command("password", password)
        except BaseException:
            writer.close()
            raise

        logger.debug("Connected to MPD %s at %s:%d", conn.version, host, port)
        return conn

    @property
    def is_closed(self) -> bool:
        """True if the session can no longer be used."""
        return (
            self._closed
            or self._in_flight
            or self._writer.is_closing()
            or self._reader.at_eof()
        )

    async def command(self, name: str, *args: str) -> Frame:
        """Send one command and return its response."""
        self._in_flight = True
        self._writer.write(build_command(name, *args))
        await self._writer.drain()
        frame = await self._read_response()
        self._in_flight = False
        return frame

    async def command_list(self, commands: Sequence[Command]) -> list[Frame]:
        """
        Send several commands as one pipelined command list.

        Returns one frame per command, in submission order. If any command
        fails, the backend stops executing the list and the ACK is raised.
        """
        if not commands:
            return []

        self._in_flight = True
        payload = bytearray(b"command_list_ok_begin\n")
        for cmd in commands:
            payload += build_command(cmd[0], *cmd[1:])
        payload += b"command_list_end\n"
        self._writer.write(bytes(payload))
        await self._writer.drain()

        frames: list[Frame] = []
        current = Frame()
        while True:
            line = await self._readline()
            if line == "list_OK":
                frames.append(current)
                current = Frame()
                continue
            if line == "OK":
                break
            await self._consume_line(line, current)

        self._in_flight = False
        return frames

    async def close(self) -> None:
        """Close the session, saying goodbye if the transport is still healthy."""
        if self._closed:
            return
        self._closed = True
        if not self._in_flight and not self._writer.is_closing():
            try:
                self._writer.write(b"close\n")
                await self._writer.drain()
            except (OSError, RuntimeError):
                pass
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (OSError, RuntimeError):
            pass

    async def _readline(self) -> str:
        raw = await self._reader.readline()
        if not raw.endswith(b"\n"):
            raise ProtocolError("Connection closed by backend")
        return raw[:-1].decode("utf-8", errors="replace")

    async def _read_response(self) -> Frame:
        frame = Frame()
        while True:
            line = await self._readline()
            if line == "OK":
                return frame
            await self._consume_line(line, frame)

    async def _consume_line(self, line: str, frame: Frame) -> None:
        if line.startswith("ACK "):
            # The session is still usable after an ACK
            self._in_flight = False
            raise MpdError.from_line(line)

        key, sep, value = line.partition(": ")
        if not sep:
            raise ProtocolError(f"Malformed response line: {line!r}")

        if key == "binary":
            try:
                length = int(value)
            except ValueError as e:
                raise ProtocolError(f"Invalid binary length: {value!r}") from e
            try:
                data = await self._reader.readexactly(length)
                await self._reader.readexactly(1)
            except asyncio.IncompleteReadError as e:
                raise ProtocolError("Connection closed during binary transfer") from e
            frame.binary = (frame.binary or b"") + data

        frame.fields.append((key, value))

    # -------------------------------------------------------------------------
    # Typed commands
    # -------------------------------------------------------------------------

    async def ping(self) -> None:
        await self.command("ping")

    async def binarylimit(self, size: int) -> None:
        await self.command("binarylimit", str(size))

    async def albumart(self, uri: str, offset: int) -> AlbumArtChunk | None:
        """Fetch one chunk of cover art, or None if the backend has none."""
        frame = await self.command("albumart", uri, str(offset))
        size = frame.get("size")
        if size is None:
            return None
        try:
            total = int(size)
        except ValueError as e:
            raise ProtocolError(f"Invalid album art size: {size!r}") from e
        return AlbumArtChunk(size=total, data=frame.binary or b"", mime=frame.get("type"))

    async def find(self, expression: str) -> list[Song]:
        return parse_songs(await self.command("find", expression))

    async def find_file(self, uri: str) -> Song | None:
        songs = await self.find(tag_filter("file", uri))
        return songs[0] if songs else None

    async def listplaylists(self) -> list[PlaylistInfo]:
        frame = await self.command("listplaylists")
        return [
            PlaylistInfo(name=r.get("playlist") or "", last_modified=r.get("Last-Modified"))
            for r in frame.records("playlist")
        ]

    async def listplaylistinfo(self, name: str) -> list[Song]:
        return parse_songs(await self.command("listplaylistinfo", name))

    async def list_grouped(self, tag: str, group: str) -> dict[str, list[str]]:
        """
        List the values of ``tag`` grouped by ``group``.

        Returns an ordered mapping of group value to tag values.
        """
        frame = await self.command("list", tag, "group", group)
        tag_key = tag.lower()
        group_key = group.lower()
        result: dict[str, list[str]] = {}
        current: list[str] | None = None
        for k, v in frame.fields:
            if k.lower() == group_key:
                current = result.setdefault(v, [])
            elif k.lower() == tag_key:
                if current is None:
                    current = result.setdefault("", [])
                current.append(v)
        return result

    async def stats(self) -> dict[str, str]:
        return (await self.command("stats")).as_dict()

    async def status(self) -> dict[str, str]:
        return (await self.command("status")).as_dict()

    async def update(self) -> int:
        frame = await self.command("update")
        value = frame.get("updating_db")
        if value is None:
            raise ProtocolError("Missing updating_db in update response")
        try:
            return int(value)
        except ValueError as e:
            raise ProtocolError(f"Invalid updating_db value: {value!r}") from e

    async def sticker_set(self, uri: str, name: str, value: str) -> None:
        await self.command("sticker", "set", "song", uri, name, value)

    async def sticker_delete(self, uri: str, name: str) -> None:
        await self.command("sticker", "delete", "song", uri, name)
