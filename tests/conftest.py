"""
Shared fixtures for the mpdsonic tests.

Most tests talk to :class:`FakeMpdServer`, a tiny in-process server speaking
enough of the MPD protocol (greeting, commands, command lists, ACKs,
binary responses) to exercise the client, the pool and the REST handlers
without a real backend.
"""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Callable
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from mpdsonic.backend.pool import ConnectionPool
from mpdsonic.config import Credentials
from mpdsonic.core.library import FileSystemLibrary
from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.server import create_app

USERNAME = "bob"
PASSWORD = "secret"
AUTH = {"u": USERNAME, "p": PASSWORD}


class FakeAck(Exception):
    """Raised by a fake command handler to answer with an ACK line."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


Handler = Callable[[list[str]], "bytes | str"]


def song_lines(file: str, duration: float | None = None, **tags: str | list[str]) -> str:
    """Build the response lines describing one song."""
    lines = [f"file: {file}", "Last-Modified: 2022-07-11T10:19:57Z"]
    for name, value in tags.items():
        for v in value if isinstance(value, list) else [value]:
            lines.append(f"{name}: {v}")
    if duration is not None:
        lines.append(f"duration: {duration:.3f}")
        lines.append(f"Time: {int(duration)}")
    return "".join(line + "\n" for line in lines)


def binary_response(data: bytes, size: int | None = None, mime: str | None = None) -> bytes:
    """Build an ``albumart``/``readpicture`` style response body."""
    head = f"size: {len(data) if size is None else size}\n"
    if mime is not None:
        head += f"type: {mime}\n"
    head += f"binary: {len(data)}\n"
    return head.encode() + data + b"\n"


class FakeMpdServer:
    """
    Scriptable MPD server.

    Register responses in :attr:`handlers`, keyed by command name. A handler
    receives the unquoted arguments and returns the response body (without
    the trailing ``OK``), or raises :class:`FakeAck`.
    """

    def __init__(self, version: str = "0.23.5") -> None:
        self.version = version
        self.handlers: dict[str, Handler] = {
            "ping": lambda args: "",
            "binarylimit": lambda args: "",
        }
        self.commands: list[list[str]] = []
        self.connections = 0
        self.password: str | None = None
        self.port = 0
        self._server: asyncio.base_events.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    def on(self, name: str, response: bytes | str | Handler) -> None:
        """Answer ``name`` with a fixed response or a handler."""
        if callable(response):
            self.handlers[name] = response
        else:
            self.handlers[name] = lambda args: response

    def received(self, name: str) -> list[list[str]]:
        """Arguments of every received ``name`` command."""
        return [cmd[1:] for cmd in self.commands if cmd and cmd[0] == name]

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._serve, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for writer in list(self._writers):
            writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    def drop_connections(self) -> None:
        """Close every open client connection."""
        for writer in list(self._writers):
            writer.close()

    def _run(self, name: str, args: list[str], index: int) -> tuple[bytes, bytes | None]:
        if name == "password":
            if self.password is not None and args[:1] != [self.password]:
                return b"", f"ACK [3@{index}] {{password}} incorrect password\n".encode()
            return b"", None
        handler = self.handlers.get(name)
        if handler is None:
            return b"", f'ACK [5@{index}] {{}} unknown command "{name}"\n'.encode()
        try:
            body = handler(args)
        except FakeAck as e:
            return b"", f"ACK [{e.code}@{index}] {{{name}}} {e.message}\n".encode()
        return body.encode() if isinstance(body, str) else body, None

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        writer.write(f"OK MPD {self.version}\n".encode())

        batch: list[list[str]] | None = None
        list_ok = False
        try:
            while line := await reader.readline():
                cmd = shlex.split(line.decode().rstrip("\n"))
                self.commands.append(cmd)
                name, args = cmd[0], cmd[1:]

                if name == "close":
                    break
                if name in ("command_list_begin", "command_list_ok_begin"):
                    batch = []
                    list_ok = name == "command_list_ok_begin"
                    continue
                if name == "command_list_end" and batch is not None:
                    out = b""
                    for i, (n, *a) in enumerate(batch):
                        body, ack = self._run(n, a, i)
                        if ack is not None:
                            out += body + ack
                            break
                        out += body + (b"list_OK\n" if list_ok else b"")
                    else:
                        out += b"OK\n"
                    batch = None
                    writer.write(out)
                    await writer.drain()
                    continue
                if batch is not None:
                    batch.append(cmd)
                    continue

                body, ack = self._run(name, args, 0)
                writer.write(body + (ack if ack is not None else b"OK\n"))
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def mpd() -> FakeMpdServer:
    """A running fake MPD server."""
    server = FakeMpdServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def pool(mpd: FakeMpdServer) -> ConnectionPool:
    """A connection pool against the fake server."""
    pool = ConnectionPool("127.0.0.1", mpd.port, max_size=4, acquire_timeout=1.0, connect_timeout=1.0)
    yield pool
    await pool.close()


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    """A library directory with a couple of songs."""
    root = tmp_path / "music"
    (root / "Metal").mkdir(parents=True)
    (root / "Metal" / "song.flac").write_bytes(b"fLaC" + bytes(range(256)) * 10)
    return root


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(USERNAME, PASSWORD)


@pytest.fixture
def context(pool: ConnectionPool, music_dir: Path, credentials: Credentials) -> HandlerContext:
    """Handler context wired to the fake backend and a temporary library."""
    return HandlerContext(
        pool=pool,
        library=FileSystemLibrary(music_dir),
        credentials=credentials,
    )


@pytest.fixture
async def client(context: HandlerContext) -> AsyncClient:
    """Create an async HTTP client for testing."""
    app = create_app(context)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
