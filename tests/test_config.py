"""
Tests for configuration, the command line and the server lifecycle.

Tests cover:
- Address parsing
- TOML, environment and CLI precedence
- Validation errors
- Starting and stopping the server against a fake backend
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from conftest import AUTH, FakeMpdServer
from mpdsonic.__main__ import apply_args, main, parse_args
from mpdsonic.config import (
    ENV_LISTENBRAINZ_TOKEN,
    ENV_PASSWORD,
    ENV_USERNAME,
    ConfigError,
    Settings,
    load_settings,
    parse_address,
)
from mpdsonic.core.library import FileSystemLibrary, HttpLibrary
from mpdsonic.server import MpdsonicServer

CONFIG = """
[server]
address = "0.0.0.0"
port = 4040

[auth]
username = "bob"
password = "from-file"

[mpd]
address = "music.local:6601"
library = "/srv/music"
pool_size = 4
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "mpdsonic.toml"
    path.write_text(CONFIG)
    return path


class TestParseAddress:
    """Tests for host[:port] parsing."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("localhost", ("localhost", 6600)),
            ("localhost:6601", ("localhost", 6601)),
            ("10.0.0.2:7000", ("10.0.0.2", 7000)),
            ("[::1]:6601", ("::1", 6601)),
            ("[::1]", ("::1", 6600)),
            ("::1", ("::1", 6600)),
        ],
    )
    def test_parse(self, value: str, expected: tuple[str, int]) -> None:
        assert parse_address(value) == expected

    def test_invalid_port(self) -> None:
        with pytest.raises(ConfigError):
            parse_address("localhost:http")


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self) -> None:
        settings = load_settings(env={})
        assert settings.address == "127.0.0.1"
        assert settings.port == 3000
        assert (settings.mpd_host, settings.mpd_port) == ("localhost", 6600)
        assert settings.ffmpeg == "ffmpeg"
        assert settings.listenbrainz_token is None

    def test_file(self, config_file: Path) -> None:
        settings = load_settings(config_file, env={})
        assert settings.address == "0.0.0.0"
        assert settings.port == 4040
        assert settings.username == "bob"
        assert settings.password == "from-file"
        assert (settings.mpd_host, settings.mpd_port) == ("music.local", 6601)
        assert settings.library == "/srv/music"
        assert settings.pool_size == 4

    def test_env_overrides_file(self, config_file: Path) -> None:
        env = {ENV_PASSWORD: "from-env", ENV_LISTENBRAINZ_TOKEN: "token"}
        settings = load_settings(config_file, env=env)
        assert settings.password == "from-env"
        assert settings.username == "bob"
        assert settings.listenbrainz_token == "token"

    def test_cli_overrides_env(self, config_file: Path) -> None:
        settings = load_settings(config_file, env={ENV_USERNAME: "alice"})
        args = parse_args(["--username", "carol", "--mpd-address", "[::1]:7000", "-p", "5000"])
        apply_args(settings, args)
        assert settings.username == "carol"
        assert (settings.mpd_host, settings.mpd_port) == ("::1", 7000)
        assert settings.port == 5000
        # Untouched by the command line
        assert settings.library == "/srv/music"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "nope.toml", env={})

    def test_malformed_file(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.toml"
        path.write_text("[server\n")
        with pytest.raises(ConfigError):
            load_settings(path, env={})

    def test_invalid_value(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.toml"
        path.write_text('[server]\nport = "http"\n')
        with pytest.raises(ConfigError):
            load_settings(path, env={})


class TestValidate:
    """Tests for Settings.validate."""

    def _settings(self, **overrides) -> Settings:
        values = {"username": "bob", "password": "secret", "library": "/srv/music"}
        values.update(overrides)
        return Settings(**values)

    def test_valid(self) -> None:
        self._settings().validate()
        self._settings(library="https://files.example.com/music/").validate()

    def test_empty_password_allowed(self) -> None:
        self._settings(password="").validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"username": None},
            {"username": ""},
            {"password": None},
            {"library": None},
            {"library": "nfs://server/music"},
            {"pool_size": 0},
        ],
    )
    def test_invalid(self, overrides: dict) -> None:
        with pytest.raises(ConfigError):
            self._settings(**overrides).validate()


class TestMain:
    """Tests for the entry point."""

    def test_configuration_error_exits_with_1(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(ENV_USERNAME, raising=False)
        monkeypatch.delenv(ENV_PASSWORD, raising=False)
        assert main(["--mpd-library", "/srv/music"]) == 1

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "mpdsonic" in capsys.readouterr().out


class TestServer:
    """Lifecycle tests for MpdsonicServer."""

    def test_library_kind(self, tmp_path: Path) -> None:
        local = MpdsonicServer(Settings(username="bob", password="x", library=str(tmp_path)))
        assert isinstance(local.library, FileSystemLibrary)
        remote = MpdsonicServer(Settings(username="bob", password="x", library="http://files/music"))
        assert isinstance(remote.library, HttpLibrary)

    async def test_start_and_stop(self, mpd: FakeMpdServer, tmp_path: Path) -> None:
        settings = Settings(
            username="bob",
            password="secret",
            library=str(tmp_path),
            mpd_host="127.0.0.1",
            mpd_port=mpd.port,
            port=0,
        )
        server = MpdsonicServer(settings)
        await server.start()
        try:
            assert server.is_running
            assert server.pool.idle == 1
            assert server.web_server is not None

            transport = httpx.ASGITransport(app=server.web_server.app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/rest/ping.view", params={**AUTH, "f": "json"})
            assert response.json()["subsonic-response"]["status"] == "ok"
        finally:
            await server.stop()

        assert not server.is_running
        assert server.pool.closed

    async def test_start_fails_without_backend(self, tmp_path: Path) -> None:
        settings = Settings(
            username="bob",
            password="secret",
            library=str(tmp_path),
            mpd_host="127.0.0.1",
            mpd_port=1,
            connect_timeout=1.0,
        )
        server = MpdsonicServer(settings)
        with pytest.raises(OSError):
            await server.run()
        assert not server.is_running
