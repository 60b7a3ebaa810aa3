"""
Configuration management for mpdsonic.

Settings come from, in increasing order of precedence:
built-in defaults, an optional TOML file, environment variables and
command line flags (applied by ``mpdsonic.__main__``).

Example ``mpdsonic.toml``::

    [server]
    address = "0.0.0.0"
    port = 3000

    [auth]
    username = "bob"
    password = "secret"

    [mpd]
    address = "localhost:6600"
    library = "/srv/music"
    pool_size = 16

    [listenbrainz]
    token = "..."
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Prefix marking a hex-encoded password in the "p" parameter
ENCODED_PASSWORD_PREFIX = "enc:"

ENV_USERNAME = "MPDSONIC_USERNAME"
ENV_PASSWORD = "MPDSONIC_PASSWORD"
ENV_MPD_PASSWORD = "MPDSONIC_MPD_PASSWORD"
ENV_LISTENBRAINZ_TOKEN = "MPDSONIC_LISTENBRAINZ_TOKEN"

DEFAULT_MPD_PORT = 6600

# Library locations other than local paths
SUPPORTED_LIBRARY_SCHEMES = ("http", "https")


class ConfigError(Exception):
    """Invalid or incomplete configuration."""


@dataclass(frozen=True)
class Credentials:
    """The single account allowed to use the gateway."""

    username: str
    password: str
    encoded_password: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        encoded = ENCODED_PASSWORD_PREFIX + self.password.encode("utf-8").hex()
        object.__setattr__(self, "encoded_password", encoded)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass
class Settings:
    """Runtime settings."""

    username: str | None = None
    password: str | None = None

    address: str = "127.0.0.1"
    port: int = 3000

    mpd_host: str = "localhost"
    mpd_port: int = DEFAULT_MPD_PORT
    mpd_password: str | None = None
    library: str | None = None

    pool_size: int = 16
    pool_timeout: float = 30.0
    connect_timeout: float = 10.0

    ffmpeg: str = "ffmpeg"
    listenbrainz_token: str | None = None

    def credentials(self) -> Credentials:
        if not self.username or self.password is None:
            raise ConfigError(
                f"A username and password are required (--username/--password or "
                f"{ENV_USERNAME}/{ENV_PASSWORD})"
            )
        return Credentials(self.username, self.password)

    def validate(self) -> None:
        """
        Check that everything needed to start is present.

        Raises:
            ConfigError: A required setting is missing or invalid.
        """
        self.credentials()
        if not self.library:
            raise ConfigError("The location of the MPD library is required (--mpd-library)")
        scheme, sep, _ = self.library.partition("://")
        if sep and scheme not in SUPPORTED_LIBRARY_SCHEMES:
            raise ConfigError(f"Unsupported library location scheme: {scheme}")
        if self.pool_size < 1:
            raise ConfigError("pool_size must be at least 1")


def parse_address(value: str, default_port: int = DEFAULT_MPD_PORT) -> tuple[str, int]:
    """
    Parse ``host[:port]``; IPv6 literals must be bracketed when a port is given.

    Raises:
        ConfigError: The port is not a number.
    """
    value = value.strip()
    if value.startswith("["):
        host, _, rest = value[1:].partition("]")
        port_str = rest[1:] if rest.startswith(":") else ""
    elif value.count(":") == 1:
        host, _, port_str = value.partition(":")
    else:
        host, port_str = value, ""

    if not port_str:
        return host, default_port
    try:
        return host, int(port_str)
    except ValueError:
        raise ConfigError(f"Invalid port in address {value!r}") from None


def _apply_toml(settings: Settings, data: Mapping[str, Any]) -> None:
    server = data.get("server", {})
    auth = data.get("auth", {})
    mpd = data.get("mpd", {})
    listenbrainz = data.get("listenbrainz", {})

    settings.address = str(server.get("address", settings.address))
    settings.port = int(server.get("port", settings.port))

    settings.username = auth.get("username", settings.username)
    settings.password = auth.get("password", settings.password)

    if "address" in mpd:
        settings.mpd_host, settings.mpd_port = parse_address(str(mpd["address"]))
    settings.mpd_password = mpd.get("password", settings.mpd_password)
    settings.library = mpd.get("library", settings.library)
    settings.pool_size = int(mpd.get("pool_size", settings.pool_size))
    settings.pool_timeout = float(mpd.get("pool_timeout", settings.pool_timeout))
    settings.connect_timeout = float(mpd.get("connect_timeout", settings.connect_timeout))
    settings.ffmpeg = str(mpd.get("ffmpeg", settings.ffmpeg))

    settings.listenbrainz_token = listenbrainz.get("token", settings.listenbrainz_token)


def _apply_env(settings: Settings, env: Mapping[str, str]) -> None:
    if ENV_USERNAME in env:
        settings.username = env[ENV_USERNAME]
    if ENV_PASSWORD in env:
        settings.password = env[ENV_PASSWORD]
    if ENV_MPD_PASSWORD in env:
        settings.mpd_password = env[ENV_MPD_PASSWORD]
    if ENV_LISTENBRAINZ_TOKEN in env:
        settings.listenbrainz_token = env[ENV_LISTENBRAINZ_TOKEN]


def load_settings(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load settings from an optional TOML file and the environment.

    Args:
        config_path: Path to a TOML config file, or None for defaults only.
        env: Environment mapping (defaults to os.environ).

    Returns:
        Settings instance; call validate() once CLI overrides are applied.

    Raises:
        ConfigError: The file cannot be read or parsed.
    """
    settings = Settings()

    if config_path is not None:
        logger.debug("Loading config from %s", config_path)
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Cannot load config file {config_path}: {e}") from e
        try:
            _apply_toml(settings, data)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in {config_path}: {e}") from e

    _apply_env(settings, os.environ if env is None else env)
    return settings


__all__ = [
    "ConfigError",
    "Credentials",
    "ENCODED_PASSWORD_PREFIX",
    "Settings",
    "load_settings",
    "parse_address",
]
