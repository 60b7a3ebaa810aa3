"""
User Command Handlers.

There is a single configured account, so the only user a client may ask
about is itself.
"""

from __future__ import annotations

from dataclasses import dataclass

from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.handlers.common import UserParams, ensure_same_user
from mpdsonic.web.reply import Reply, child


class GetUserParams(UserParams):
    username: str


@dataclass
class User(Reply):
    field_name = "user"

    username: str
    scrobbling_enabled: bool = False
    admin_role: bool = False
    settings_role: bool = False
    download_role: bool = True
    upload_role: bool = False
    playlist_role: bool = True
    cover_art_role: bool = True
    comment_role: bool = False
    podcast_role: bool = False
    stream_role: bool = True
    jukebox_role: bool = False
    share_role: bool = False
    video_conversion_role: bool = False
    folder: list[str] = child(default_factory=lambda: ["/"])


async def get_user(ctx: HandlerContext, params: GetUserParams) -> User:
    """
    Handle 'getUser'.

    Reports the roles of the configured account. Asking about any other
    user fails with code 50.
    """
    username = ensure_same_user(params)
    return User(username=username, scrobbling_enabled=ctx.listenbrainz is not None)
