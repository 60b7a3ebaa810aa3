"""
Authentication guard for the REST API.

Supports the legacy credential schemes clients still use:

- ``u`` + ``p``: plaintext password
- ``u`` + ``p=enc:<hex>``: hex-encoded password
- ``u`` + ``t`` + ``s``: token, ``t = md5(password + s)``

All secret comparisons are constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping

from fastapi import Request

from mpdsonic.config import ENCODED_PASSWORD_PREFIX, Credentials
from mpdsonic.web.errors import ApiError, authentication_failed, missing_parameter

logger = logging.getLogger(__name__)


def _equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def token_for(password: str, salt: str) -> str:
    """Compute the token a client sends for ``password`` and ``salt``."""
    return hashlib.md5((password + salt).encode("utf-8")).hexdigest()


def check_credentials(params: Mapping[str, str], credentials: Credentials) -> ApiError | None:
    """
    Validate request credentials.

    Returns:
        None if the request is authenticated, otherwise the error to report.
    """
    username = params.get("u", "")
    password = params.get("p")

    if password is not None and password.startswith(ENCODED_PASSWORD_PREFIX):
        password_ok = _equal(password, credentials.encoded_password)
    elif password is not None:
        password_ok = _equal(password, credentials.password)
    elif "t" in params and "s" in params:
        password_ok = _equal(params["t"], token_for(credentials.password, params["s"]))
    else:
        return missing_parameter()

    username_ok = _equal(username, credentials.username)
    if password_ok and username_ok:
        return None

    logger.info("Authentication failed for user %r", username)
    return authentication_failed()


async def require_auth(request: Request) -> None:
    """
    Router dependency guarding every REST route.

    Raises:
        ApiError: Authentication failed or credentials are missing. The
            application's ApiError handler renders it in the format requested
            by the query string.
    """
    error = check_credentials(request.query_params, request.app.state.credentials)
    if error is not None:
        raise error
