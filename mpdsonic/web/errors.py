"""
REST API errors.

Clients only ever see the stable error codes below. Failures raised deeper
in the stack (backend ACKs, pool timeouts, I/O errors, bad IDs) are mapped
onto them once, at the dispatch boundary, by :func:`to_api_error`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mpdsonic.backend.pool import PoolError
from mpdsonic.core.ids import IDError
from mpdsonic.core.library import LibraryError, LibraryNotFound
from mpdsonic.core.listenbrainz import ListenBrainzError
from mpdsonic.protocol.mpd import MpdClientError, MpdError
from mpdsonic.web.reply import Reply

logger = logging.getLogger(__name__)

ERROR_GENERIC = 0
ERROR_MISSING_PARAMETER = 10
ERROR_AUTHENTICATION_FAILED = 40
ERROR_NOT_AUTHORIZED = 50
ERROR_NOT_FOUND = 70


@dataclass
class Error(Reply):
    """The ``error`` payload of a failed reply."""

    field_name = "error"
    is_error = True

    code: int
    message: str


class ApiError(Exception):
    """An error reported to the client as a failed envelope."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")

    def reply(self) -> Error:
        return Error(code=self.code, message=self.message)


def generic_error(message: str | None = None) -> ApiError:
    return ApiError(ERROR_GENERIC, message or "A generic error")


def missing_parameter() -> ApiError:
    return ApiError(ERROR_MISSING_PARAMETER, "Required parameter is missing")


def authentication_failed() -> ApiError:
    return ApiError(ERROR_AUTHENTICATION_FAILED, "Wrong username or password")


def not_authorized(message: str) -> ApiError:
    return ApiError(ERROR_NOT_AUTHORIZED, message)


def not_found() -> ApiError:
    return ApiError(ERROR_NOT_FOUND, "The requested data was not found")


def to_api_error(exc: Exception) -> ApiError:
    """Map any failure onto the client-visible error taxonomy."""
    if isinstance(exc, ApiError):
        return exc
    if isinstance(exc, MpdError):
        if exc.is_not_found:
            return not_found()
        return generic_error(exc.message)
    if isinstance(exc, LibraryNotFound):
        return not_found()
    if isinstance(exc, (MpdClientError, PoolError, LibraryError, IDError, ListenBrainzError, OSError)):
        logger.warning("Request failed: %s", exc)
        return generic_error(str(exc) or type(exc).__name__)

    logger.exception("Unexpected error while handling request: %s", exc)
    return generic_error(str(exc) or type(exc).__name__)
