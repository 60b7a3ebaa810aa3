"""
Handler adaptation for REST routes.

A REST handler is a plain coroutine taking the shared
:class:`~mpdsonic.web.handlers.HandlerContext` and, optionally, a pydantic
model of its query parameters::

    class StarParams(QueryParams):
        id: SongIDParam

    async def star(ctx: HandlerContext, params: StarParams) -> None:
        ...

    router.add_api_route("/star.view", handler(star, StarParams))

:func:`handler` turns it into a FastAPI endpoint that negotiates the reply
format, extracts parameters, calls the handler and serializes either the
returned payload or the mapped error into the envelope. :func:`raw_handler`
does the same for handlers producing their own response body (binary data,
audio streams); only their errors are wrapped in an envelope.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, TypeVar

from fastapi import Request, Response
from pydantic import BaseModel, ConfigDict, PlainValidator, ValidationError

from mpdsonic.core.ids import AlbumID, ArtistID, CoverArtID, IDError, OpaqueID, PlaylistID, SongID
from mpdsonic.web.errors import missing_parameter, to_api_error
from mpdsonic.web.reply import EMPTY, Reply, negotiate_format, serialize_reply

logger = logging.getLogger(__name__)

P = TypeVar("P", bound="QueryParams")
ID = TypeVar("ID", bound=OpaqueID)

Endpoint = Callable[[Request], Awaitable[Response]]


class QueryParams(BaseModel):
    """Base model for query parameters; unknown parameters are ignored."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="ignore", frozen=True)


def _id_decoder(cls: type[ID]) -> Callable[[Any], Any]:
    def decode(value: Any) -> Any:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"expected a {cls.kind} token")
        try:
            return cls.decode(value)
        except IDError as e:
            # Reported as a pydantic validation error
            raise ValueError(str(e)) from e

    return decode


ArtistIDParam = Annotated[ArtistID, PlainValidator(_id_decoder(ArtistID))]
AlbumIDParam = Annotated[AlbumID, PlainValidator(_id_decoder(AlbumID))]
SongIDParam = Annotated[SongID, PlainValidator(_id_decoder(SongID))]
PlaylistIDParam = Annotated[PlaylistID, PlainValidator(_id_decoder(PlaylistID))]
CoverArtIDParam = Annotated[CoverArtID, PlainValidator(_id_decoder(CoverArtID))]


def extract_params(request: Request, model: type[P]) -> P:
    """
    Validate the query string against ``model``.

    Raises:
        ApiError: A required parameter is missing or malformed (code 10).
    """
    try:
        return model.model_validate(dict(request.query_params))
    except ValidationError as e:
        logger.debug("Invalid parameters for %s: %s", request.url.path, e)
        raise missing_parameter() from e


async def _invoke(request: Request, func: Callable[..., Awaitable[Any]], params: type[QueryParams] | None) -> Any:
    ctx = request.app.state.context
    if params is None:
        return await func(ctx)
    return await func(ctx, extract_params(request, params))


def handler(
    func: Callable[..., Awaitable[Reply | None]],
    params: type[QueryParams] | None = None,
) -> Endpoint:
    """
    Adapt a handler returning a reply payload into an endpoint.

    Args:
        func: ``async func(ctx)`` or ``async func(ctx, params)``; returning
            None produces an empty successful envelope.
        params: Query parameter model, or None if the handler takes none.
    """

    async def endpoint(request: Request) -> Response:
        serialization = negotiate_format(request.query_params)
        try:
            reply = await _invoke(request, func, params)
        except Exception as e:
            return serialize_reply(to_api_error(e).reply(), serialization)
        return serialize_reply(reply if reply is not None else EMPTY, serialization)

    endpoint.__name__ = func.__name__
    return endpoint


def raw_handler(
    func: Callable[..., Awaitable[Response]],
    params: type[QueryParams] | None = None,
) -> Endpoint:
    """Adapt a handler producing its own response; errors still use the envelope."""

    async def endpoint(request: Request) -> Response:
        try:
            return await _invoke(request, func, params)
        except Exception as e:
            return serialize_reply(to_api_error(e).reply(), negotiate_format(request.query_params))

    endpoint.__name__ = func.__name__
    return endpoint
