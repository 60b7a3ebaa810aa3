"""
Reply envelope and serialization.

Every REST reply is wrapped in the same envelope::

    <subsonic-response xmlns="http://subsonic.org/restapi" status="ok" version="1.16.1">
      <license valid="true" />
    </subsonic-response>

    {"subsonic-response": {"status": "ok", "version": "1.16.1", "license": {"valid": true}}}

Payloads are dataclasses deriving from :class:`Reply`. The class declares
the envelope field it nests under (``field_name``) and whether it is an
error. Scalar fields render as XML attributes; fields declared with
:func:`child` render as (repeated) child elements and as JSON lists.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, ClassVar

from fastapi import Response

from mpdsonic.core.ids import OpaqueID

VERSION = "1.16.1"
XML_NAMESPACE = "http://subsonic.org/restapi"
ENVELOPE = "subsonic-response"

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_JSONP = "text/javascript"
CONTENT_TYPE_XML = "text/xml"

_XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>\n'


def attr(name: str | None = None, **kwargs: Any) -> Any:
    """Declare a field rendered as an XML attribute (the default for scalars)."""
    return field(metadata={"xml": "attribute", "name": name}, **kwargs)


def child(name: str | None = None, **kwargs: Any) -> Any:
    """Declare a field rendered as child element(s)."""
    if "default" not in kwargs and "default_factory" not in kwargs:
        kwargs["default_factory"] = list
    return field(metadata={"xml": "child", "name": name}, **kwargs)


@dataclass
class Reply:
    """Base class for reply payloads."""

    field_name: ClassVar[str | None] = None
    is_error: ClassVar[bool] = False


@dataclass
class Empty(Reply):
    """Reply of handlers that return nothing."""


EMPTY = Empty()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _wire_name(f: Any) -> str:
    return f.metadata.get("name") or _camel(f.name)


def _is_child(f: Any) -> bool:
    return f.metadata.get("xml") == "child"


def _scalar(value: Any) -> Any:
    if isinstance(value, OpaqueID):
        return value.encode()
    if isinstance(value, Enum):
        return value.value
    return value


def _xml_text(value: Any) -> str:
    value = _scalar(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# =============================================================================
# JSON
# =============================================================================


def to_json_value(value: Any) -> Any:
    """Convert a payload (or any value inside it) to JSON-compatible data."""
    if is_dataclass(value) and not isinstance(value, type) and not isinstance(value, OpaqueID):
        return {
            _wire_name(f): to_json_value(getattr(value, f.name))
            for f in fields(value)
            if getattr(value, f.name) is not None
        }
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return _scalar(value)


def render_json(reply: Reply) -> str:
    body: dict[str, Any] = {
        "status": "failed" if reply.is_error else "ok",
        "version": VERSION,
    }
    if reply.field_name is not None:
        body[reply.field_name] = to_json_value(reply)
    return json.dumps({ENVELOPE: body}, indent=2, ensure_ascii=False)


# =============================================================================
# XML
# =============================================================================


def _fill_element(element: ET.Element, value: Any) -> None:
    for f in fields(value):
        item = getattr(value, f.name)
        if item is None:
            continue
        name = _wire_name(f)

        if not _is_child(f):
            element.set(name, _xml_text(item))
            continue

        items = item if isinstance(item, (list, tuple)) else [item]
        for entry in items:
            sub = ET.SubElement(element, name)
            if is_dataclass(entry) and not isinstance(entry, OpaqueID):
                _fill_element(sub, entry)
            else:
                sub.text = _xml_text(entry)


def render_xml(reply: Reply) -> str:
    root = ET.Element(
        ENVELOPE,
        {
            "xmlns": XML_NAMESPACE,
            "status": "failed" if reply.is_error else "ok",
            "version": VERSION,
        },
    )
    if reply.field_name is not None:
        payload = ET.SubElement(root, reply.field_name)
        _fill_element(payload, reply)

    ET.indent(root, space="  ")
    return _XML_DECLARATION + ET.tostring(root, encoding="unicode", short_empty_elements=True)


# =============================================================================
# Format negotiation
# =============================================================================


class ReplyFormat(Enum):
    XML = "xml"
    JSON = "json"
    JSONP = "jsonp"


@dataclass(frozen=True)
class Serialization:
    """Reply format requested by the client."""

    format: ReplyFormat = ReplyFormat.XML
    callback: str | None = None


def negotiate_format(params: Mapping[str, str]) -> Serialization:
    """
    Choose the reply format from the ``f`` and ``callback`` query parameters.

    ``f=json`` selects JSON and ``f=jsonp`` with a ``callback`` selects
    JSONP. Anything else, including an unknown ``f`` or ``jsonp`` without a
    callback, falls back to XML, which is what clients expect.
    """
    f = params.get("f")
    callback = params.get("callback")
    if f == "json":
        return Serialization(ReplyFormat.JSON)
    if f == "jsonp" and callback is not None:
        return Serialization(ReplyFormat.JSONP, callback)
    return Serialization(ReplyFormat.XML)


def serialize_reply(reply: Reply, serialization: Serialization) -> Response:
    """Wrap a payload in the envelope and render it in the negotiated format."""
    if serialization.format is ReplyFormat.JSON:
        return Response(content=render_json(reply), media_type=CONTENT_TYPE_JSON)
    if serialization.format is ReplyFormat.JSONP:
        body = f"{serialization.callback}({render_json(reply)})"
        return Response(content=body, media_type=CONTENT_TYPE_JSONP)
    return Response(content=render_xml(reply), media_type=CONTENT_TYPE_XML)
