"""Body Encoder - Turns a body variant into wire payload plus header changes.

Each body type has its own encoding rule and its own effect on Content-Type:

    none / GET / HEAD  -> no payload, headers untouched
    json, text         -> literal text, Content-Type forced (case-insensitive replace)
    file               -> raw blob, headers untouched, no multipart envelope;
                          the blob's media type is a default the transport
                          uses only when no Content-Type was given
    form-data          -> ordered multipart fields, Content-Type removed so the
                          transport can write its own boundary
    urlencoded         -> k=v&k=v, Content-Type rewritten only if one was set

The header rules are applied at send time against whatever headers the caller
ended up with, so hand-edits made after switching body type cannot break them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import assert_never
from urllib.parse import urlencode

from postlite.models import (
    BodySpec,
    JsonBody,
    MultipartBody,
    MultipartField,
    NoBody,
    PartKind,
    RawFileBody,
    TextBody,
    UrlEncodedBody,
    active_pairs,
    method_allows_body,
)

CONTENT_TYPE = "Content-Type"
JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain"
URLENCODED_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _is_content_type(name: str) -> bool:
    return name.lower() == "content-type"


def _without_content_type(headers: dict[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if not _is_content_type(k)}


@dataclass(frozen=True)
class HeaderPatch:
    """Content-Type adjustment required by a body encoding.

    Attributes:
        content_type: Value to set, replacing any existing Content-Type.
        only_if_present: Set content_type only when a Content-Type already exists.
        remove_content_type: Drop every Content-Type header.
    """

    content_type: str | None = None
    only_if_present: bool = False
    remove_content_type: bool = False

    def apply(self, headers: dict[str, str]) -> dict[str, str]:
        """Return a new header dict with the patch applied."""
        if self.remove_content_type:
            return _without_content_type(headers)
        if self.content_type is None:
            return dict(headers)
        if self.only_if_present and not any(_is_content_type(k) for k in headers):
            return dict(headers)
        patched = _without_content_type(headers)
        patched[CONTENT_TYPE] = self.content_type
        return patched


NO_PATCH = HeaderPatch()


@dataclass(frozen=True)
class EncodedBody:
    """Result of encoding one body variant.

    `default_content_type` is not a header change: it is only used when the
    final headers carry no Content-Type.
    """

    content: bytes | None = None
    multipart: list[MultipartField] | None = None
    header_patch: HeaderPatch = NO_PATCH
    default_content_type: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.content is None and self.multipart is None


EMPTY_BODY = EncodedBody()


def encode_body(body: BodySpec, method: str) -> EncodedBody:
    """Encode a body variant for the given method.

    The method wins over the body type: GET and HEAD never carry a payload,
    whatever body is configured.
    """
    if not method_allows_body(method):
        return EMPTY_BODY

    if isinstance(body, NoBody):
        return EMPTY_BODY
    if isinstance(body, JsonBody):
        return EncodedBody(
            content=body.content.encode("utf-8"),
            header_patch=HeaderPatch(content_type=JSON_CONTENT_TYPE),
        )
    if isinstance(body, TextBody):
        return EncodedBody(
            content=body.content.encode("utf-8"),
            header_patch=HeaderPatch(content_type=TEXT_CONTENT_TYPE),
        )
    if isinstance(body, RawFileBody):
        if body.file is None:
            return EMPTY_BODY
        return EncodedBody(content=body.file.content, default_content_type=body.file.content_type)
    if isinstance(body, MultipartBody):
        return EncodedBody(
            multipart=encode_multipart_fields(body),
            header_patch=HeaderPatch(remove_content_type=True),
        )
    if isinstance(body, UrlEncodedBody):
        return EncodedBody(
            content=encode_urlencoded(body).encode("ascii"),
            header_patch=HeaderPatch(content_type=URLENCODED_CONTENT_TYPE, only_if_present=True),
        )
    assert_never(body)


def encode_multipart_fields(body: MultipartBody) -> list[MultipartField]:
    """Ordered multipart fields; file parts without an attachment are skipped."""
    fields: list[MultipartField] = []
    for part in body.parts:
        if not part.is_active:
            continue
        if part.kind is PartKind.FILE:
            if part.file is not None:
                fields.append(MultipartField(name=part.key, file=part.file))
        else:
            fields.append(MultipartField(name=part.key, value=part.value))
    return fields


def encode_urlencoded(body: UrlEncodedBody) -> str:
    """Form-encode active entries in list order (spaces become '+')."""
    return urlencode(active_pairs(body.entries))
