"""Request Builder - Resolves a RequestSpec into a WireRequest.

Header precedence, lowest to highest:

    global headers -> signed auth headers -> per-request headers

Later sources overwrite identical keys (exact, case-sensitive match). The body
encoder's Content-Type patch runs after the merge, so body-type rules always
win over a manually set Content-Type.
"""

from __future__ import annotations

import json
import re
from urllib.parse import quote

from postlite.body_encoder import encode_body
from postlite.models import (
    AppSettings,
    BodyType,
    KeyValueEntry,
    PartKind,
    RequestSpec,
    ResponseSnapshot,
    WireRequest,
    active_pairs,
    method_allows_body,
)

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "-_.!~*'()"

_SCHEME_AND_HOST = re.compile(r"^https?://[^/]+")


def encode_component(value: str) -> str:
    """Percent-encode one query-string component."""
    return quote(value, safe=_URI_COMPONENT_SAFE)


def build_query_string(params: list[KeyValueEntry]) -> str:
    return "&".join(
        f"{encode_component(key)}={encode_component(value)}"
        for key, value in active_pairs(params)
    )


def build_url(url: str, params: list[KeyValueEntry]) -> str:
    """Append the params query string, replacing any query already on url.

    With no active params the URL is returned untouched.
    """
    query = build_query_string(params)
    if not query:
        return url
    return f"{url.split('?', 1)[0]}?{query}"


def merge_headers(
    global_headers: list[KeyValueEntry],
    auth_headers: dict[str, str] | None,
    request_headers: list[KeyValueEntry],
) -> dict[str, str]:
    headers: dict[str, str] = {}
    for key, value in active_pairs(global_headers):
        headers[key] = value
    if auth_headers:
        headers.update(auth_headers)
    for key, value in active_pairs(request_headers):
        headers[key] = value
    return headers


def build_request(
    spec: RequestSpec,
    global_headers: list[KeyValueEntry] | None = None,
    auth_headers: dict[str, str] | None = None,
    settings: AppSettings | None = None,
) -> WireRequest:
    """Build the wire request for one send.

    Args:
        spec: The request as edited by the caller.
        global_headers: Headers configured for every request.
        auth_headers: Signed headers for this send, if auth is active.
        settings: Supplies the fetch mode and credentials policy.
    """
    settings = settings or AppSettings()
    headers = merge_headers(global_headers or [], auth_headers, spec.headers)

    encoded = encode_body(spec.body, spec.method)
    headers = encoded.header_patch.apply(headers)

    # Request and response bytes may overlap when streaming or uploading a file.
    half_duplex = spec.has_body and (spec.stream or spec.body_type is BodyType.FILE)

    return WireRequest(
        method=spec.method,
        url=build_url(spec.url, spec.params),
        headers=headers,
        content=encoded.content,
        multipart=encoded.multipart,
        content_type=encoded.default_content_type,
        half_duplex=half_duplex,
        mode=settings.fetch_mode,
        credentials=settings.fetch_credentials,
    )


# =============================================================================
# Raw Previews
# =============================================================================


def _raw_body_summary(spec: RequestSpec) -> str:
    if not method_allows_body(spec.method):
        return "[No Body for GET/HEAD]"
    if spec.body_type in (BodyType.JSON, BodyType.TEXT):
        return spec.body_content
    if spec.body_type is BodyType.FILE:
        return f"[Binary File: {spec.file.name if spec.file else 'No file selected'}]"
    if spec.body_type is BodyType.FORM_DATA:
        lines = []
        for part in spec.form_data:
            if not part.is_active:
                continue
            if part.kind is PartKind.FILE:
                lines.append(f"{part.key}: {part.file.name if part.file else '(Empty File)'}")
            else:
                lines.append(f"{part.key}: {part.value}")
        return "\n".join(lines)
    if spec.body_type is BodyType.URLENCODED:
        return "&".join(f"{k}={v}" for k, v in active_pairs(spec.form_urlencoded))
    return ""


def render_raw_request(
    spec: RequestSpec,
    global_headers: list[KeyValueEntry] | None = None,
    auth_headers: dict[str, str] | None = None,
) -> str:
    """Human-readable HTTP/1.1 preview of a request.

    Lists per-request headers, then global headers, then signed headers, as
    entered. This is a preview, not the precedence-resolved wire form.
    """
    lines = [f"{k}: {v}" for k, v in active_pairs(spec.headers)]
    lines.extend(f"{k}: {v}" for k, v in active_pairs(global_headers or []))
    if auth_headers:
        lines.extend(f"{k}: {v}" for k, v in auth_headers.items())

    path = _SCHEME_AND_HOST.sub("", spec.url) or "/"
    url_parts = spec.url.split("/")
    host = url_parts[2] if len(url_parts) > 2 and url_parts[2] else "..."

    return (
        f"{spec.method} {path} HTTP/1.1\n"
        f"Host: {host}\n"
        + "\n".join(lines)
        + "\n\n"
        + _raw_body_summary(spec)
    )


def format_body(body: object) -> str:
    """Render a snapshot body as text, pretty-printing parsed JSON."""
    if isinstance(body, str):
        return body
    return json.dumps(body, indent=2, ensure_ascii=False)


def render_raw_response(snapshot: ResponseSnapshot) -> str:
    headers = "\n".join(f"{k}: {v}" for k, v in snapshot.headers.items())
    return (
        f"HTTP/1.1 {snapshot.status} {snapshot.status_text}\n"
        f"{headers}\n\n"
        f"{format_body(snapshot.body)}"
    )
