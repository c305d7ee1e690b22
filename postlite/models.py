"""Internal data models for postlite.

All models use Pydantic v2. The request side (RequestSpec and its body
variants) is what callers edit; the response side (ResponseSnapshot) is what
the executor publishes while an exchange is in flight.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

# Methods whose body is never sent, whatever the body type says.
BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def new_id() -> str:
    """Opaque identifier for entries, requests and executions."""
    return uuid.uuid4().hex


def method_allows_body(method: str) -> bool:
    return method.upper() not in BODYLESS_METHODS


# =============================================================================
# Key-Value Models
# =============================================================================


class KeyValueEntry(BaseModel):
    """One row of a params/headers/url-encoded list.

    Identity is `id`, not content. Only enabled rows with a non-empty key
    take part in encoding.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id, description="Stable row identifier")
    key: str = Field(default="", description="Name")
    value: str = Field(default="", description="Value")
    enabled: bool = Field(default=True, description="Whether the row participates")

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.key)


def active_pairs(entries: list[KeyValueEntry]) -> list[tuple[str, str]]:
    """Return (key, value) for active entries, preserving list order."""
    return [(entry.key, entry.value) for entry in entries if entry.is_active]


class FileBlob(BaseModel):
    """An attached binary file. Never persisted to history."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="File name sent with the attachment")
    content: bytes = Field(description="Raw file bytes")
    content_type: str | None = Field(default=None, description="Media type, if known")


class PartKind(str, Enum):
    """Kind of a multipart form part."""

    TEXT = "text"
    FILE = "file"


class FormPart(BaseModel):
    """One row of a multipart form."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id, description="Stable row identifier")
    key: str = Field(default="", description="Field name")
    value: str = Field(default="", description="Text value (kind=text)")
    kind: PartKind = Field(default=PartKind.TEXT, description="text or file")
    file: FileBlob | None = Field(default=None, description="Attachment (kind=file)")
    enabled: bool = Field(default=True, description="Whether the row participates")

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.key)


# =============================================================================
# Body Variants
# =============================================================================


class BodyType(str, Enum):
    """Closed set of body encodings. Values match the persisted names."""

    NONE = "none"
    JSON = "json"
    TEXT = "text"
    FILE = "file"
    FORM_DATA = "form-data"
    URLENCODED = "x-www-form-urlencoded"


class NoBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["none"] = "none"


class JsonBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["json"] = "json"
    content: str = Field(default="", description="JSON text, sent verbatim")


class TextBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["text"] = "text"
    content: str = Field(default="", description="Plain text, sent verbatim")


class RawFileBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["file"] = "file"
    file: FileBlob | None = Field(default=None, description="Blob sent as the whole body")


class MultipartBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["form-data"] = "form-data"
    parts: list[FormPart] = Field(default_factory=list, description="Ordered form parts")


class UrlEncodedBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["x-www-form-urlencoded"] = "x-www-form-urlencoded"
    entries: list[KeyValueEntry] = Field(default_factory=list, description="Ordered fields")


BodySpec = Annotated[
    Union[NoBody, JsonBody, TextBody, RawFileBody, MultipartBody, UrlEncodedBody],
    Field(discriminator="type"),
]


# =============================================================================
# Request Models
# =============================================================================


def _blank_entries() -> list[KeyValueEntry]:
    return [KeyValueEntry()]


def _blank_parts() -> list[FormPart]:
    return [FormPart()]


class RequestSpec(BaseModel):
    """Declarative description of one HTTP request.

    Every body variant keeps its own data. `body_type` only selects which one
    is sent, so switching back and forth never loses what was typed.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id, description="Opaque identity for history")
    method: str = Field(default="GET", description="HTTP method")
    url: str = Field(default="", description="Target URL, may carry a query string")
    params: list[KeyValueEntry] = Field(default_factory=_blank_entries, description="Query params")
    headers: list[KeyValueEntry] = Field(default_factory=_blank_entries, description="Request headers")
    body_type: BodyType = Field(default=BodyType.NONE, description="Active body variant")
    body_content: str = Field(default="", description="Text for json/text bodies")
    file: FileBlob | None = Field(default=None, description="Blob for the raw file body")
    form_data: list[FormPart] = Field(default_factory=_blank_parts, description="Multipart parts")
    form_urlencoded: list[KeyValueEntry] = Field(
        default_factory=_blank_entries, description="x-www-form-urlencoded fields"
    )
    stream: bool = Field(default=False, description="Publish the response incrementally")

    @field_validator("params", "headers", "form_urlencoded", mode="before")
    @classmethod
    def default_null_entries(cls, v: Any) -> Any:
        """Records from older versions may hold null lists."""
        return _blank_entries() if v is None else v

    @field_validator("form_data", mode="before")
    @classmethod
    def default_null_parts(cls, v: Any) -> Any:
        return _blank_parts() if v is None else v

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"unsupported method '{v}', expected one of {', '.join(HTTP_METHODS)}")
        return method

    @property
    def body(self) -> BodySpec:
        """The body variant currently selected by body_type."""
        if self.body_type is BodyType.JSON:
            return JsonBody(content=self.body_content)
        if self.body_type is BodyType.TEXT:
            return TextBody(content=self.body_content)
        if self.body_type is BodyType.FILE:
            return RawFileBody(file=self.file)
        if self.body_type is BodyType.FORM_DATA:
            return MultipartBody(parts=list(self.form_data))
        if self.body_type is BodyType.URLENCODED:
            return UrlEncodedBody(entries=list(self.form_urlencoded))
        return NoBody()

    @property
    def has_body(self) -> bool:
        return method_allows_body(self.method) and self.body_type is not BodyType.NONE

    def without_blobs(self) -> RequestSpec:
        """Copy with every file attachment dropped (raw file and multipart)."""
        parts = [part.model_copy(update={"file": None}) for part in self.form_data]
        return self.model_copy(update={"file": None, "form_data": parts})


class MultipartField(BaseModel):
    """One encoded multipart field; exactly one of value/file is set."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="Field name")
    value: str | None = Field(default=None, description="Text value")
    file: FileBlob | None = Field(default=None, description="File attachment")


FetchMode = Literal["cors", "no-cors", "same-origin"]
CredentialsPolicy = Literal["omit", "same-origin", "include"]


class WireRequest(BaseModel):
    """A fully resolved request, ready to hand to a transport.

    `headers` is in precedence-resolved order. At most one of `content` and
    `multipart` is set; multipart boundaries are left to the transport.
    """

    model_config = ConfigDict(extra="forbid")

    method: str = Field(description="HTTP method")
    url: str = Field(description="URL including the built query string")
    headers: dict[str, str] = Field(default_factory=dict, description="Resolved headers")
    content: bytes | None = Field(default=None, description="Raw body bytes")
    multipart: list[MultipartField] | None = Field(default=None, description="Multipart fields")
    content_type: str | None = Field(
        default=None, description="Media type of `content`, used when no Content-Type header is set"
    )
    half_duplex: bool = Field(default=False, description="Body and response may overlap in flight")
    mode: FetchMode = Field(default="cors", description="Cross-origin mode hint")
    credentials: CredentialsPolicy = Field(default="omit", description="Cookie policy")


# =============================================================================
# Auth Models
# =============================================================================


class AuthConfig(BaseModel):
    """Dynamic signed-header authentication settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False, description="Inject signed headers on every send")
    app_id: str = Field(default="", description="Application id (x-appid)")
    secret_key: str = Field(default="", description="Shared HMAC secret")

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.app_id) and bool(self.secret_key)


class SignedHeaderSet(BaseModel):
    """Headers produced by one signing pass. Recomputed on every send."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    app_id: str
    timestamp: str
    nonce: str
    auth_type: str
    auth_value: str
    signature: str

    def as_headers(self) -> dict[str, str]:
        return {
            "x-appid": self.app_id,
            "x-request-ts": self.timestamp,
            "x-nonce": self.nonce,
            "x-auth-type": self.auth_type,
            "x-auth-value": self.auth_value,
            "x-sign": self.signature,
        }


# =============================================================================
# Response Models
# =============================================================================


class ResponseSnapshot(BaseModel):
    """The observable state of one execution at one instant.

    While streaming, the executor publishes a sequence of these sharing the
    same execution_id, with growing body/size_bytes/elapsed_ms. The last one
    published is authoritative.
    """

    model_config = ConfigDict(extra="forbid")

    execution_id: str = Field(description="Identity shared by all snapshots of one execution")
    status: int = Field(description="HTTP status, 0 for opaque or failed exchanges")
    status_text: str = Field(default="", description="Reason phrase")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers, lowercase keys")
    body: Any = Field(default="", description="Text, or parsed JSON for buffered JSON responses")
    size_bytes: int = Field(default=0, description="UTF-8 size of the decoded body")
    elapsed_ms: float = Field(default=0.0, description="Time since send started")
    content_type: str = Field(default="", description="Response content-type")
    is_error: bool = Field(default=False, description="Non-2xx status or transport failure")
    error_message: str | None = Field(default=None, description="Failure description")

    @property
    def size_display(self) -> str:
        return f"{self.size_bytes / 1024:.2f} KB"


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class AppSettings(BaseModel):
    """Top-level settings file structure."""

    model_config = ConfigDict(extra="forbid")

    fetch_mode: FetchMode = Field(default="cors", description="Cross-origin mode hint")
    fetch_credentials: CredentialsPolicy = Field(default="omit", description="Cookie policy")
    global_headers: list[KeyValueEntry] = Field(
        default_factory=_blank_entries, description="Headers sent with every request"
    )
    auth: AuthConfig = Field(default_factory=AuthConfig, description="Signed-header auth")
    timeout: float = Field(default=30.0, gt=0, description="Transport timeout in seconds")
    history_limit: int = Field(default=50, gt=0, description="Maximum history entries kept")


class HistoryItem(RequestSpec):
    """A sent request as stored in history (file attachments stripped)."""

    timestamp: int = Field(description="Milliseconds since the epoch when recorded")
    pinned: bool = Field(default=False, description="Pinned items sort first")
