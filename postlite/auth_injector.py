"""Auth Injector - Computes the signed x-* header set sent with each request.

Signing scheme (single round trip, no token exchange):

    timestamp = current time in milliseconds, decimal
    nonce     = last 6 characters of timestamp
    auth_type = "1"
    auth_value = credential looked up by name (empty if absent)
    signature = hex(HMAC-SHA256(secret_key, app_id + nonce + timestamp + auth_value))

auth_type is not part of the signed string. Results depend on the clock, so
they are computed fresh for every send and never cached.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Mapping, Protocol

import httpx

from postlite.models import SignedHeaderSet

AUTH_TYPE = "1"
AUTH_VALUE_COOKIE = "CAS_SSO_COOKIE"
NONCE_LENGTH = 6


class SigningError(Exception):
    """Raised when the signed header set cannot be computed."""


class CredentialSource(Protocol):
    """Synchronous lookup of a named credential. Returns "" when missing."""

    def get(self, name: str) -> str: ...


class StaticCredentialSource:
    """Credential source backed by a plain mapping."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values = dict(values or {})

    def get(self, name: str) -> str:
        return self._values.get(name, "")


class CookieJarCredentialSource:
    """Credential source reading cookies from an httpx cookie jar."""

    def __init__(self, cookies: httpx.Cookies) -> None:
        self._cookies = cookies

    def get(self, name: str) -> str:
        return self._cookies.get(name) or ""


def current_timestamp_ms() -> int:
    return time.time_ns() // 1_000_000


def build_signing_string(app_id: str, nonce: str, timestamp: str, auth_value: str) -> str:
    return app_id + nonce + timestamp + auth_value


def sign(secret_key: str, message: str) -> str:
    """HMAC-SHA256 of message keyed by secret_key, as lowercase hex."""
    try:
        return hmac.new(
            secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
        ).hexdigest()
    except (TypeError, ValueError) as e:
        raise SigningError(f"Failed to compute signature: {e}") from e


def compute(
    app_id: str,
    secret_key: str,
    auth_value_source: CredentialSource | None = None,
    now_ms: int | None = None,
) -> SignedHeaderSet:
    """Compute a fresh signed header set.

    Args:
        app_id: Application id, sent as x-appid and signed.
        secret_key: Shared HMAC key.
        auth_value_source: Where to read the auth value from. None means "".
        now_ms: Override the clock (milliseconds since the epoch).

    Raises:
        SigningError: If app_id or secret_key is missing, or HMAC fails.
    """
    if not app_id or not secret_key:
        raise SigningError("app_id and secret_key are required for signing")

    timestamp = str(current_timestamp_ms() if now_ms is None else now_ms)
    nonce = timestamp[-NONCE_LENGTH:]
    auth_value = (auth_value_source.get(AUTH_VALUE_COOKIE) or "") if auth_value_source else ""

    signature = sign(secret_key, build_signing_string(app_id, nonce, timestamp, auth_value))

    return SignedHeaderSet(
        app_id=app_id,
        timestamp=timestamp,
        nonce=nonce,
        auth_type=AUTH_TYPE,
        auth_value=auth_value,
        signature=signature,
    )


def preview_headers(app_id: str, auth_value_source: CredentialSource | None = None) -> dict[str, str]:
    """Signed header names with display values, for showing a request before it is sent.

    Clock-dependent values are placeholders; the real set is computed at send time.
    """
    auth_value = (auth_value_source.get(AUTH_VALUE_COOKIE) or "") if auth_value_source else ""
    return {
        "x-appid": app_id,
        "x-request-ts": "(current timestamp)",
        "x-nonce": "(auto-generated)",
        "x-auth-type": AUTH_TYPE,
        "x-auth-value": auth_value or "(missing cookie)",
        "x-sign": "(HMAC-SHA256 signature)",
    }
