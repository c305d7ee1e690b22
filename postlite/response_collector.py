"""Response Collector - Drains a transport response into ResponseSnapshots.

Two drain modes:

- Buffered: read everything, then publish one terminal snapshot. A body whose
  content-type contains application/json is parsed; invalid JSON silently
  stays as text.
- Streaming: publish a header-only snapshot first, then one snapshot per
  chunk with the accumulated text. Streamed bodies are never JSON-parsed.

elapsed_ms is always measured from send-start, not from when headers arrived.
"""

from __future__ import annotations

import codecs
import json
import logging
import time
from typing import Any, AsyncIterator, Callable

from postlite.models import ResponseSnapshot
from postlite.transport import TransportResponse

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"
OPAQUE_CONTENT_TYPE = "opaque/unknown"
OPAQUE_BODY = "Opaque response received (no-cors mode). No data available."
FAILURE_SUFFIX = "\n\nRequest Failed or Aborted."


def _utf8_size(text: str) -> int:
    return len(text.encode("utf-8", errors="replace"))


def _is_ok(status: int) -> bool:
    return 200 <= status < 300


def _status_text(response: TransportResponse) -> str:
    if response.status_text:
        return response.status_text
    return "OK" if _is_ok(response.status) else "Error"


def decode_body(text: str, content_type: str) -> Any:
    """Parse JSON when the content-type declares it, else return text unchanged."""
    if JSON_MEDIA_TYPE not in content_type:
        return text
    try:
        return json.loads(text)
    except ValueError:
        logger.debug("Body declared as JSON did not parse, keeping raw text")
        return text


class ResponseCollector:
    """Builds the snapshots of one execution.

    Usage:
        collector = ResponseCollector(execution_id, started=time.perf_counter())
        snapshot = await collector.buffered(response)
        # or
        async for snapshot in collector.stream(response):
            publish(snapshot)
    """

    def __init__(
        self,
        execution_id: str,
        started: float | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """Initialize the collector.

        Args:
            execution_id: Identity shared by every snapshot of this execution.
            started: Clock reading taken at send-start (defaults to now).
            clock: Monotonic clock in seconds.
        """
        self.execution_id = execution_id
        self._clock = clock
        self._started = clock() if started is None else started

    def elapsed_ms(self) -> float:
        return (self._clock() - self._started) * 1000

    def _base(self, response: TransportResponse) -> ResponseSnapshot:
        # Header names are case-insensitive; snapshots always carry lowercase keys.
        headers = {k.lower(): v for k, v in response.headers.items()}
        return ResponseSnapshot(
            execution_id=self.execution_id,
            status=response.status,
            status_text=_status_text(response),
            headers=headers,
            body="",
            size_bytes=0,
            elapsed_ms=self.elapsed_ms(),
            content_type=headers.get("content-type", ""),
            is_error=not _is_ok(response.status),
        )

    async def buffered(self, response: TransportResponse) -> ResponseSnapshot:
        """Read the whole body and return the single terminal snapshot."""
        raw = await response.aread()
        text = raw.decode("utf-8", errors="replace")
        snapshot = self._base(response)
        return snapshot.model_copy(
            update={
                "body": decode_body(text, snapshot.content_type),
                "size_bytes": _utf8_size(text),
                "elapsed_ms": self.elapsed_ms(),
            }
        )

    async def stream(self, response: TransportResponse) -> AsyncIterator[ResponseSnapshot]:
        """Yield a header-only snapshot, then one snapshot per received chunk."""
        snapshot = self._base(response)
        yield snapshot

        # Incremental decoding keeps multi-byte characters split across chunks intact.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        received: list[str] = []
        async for chunk in response.aiter_bytes():
            received.append(decoder.decode(chunk))
            text = "".join(received)
            snapshot = snapshot.model_copy(
                update={
                    "body": text,
                    "size_bytes": _utf8_size(text),
                    "elapsed_ms": self.elapsed_ms(),
                }
            )
            yield snapshot

        tail = decoder.decode(b"", final=True)
        if tail:
            text = "".join(received) + tail
            yield snapshot.model_copy(
                update={
                    "body": text,
                    "size_bytes": _utf8_size(text),
                    "elapsed_ms": self.elapsed_ms(),
                }
            )

    def opaque(self) -> ResponseSnapshot:
        """Snapshot for a response the transport would not let us inspect."""
        return ResponseSnapshot(
            execution_id=self.execution_id,
            status=0,
            status_text="Opaque",
            headers={},
            body=OPAQUE_BODY,
            size_bytes=0,
            elapsed_ms=self.elapsed_ms(),
            content_type=OPAQUE_CONTENT_TYPE,
            is_error=False,
        )

    def failure(self, error: Exception) -> ResponseSnapshot:
        """Error snapshot for a failed exchange."""
        message = str(error)
        return ResponseSnapshot(
            execution_id=self.execution_id,
            status=0,
            status_text="Error",
            headers={},
            body=message + FAILURE_SUFFIX,
            size_bytes=0,
            elapsed_ms=self.elapsed_ms(),
            content_type="text/plain",
            is_error=True,
            error_message=message,
        )
