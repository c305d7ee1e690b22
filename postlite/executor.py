"""Executor - Runs one HTTP exchange at a time and publishes its snapshots.

State machine per execution:

    SENDING -> (STREAMING | BUFFERING) -> SETTLED
    SENDING | STREAMING | BUFFERING -> CANCELLED

At most one execution is in flight. Starting a new send cancels the previous
one first; its partial snapshot is abandoned, never merged into the new one.

Cancelling a handle aborts the transport (the task awaiting it is cancelled),
stops the streaming read loop at its next suspension point, and suppresses
any further publication for that handle. Cancellation never produces an error
snapshot: whatever was published last stays as it is.

Failures are reported, not raised: a transport failure settles the execution
with an error snapshot (status 0, is_error=True). Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from postlite.auth_injector import CredentialSource, SigningError, compute
from postlite.models import (
    AppSettings,
    RequestSpec,
    ResponseSnapshot,
    SignedHeaderSet,
    WireRequest,
    new_id,
)
from postlite.request_builder import build_request
from postlite.response_collector import ResponseCollector
from postlite.transport import HttpxTransport, Transport, TransportError

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[ResponseSnapshot], None]
CompletionCallback = Callable[[RequestSpec, ResponseSnapshot], None]


class ExecutionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    BUFFERING = "buffering"
    SETTLED = "settled"
    CANCELLED = "cancelled"


_IN_FLIGHT = frozenset({ExecutionState.SENDING, ExecutionState.STREAMING, ExecutionState.BUFFERING})


class ExecutionHandle:
    """Cancellation token for one execution.

    Cancelling is idempotent: cancelling a settled or already-cancelled
    handle does nothing and returns False.
    """

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        self.state = ExecutionState.SENDING
        self.superseded = False
        self.last_snapshot: ResponseSnapshot | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_active(self) -> bool:
        return self.state in _IN_FLIGHT

    def transition(self, state: ExecutionState) -> None:
        """Move to state unless the execution already finished."""
        if self.is_active:
            self.state = state

    def cancel(self, superseded: bool = False) -> bool:
        if not self.is_active:
            return False
        self.state = ExecutionState.CANCELLED
        self.superseded = superseded
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True


@dataclass
class ExecutionResult:
    """Outcome of one send.

    Attributes:
        execution_id: Identity of the execution.
        state: SETTLED or CANCELLED.
        snapshot: Last published snapshot (None if cancelled before any).
        signed_headers: The signed header set injected for this send, if any.
        superseded: True if a newer send cancelled this one.
    """

    execution_id: str
    state: ExecutionState
    snapshot: ResponseSnapshot | None
    signed_headers: SignedHeaderSet | None = None
    superseded: bool = False


class Executor:
    """Sends RequestSpecs through a transport, one at a time.

    Usage:
        async with Executor(HttpxTransport(), settings) as executor:
            result = await executor.send(spec, on_snapshot=print)

    Cancel from another task with executor.cancel().
    """

    def __init__(
        self,
        transport: Transport | None = None,
        settings: AppSettings | None = None,
        credential_source: CredentialSource | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            transport: Transport to send through. Defaults to an HttpxTransport
                       using the settings timeout (closed by aclose()).
            settings: Global headers, auth and fetch options.
            credential_source: Supplies the auth value for signed headers.
            on_complete: Called with (spec, snapshot) when an exchange settles
                         with a response (not on transport failure or cancel).
        """
        self._settings = settings or AppSettings()
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport(timeout=self._settings.timeout)
        self._credential_source = credential_source
        self._on_complete = on_complete
        self._handle: ExecutionHandle | None = None
        self._last_signed: SignedHeaderSet | None = None

    async def __aenter__(self) -> "Executor":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel any in-flight execution and close an owned transport."""
        self.cancel()
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.aclose()

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def current_handle(self) -> ExecutionHandle | None:
        return self._handle

    @property
    def state(self) -> ExecutionState:
        if self._handle is None:
            return ExecutionState.IDLE
        return self._handle.state

    @property
    def last_signed_headers(self) -> SignedHeaderSet | None:
        """Signed headers injected by the most recent send, for display."""
        return self._last_signed

    def cancel(self) -> bool:
        """Cancel the in-flight execution. Returns False if there was none."""
        handle = self._handle
        if handle is None or not handle.cancel():
            return False
        logger.debug("Cancelled execution %s", handle.execution_id)
        return True

    def _sign(self) -> SignedHeaderSet | None:
        auth = self._settings.auth
        if not auth.is_active:
            return None
        try:
            signed = compute(auth.app_id, auth.secret_key, self._credential_source)
        except SigningError as e:
            logger.warning("Failed to generate signature, sending without auth headers: %s", e)
            return None
        logger.debug("Injected signed headers: %s", signed.as_headers())
        return signed

    async def send(
        self,
        spec: RequestSpec,
        on_snapshot: SnapshotCallback | None = None,
    ) -> ExecutionResult:
        """Execute spec and wait until it settles or is cancelled.

        Snapshots are passed to on_snapshot as they are published, in strictly
        increasing elapsed_ms order. If this coroutine is itself cancelled the
        execution is cancelled with it.
        """
        previous = self._handle
        if previous is not None and previous.cancel(superseded=True):
            logger.debug("Superseded execution %s", previous.execution_id)

        started = time.perf_counter()
        handle = ExecutionHandle(new_id())
        self._handle = handle

        signed = self._sign()
        self._last_signed = signed
        wire = build_request(
            spec,
            global_headers=self._settings.global_headers,
            auth_headers=signed.as_headers() if signed else None,
            settings=self._settings,
        )
        collector = ResponseCollector(handle.execution_id, started=started)

        task = asyncio.create_task(self._run(handle, spec, wire, collector, on_snapshot))
        handle._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            handle.cancel()
            raise

        if not task.cancelled():
            # Unexpected errors (bugs, not transport failures) propagate.
            task.result()

        return ExecutionResult(
            execution_id=handle.execution_id,
            state=handle.state,
            snapshot=handle.last_snapshot,
            signed_headers=signed,
            superseded=handle.superseded,
        )

    def _publish(
        self,
        handle: ExecutionHandle,
        snapshot: ResponseSnapshot,
        on_snapshot: SnapshotCallback | None,
    ) -> bool:
        if not handle.is_active or handle is not self._handle:
            return False
        handle.last_snapshot = snapshot
        if on_snapshot is not None:
            on_snapshot(snapshot)
        return True

    async def _run(
        self,
        handle: ExecutionHandle,
        spec: RequestSpec,
        wire: WireRequest,
        collector: ResponseCollector,
        on_snapshot: SnapshotCallback | None,
    ) -> None:
        try:
            response = await self._transport.open(wire)
        except TransportError as e:
            logger.info("Request to %s failed: %s", wire.url, e)
            self._publish(handle, collector.failure(e), on_snapshot)
            handle.transition(ExecutionState.SETTLED)
            return

        try:
            if response.opaque:
                self._publish(handle, collector.opaque(), on_snapshot)
            elif spec.stream:
                handle.transition(ExecutionState.STREAMING)
                async with aclosing(collector.stream(response)) as snapshots:
                    async for snapshot in snapshots:
                        if not self._publish(handle, snapshot, on_snapshot):
                            break
            else:
                handle.transition(ExecutionState.BUFFERING)
                self._publish(handle, await collector.buffered(response), on_snapshot)
        except TransportError as e:
            logger.info("Reading response from %s failed: %s", wire.url, e)
            self._publish(handle, collector.failure(e), on_snapshot)
            handle.transition(ExecutionState.SETTLED)
            return
        finally:
            await response.aclose()

        if not handle.is_active:
            return
        handle.transition(ExecutionState.SETTLED)
        if self._on_complete is not None and handle.last_snapshot is not None:
            self._on_complete(spec, handle.last_snapshot)
