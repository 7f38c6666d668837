"""Transport base class: JSON-RPC correlation shared by every transport.

Subclasses only move frames (``_open``, ``_write``, ``_shutdown``) and feed
inbound frames to ``_handle_frame``. Everything above that line is
identical across transports:

- request ids come from a per-transport counter and are never reused
- each request registers a PendingCall; responses resolve it by id only,
  so providers may answer out of order
- a call that times out (or is cancelled) is abandoned; a late response
  carrying its id is discarded and logged
- when the channel closes every pending call fails with
  OwnerUnavailableError
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any, ClassVar

import structlog

from switchboard.enums import TransportKind
from switchboard.mcp import messages
from switchboard.mcp.exceptions import (
    CallTimeoutError,
    ConnectError,
    MCPProviderError,
    OwnerUnavailableError,
    ProtocolError,
    ProviderError,
)

log = structlog.get_logger(__name__)

MessageHandler = Callable[[dict[str, Any]], Awaitable[None] | None]

# Ids of abandoned calls remembered for late-response logging.
_ABANDONED_LIMIT = 1024


@dataclass(slots=True)
class PendingCall:
    """An outstanding request awaiting its correlated response."""

    request_id: int
    method: str
    future: asyncio.Future[dict[str, Any]]
    deadline: float


class Transport(ABC):
    """Duplex JSON-RPC channel to one provider.

    Attributes:
        name: Provider name (used in errors and logs).
        closed: Set once the channel is gone, for liveness supervision.
        close_error: Why the channel closed; None for a requested close.
    """

    kind: ClassVar[TransportKind]

    def __init__(self, name: str) -> None:
        self.name = name
        self.closed = asyncio.Event()
        self.close_error: MCPProviderError | None = None
        self.protocol_version: str | None = None
        self._next_id = 0
        self._pending: dict[int, PendingCall] = {}
        self._abandoned: dict[int, str] = {}
        self._handlers: list[MessageHandler] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._connected = False
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._connected and not self.closed.is_set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # === Public contract ===

    async def connect(self) -> None:
        """Open the channel.

        Raises:
            ConnectError: If the process cannot be spawned or the endpoint
                cannot be reached.
        """
        if self._connected:
            return
        if self._closing:
            raise ConnectError(self.name, "Transport already closed")
        try:
            await self._open()
        except BaseException:
            await self._shutdown()
            raise
        self._connected = True
        log.debug("transport_connected", provider=self.name, transport=str(self.kind))

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float = 30.0,
    ) -> dict[str, Any]:
        """Send a request and wait for its correlated result.

        Args:
            method: JSON-RPC method name.
            params: Method parameters.
            timeout: Seconds to wait for the response.

        Returns:
            The ``result`` member of the response.

        Raises:
            CallTimeoutError: No response within ``timeout``.
            ProviderError: The provider answered with a JSON-RPC error.
            OwnerUnavailableError: The channel is not open or closed mid-call.
        """
        if not self.is_connected:
            raise OwnerUnavailableError(self.name, "Transport is not connected")

        self._next_id += 1
        request_id = self._next_id
        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        self._pending[request_id] = PendingCall(request_id, method, future, loop.time() + timeout)

        try:
            return await asyncio.wait_for(
                self._exchange(messages.build_request(request_id, method, params), future),
                timeout=timeout,
            )
        except TimeoutError:
            raise CallTimeoutError(
                self.name,
                f"Request {method} timed out after {timeout}s",
                request_id=request_id,
            ) from None
        finally:
            self._pending.pop(request_id, None)
            if not future.done():
                future.cancel()
            if future.cancelled():
                self._abandon(request_id, method)
            else:
                # A failed write may leave _mark_closed's error unretrieved.
                future.exception()

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification (no response expected)."""
        if not self.is_connected:
            raise OwnerUnavailableError(self.name, "Transport is not connected")
        try:
            await self._write(messages.build_notification(method, params))
        except ConnectError as e:
            raise OwnerUnavailableError(self.name, f"Send failed: {e}") from e

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler for unsolicited server notifications."""
        self._handlers.append(handler)

    async def on_initialized(self) -> None:
        """Hook run after the MCP handshake completes."""

    async def close(self) -> None:
        """Release every resource held by the transport. Idempotent."""
        if self._closing:
            return
        self._closing = True
        self._mark_closed(None)
        await self._shutdown()
        self._connected = False
        log.debug("transport_closed", provider=self.name, transport=str(self.kind))

    # === Subclass interface ===

    @abstractmethod
    async def _open(self) -> None:
        """Establish the underlying channel; raise ConnectError on failure."""

    @abstractmethod
    async def _write(self, message: dict[str, Any]) -> None:
        """Deliver one outbound message; raise ConnectError on failure."""

    @abstractmethod
    async def _shutdown(self) -> None:
        """Release the underlying channel. Must not raise."""

    # === Shared machinery ===

    async def _exchange(self, message: dict[str, Any], future: asyncio.Future[dict[str, Any]]) -> dict[str, Any]:
        try:
            await self._write(message)
        except ConnectError as e:
            raise OwnerUnavailableError(self.name, f"Send failed: {e}") from e
        return await future

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"{name}-{self.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _abandon(self, request_id: int, method: str) -> None:
        self._abandoned[request_id] = method
        while len(self._abandoned) > _ABANDONED_LIMIT:
            self._abandoned.pop(next(iter(self._abandoned)))

    def _mark_closed(self, error: MCPProviderError | None) -> None:
        """Record that the channel is gone and fail every pending call."""
        if self.closed.is_set():
            return
        self.close_error = error
        self.closed.set()
        reason = str(error) if error else "transport closed"
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(OwnerUnavailableError(self.name, f"Connection lost: {reason}"))
        if error is not None:
            log.warning("transport_lost", provider=self.name, transport=str(self.kind), error=str(error))

    async def _handle_frame(self, raw: str | bytes) -> None:
        """Decode one inbound frame and dispatch its messages.

        A malformed frame closes the channel with a ProtocolError.
        """
        try:
            decoded = messages.decode(raw)
        except ValueError as e:
            log.error("protocol_error", provider=self.name, error=str(e))
            self._mark_closed(ProtocolError(self.name, f"Malformed message: {e}"))
            return
        for message in decoded:
            await self._dispatch(message)

    async def _dispatch(self, message: dict[str, Any]) -> None:
        if messages.is_response(message):
            self._resolve(message)
        elif messages.is_request(message):
            await self._answer_server_request(message)
        elif "method" in message:
            await self._notify_handlers(message)
        else:
            log.warning("unexpected_message", provider=self.name, message=message)

    def _resolve(self, message: dict[str, Any]) -> None:
        request_id = message.get("id")
        pending = self._pending.get(request_id) if isinstance(request_id, int) else None
        if pending is None:
            if request_id in self._abandoned:
                method = self._abandoned.pop(request_id)
                log.info("late_response_discarded", provider=self.name, request_id=request_id, method=method)
            else:
                log.warning("unmatched_response", provider=self.name, request_id=request_id)
            return
        if pending.future.done():
            return

        if "error" in message:
            error = message["error"] if isinstance(message["error"], dict) else {}
            pending.future.set_exception(
                ProviderError(
                    self.name,
                    error.get("code", "unknown"),
                    error.get("message", "Unknown error"),
                    error.get("data"),
                )
            )
            return

        result = message.get("result")
        if result is None:
            result = {}
        if not isinstance(result, dict):
            kind = type(result).__name__
            error = ProtocolError(self.name, f"Result of {pending.method} must be an object, got {kind}")
            log.error("protocol_error", provider=self.name, error=str(error))
            pending.future.set_exception(error)
            self._mark_closed(error)
            return
        pending.future.set_result(result)

    async def _answer_server_request(self, message: dict[str, Any]) -> None:
        if message["method"] == "ping":
            reply = messages.build_result(message["id"], {})
        else:
            reply = messages.build_error(
                message["id"], messages.METHOD_NOT_FOUND, f"Method not supported: {message['method']}"
            )
        try:
            await self._write(reply)
        except ConnectError as e:
            log.warning("server_request_reply_failed", provider=self.name, method=message["method"], error=str(e))

    async def _notify_handlers(self, message: dict[str, Any]) -> None:
        for handler in list(self._handlers):
            try:
                outcome = handler(message)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                log.exception("notification_handler_failed", provider=self.name, method=message.get("method"))
