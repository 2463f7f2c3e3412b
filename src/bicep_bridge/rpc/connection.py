"""JSON-RPC client connection with request/response correlation.

A single reader task consumes every inbound message and routes responses to
the caller awaiting that request id, so any number of requests can be in
flight at once and may be answered in any order.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import os
import time
from typing import Any

from bicep_bridge.errors import (
    BicepConnectionError,
    BicepError,
    DisposedError,
    ProtocolError,
    RemoteError,
)
from bicep_bridge.rpc.protocol import (
    DEFAULT_MAX_MESSAGE_SIZE,
    ErrorCode,
    Message,
    RPCNotification,
    RPCRequest,
    RPCResponse,
    parse_message,
    read_message,
)
from bicep_bridge.rpc.transport import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    Channel,
    StderrMode,
    TransportMode,
    spawn_channel,
)

logger = logging.getLogger(__name__)


class JsonRpcConnection:
    """Owns one channel and correlates requests with their responses."""

    def __init__(
        self,
        channel: Channel,
        *,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._channel = channel
        self._max_message_size = max_message_size
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[RPCResponse]] = {}
        self._write_lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None
        self._dispose_task: asyncio.Task[None] | None = None
        self._close_error: BicepError | None = None
        self._disposed = False

    def listen(self) -> None:
        """Start the background reader. Called once, right after construction."""
        if self._reader_task is None:
            self._reader_task = asyncio.ensure_future(self._read_loop())

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def is_closed(self) -> bool:
        """True once the channel broke or the connection was disposed."""
        return self._disposed or self._close_error is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and wait for its correlated result.

        Args:
            method: JSON-RPC method name (e.g. "bicep/compile").
            params: Request parameters.

        Returns:
            The ``result`` member of the response.

        Raises:
            DisposedError: If the connection is or becomes disposed.
            BicepConnectionError: If the channel is broken.
            ProtocolError: If the channel delivered an unparseable message.
            RemoteError: If the Bicep CLI answered with a JSON-RPC error.
        """
        self._ensure_usable()

        loop = asyncio.get_running_loop()
        request = RPCRequest(method=method, params=params or {}, id=next(self._ids))
        future: asyncio.Future[RPCResponse] = loop.create_future()
        self._pending[request.id] = future
        started = time.monotonic()

        try:
            async with self._write_lock:
                self._ensure_usable()
                writer = self._channel.writer
                writer.write(request.to_bytes())
                await writer.drain()
        except BicepError:
            self._abandon(request.id, future)
            raise
        except (ConnectionError, OSError) as e:
            self._abandon(request.id, future)
            if self._disposed:
                raise DisposedError("Connection to Bicep CLI has been disposed") from e
            raise BicepConnectionError(f"Failed to send {method}: {e}") from e
        except BaseException:
            self._abandon(request.id, future)
            raise

        logger.debug("Sent %s", method, extra={"request_id": request.id})
        try:
            response = await future
        finally:
            self._pending.pop(request.id, None)

        duration_ms = int((time.monotonic() - started) * 1000)
        if response.error is not None:
            logger.debug(
                "%s failed",
                method,
                extra={"request_id": request.id, "duration_ms": duration_ms},
            )
            raise RemoteError(
                code=response.error.code,
                message=response.error.message,
                data=response.error.data,
            )

        logger.debug(
            "%s completed",
            method,
            extra={"request_id": request.id, "duration_ms": duration_ms},
        )
        return response.result

    async def dispose(self) -> None:
        """Tear down the connection and the channel behind it.

        Idempotent and safe to call concurrently; every caller waits for the
        same teardown. Outstanding requests fail with ``DisposedError``.
        """
        if self._dispose_task is None:
            self._disposed = True
            self._fail_pending(
                DisposedError, "Connection to Bicep CLI was disposed during the request"
            )
            self._dispose_task = asyncio.ensure_future(self._teardown())
        await asyncio.shield(self._dispose_task)

    async def _teardown(self) -> None:
        try:
            if self._reader_task is not None and not self._reader_task.done():
                self._reader_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._reader_task
            await self._channel.close()
        except Exception:
            logger.exception("Error while disposing Bicep CLI connection")
        logger.debug("Bicep CLI connection disposed")

    def _abandon(self, request_id: int, future: asyncio.Future[RPCResponse]) -> None:
        self._pending.pop(request_id, None)
        if future.done():
            if not future.cancelled():
                # Mark a failure set by dispose() as retrieved.
                future.exception()
        else:
            future.cancel()

    def _ensure_usable(self) -> None:
        if self._disposed:
            raise DisposedError("Connection to Bicep CLI has been disposed")
        if self._close_error is not None:
            raise BicepConnectionError(
                f"Connection to Bicep CLI is closed: {self._close_error}"
            ) from self._close_error

    async def _read_loop(self) -> None:
        error: BicepError
        try:
            while True:
                data = await read_message(self._channel.reader, self._max_message_size)
                if data is None:
                    error = BicepConnectionError("Bicep CLI closed the connection")
                    break
                await self._dispatch(parse_message(data))
        except BicepError as e:
            error = e
        except (ConnectionError, OSError) as e:
            error = BicepConnectionError(f"Connection to Bicep CLI lost: {e}")
        except Exception as e:
            error = ProtocolError(f"Failed to handle message from Bicep CLI: {e!r}")
            error.__cause__ = e

        if isinstance(error, ProtocolError):
            logger.error("Invalid message from Bicep CLI: %s", error)
        else:
            logger.info("Bicep CLI connection closed: %s", error)
        self._close_error = error
        self._fail_pending(type(error), str(error), cause=error)

    async def _dispatch(self, message: Message) -> None:
        if isinstance(message, RPCResponse):
            self._resolve(message)
        elif isinstance(message, RPCRequest):
            # The bridge exposes no client-side methods.
            logger.debug("Rejecting server request %s", message.method)
            response = RPCResponse.error_response(
                message.id,
                ErrorCode.METHOD_NOT_FOUND,
                f"Unhandled method {message.method}",
            )
            async with self._write_lock:
                self._channel.writer.write(response.to_bytes())
                await self._channel.writer.drain()
        elif isinstance(message, RPCNotification):
            logger.debug("Ignoring notification %s", message.method)

    def _resolve(self, response: RPCResponse) -> None:
        if response.id is None:
            detail = response.error.message if response.error else "no error detail"
            logger.warning("Bicep CLI sent a response without an id: %s", detail)
            return

        future = self._pending.pop(response.id, None)  # type: ignore[arg-type]
        if future is None:
            logger.warning(
                "Dropping response for unknown request id %r", response.id
            )
            return
        if not future.done():
            future.set_result(response)

    def _fail_pending(
        self,
        error_type: type[BicepError],
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if future.done():
                continue
            exc = error_type(message)
            exc.__cause__ = cause
            future.set_exception(exc)


async def open_connection(
    executable_path: str | os.PathLike[str],
    *,
    mode: TransportMode = "pipe",
    stderr: StderrMode = "log",
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> JsonRpcConnection:
    """Spawn the Bicep CLI and return a listening connection to it.

    Raises:
        BicepConnectionError: If the executable cannot be started or the
            channel cannot be established.
    """
    channel = await spawn_channel(
        executable_path,
        mode=mode,
        stderr=stderr,
        connect_timeout=connect_timeout,
        shutdown_timeout=shutdown_timeout,
    )
    connection = JsonRpcConnection(channel, max_message_size=max_message_size)
    connection.listen()
    return connection
