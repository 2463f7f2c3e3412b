"""Subprocess channels to ``bicep jsonrpc``.

The Bicep CLI can talk JSON-RPC over three kinds of channel:

- ``pipe``: the client listens on a Unix domain socket and the CLI dials in
  (``bicep jsonrpc --pipe <path>``).
- ``socket``: same, over a loopback TCP port (``--socket <port>``).
- ``stdio``: the CLI's stdin/stdout carry the messages (``--stdio``).

Whatever the mode, a channel owns exactly one child process plus the streams
connected to it, and ``close()`` releases all of them.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

from bicep_bridge.errors import BicepConnectionError

logger = logging.getLogger(__name__)

TransportMode = Literal["pipe", "socket", "stdio"]
StderrMode = Literal["log", "inherit", "discard"]

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 2.0
STDERR_LOGGER_NAME = "bicep_bridge.subprocess"

# StreamReader buffer limit; bounds header lines, not message bodies.
_STREAM_LIMIT = 1024 * 1024
_LOOPBACK_HOST = "127.0.0.1"


@runtime_checkable
class Channel(Protocol):
    """Bidirectional message stream owned by a connection."""

    @property
    def reader(self) -> asyncio.StreamReader: ...

    @property
    def writer(self) -> asyncio.StreamWriter: ...

    async def close(self) -> None:
        """Release the streams and anything behind them. Must not raise."""
        ...


class StreamChannel:
    """Channel over an already-connected reader/writer pair."""

    __slots__ = ("_reader", "_writer")

    def __init__(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._reader = reader
        self._writer = writer

    @property
    def reader(self) -> asyncio.StreamReader:
        return self._reader

    @property
    def writer(self) -> asyncio.StreamWriter:
        return self._writer

    async def close(self) -> None:
        await _close_writer(self._writer)


class SubprocessChannel:
    """Channel to a spawned ``bicep jsonrpc`` process."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        mode: TransportMode,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        stderr_task: asyncio.Task[None] | None = None,
        socket_dir: Path | None = None,
    ) -> None:
        self._process = process
        self._reader = reader
        self._writer = writer
        self._mode = mode
        self._shutdown_timeout = shutdown_timeout
        self._stderr_task = stderr_task
        self._socket_dir = socket_dir
        self._closed = False

    @property
    def reader(self) -> asyncio.StreamReader:
        return self._reader

    @property
    def writer(self) -> asyncio.StreamWriter:
        return self._writer

    @property
    def process(self) -> asyncio.subprocess.Process:
        return self._process

    @property
    def mode(self) -> TransportMode:
        return self._mode

    async def close(self) -> None:
        """Close the streams, then wait for the child to exit (killing it if needed)."""
        if self._closed:
            return
        self._closed = True
        pid = self._process.pid

        await _close_writer(self._writer)
        await _terminate_process(self._process, self._shutdown_timeout)

        if self._stderr_task is not None:
            # Let trailing stderr lines through; wait_for cancels on timeout.
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stderr_task, timeout=1.0)

        if self._socket_dir is not None:
            shutil.rmtree(self._socket_dir, ignore_errors=True)

        logger.info(
            "Bicep CLI exited",
            extra={"pid": pid, "returncode": self._process.returncode},
        )


async def spawn_channel(
    executable_path: str | os.PathLike[str],
    *,
    mode: TransportMode = "pipe",
    stderr: StderrMode = "log",
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
) -> SubprocessChannel:
    """Start ``<executable> jsonrpc`` and connect to it.

    Args:
        executable_path: Path to the Bicep CLI.
        mode: Channel kind, see module docstring.
        stderr: What to do with the child's stderr.
        connect_timeout: Seconds to wait for the child to dial back in
            (``pipe`` and ``socket`` modes).
        shutdown_timeout: Grace period used by ``close()`` before killing.

    Returns:
        A connected channel owning the child process.

    Raises:
        BicepConnectionError: If the process cannot be started, exits early,
            or never connects.
    """
    executable = str(executable_path)
    if mode == "stdio":
        return await _spawn_stdio(executable, stderr, shutdown_timeout)
    if mode == "pipe":
        return await _spawn_pipe(executable, stderr, connect_timeout, shutdown_timeout)
    if mode == "socket":
        return await _spawn_socket(
            executable, stderr, connect_timeout, shutdown_timeout
        )
    raise ValueError(f"Unknown transport mode: {mode!r}")


async def _spawn_stdio(
    executable: str, stderr: StderrMode, shutdown_timeout: float
) -> SubprocessChannel:
    process = await _start_process(
        executable,
        ["jsonrpc", "--stdio"],
        stderr=stderr,
        stdio=True,
    )
    assert process.stdout is not None
    assert process.stdin is not None
    return SubprocessChannel(
        process,
        process.stdout,
        process.stdin,
        mode="stdio",
        shutdown_timeout=shutdown_timeout,
        stderr_task=_start_stderr_drain(process),
    )


async def _spawn_pipe(
    executable: str,
    stderr: StderrMode,
    connect_timeout: float,
    shutdown_timeout: float,
) -> SubprocessChannel:
    if sys.platform == "win32":
        raise BicepConnectionError(
            "The pipe transport requires Unix domain sockets; use 'stdio' on Windows"
        )

    socket_dir = Path(tempfile.mkdtemp(prefix="bicep-"))
    socket_path = socket_dir / "jsonrpc.sock"
    accepted = _AcceptOnce()
    try:
        server = await asyncio.start_unix_server(
            accepted, path=str(socket_path), limit=_STREAM_LIMIT
        )
    except OSError as e:
        shutil.rmtree(socket_dir, ignore_errors=True)
        raise BicepConnectionError(f"Could not listen on {socket_path}: {e}") from e

    try:
        return await _connect_child(
            executable,
            ["jsonrpc", "--pipe", str(socket_path)],
            server=server,
            accepted=accepted,
            mode="pipe",
            stderr=stderr,
            connect_timeout=connect_timeout,
            shutdown_timeout=shutdown_timeout,
            socket_dir=socket_dir,
        )
    except BaseException:
        shutil.rmtree(socket_dir, ignore_errors=True)
        raise


async def _spawn_socket(
    executable: str,
    stderr: StderrMode,
    connect_timeout: float,
    shutdown_timeout: float,
) -> SubprocessChannel:
    accepted = _AcceptOnce()
    try:
        server = await asyncio.start_server(
            accepted, host=_LOOPBACK_HOST, port=0, limit=_STREAM_LIMIT
        )
    except OSError as e:
        raise BicepConnectionError(f"Could not listen on loopback: {e}") from e

    port = int(server.sockets[0].getsockname()[1])
    return await _connect_child(
        executable,
        ["jsonrpc", "--socket", str(port)],
        server=server,
        accepted=accepted,
        mode="socket",
        stderr=stderr,
        connect_timeout=connect_timeout,
        shutdown_timeout=shutdown_timeout,
    )


class _AcceptOnce:
    """Server callback that hands the first inbound connection to a future."""

    def __init__(self) -> None:
        self.future: asyncio.Future[
            tuple[asyncio.StreamReader, asyncio.StreamWriter]
        ] = asyncio.get_running_loop().create_future()

    async def __call__(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        if self.future.done():
            logger.warning("Rejecting unexpected second connection from Bicep CLI")
            await _close_writer(writer)
            return
        self.future.set_result((reader, writer))


async def _connect_child(
    executable: str,
    args: list[str],
    *,
    server: asyncio.Server,
    accepted: _AcceptOnce,
    mode: TransportMode,
    stderr: StderrMode,
    connect_timeout: float,
    shutdown_timeout: float,
    socket_dir: Path | None = None,
) -> SubprocessChannel:
    try:
        process = await _start_process(executable, args, stderr=stderr, stdio=False)
    except BaseException:
        server.close()
        raise

    stderr_task = _start_stderr_drain(process)
    exited = asyncio.ensure_future(process.wait())
    try:
        done, _ = await asyncio.wait(
            {accepted.future, exited},
            timeout=connect_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if accepted.future in done:
            reader, writer = accepted.future.result()
        elif exited in done:
            raise BicepConnectionError(
                f"Bicep CLI exited with code {process.returncode} before connecting"
            )
        else:
            raise BicepConnectionError(
                f"Bicep CLI did not connect within {connect_timeout} seconds"
            )
    except BaseException:
        if accepted.future.done() and not accepted.future.cancelled():
            await _close_writer(accepted.future.result()[1])
        else:
            accepted.future.cancel()
        await _terminate_process(process, 0)
        if stderr_task is not None:
            stderr_task.cancel()
        raise
    finally:
        # Stop listening; the accepted connection stays open.
        server.close()
        if not exited.done():
            exited.cancel()

    logger.debug("Bicep CLI connected", extra={"pid": process.pid, "mode": mode})
    return SubprocessChannel(
        process,
        reader,
        writer,
        mode=mode,
        shutdown_timeout=shutdown_timeout,
        stderr_task=stderr_task,
        socket_dir=socket_dir,
    )


async def _start_process(
    executable: str,
    args: list[str],
    *,
    stderr: StderrMode,
    stdio: bool,
) -> asyncio.subprocess.Process:
    if stderr == "log":
        stderr_arg: int | None = asyncio.subprocess.PIPE
    elif stderr == "discard":
        stderr_arg = asyncio.subprocess.DEVNULL
    else:
        stderr_arg = None

    stdio_arg = asyncio.subprocess.PIPE if stdio else asyncio.subprocess.DEVNULL
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=stdio_arg,
            stdout=stdio_arg,
            stderr=stderr_arg,
            limit=_STREAM_LIMIT,
        )
    except FileNotFoundError:
        raise BicepConnectionError(f"Bicep CLI not found: {executable}") from None
    except PermissionError:
        raise BicepConnectionError(
            f"Bicep CLI is not executable: {executable}"
        ) from None
    except OSError as e:
        raise BicepConnectionError(f"Failed to start Bicep CLI: {e}") from e

    logger.info(
        "Started Bicep CLI",
        extra={"pid": process.pid, "executable": executable, "cli_args": args},
    )
    return process


def _start_stderr_drain(
    process: asyncio.subprocess.Process,
) -> asyncio.Task[None] | None:
    if process.stderr is None:
        return None
    return asyncio.ensure_future(
        _drain_stderr(process.stderr, logging.getLogger(STDERR_LOGGER_NAME))
    )


async def _drain_stderr(stream: asyncio.StreamReader, target: logging.Logger) -> None:
    """Forward child stderr to a logger, one line at a time."""
    while True:
        try:
            raw_line = await stream.readline()
        except (OSError, ValueError):
            # ValueError: a single line exceeded the stream limit
            logger.debug("Stopped draining Bicep CLI stderr", exc_info=True)
            return
        if not raw_line:
            return
        line = raw_line.decode("utf-8", errors="replace").rstrip()
        if line:
            target.info(line)


async def _terminate_process(
    process: asyncio.subprocess.Process, grace_period: float
) -> None:
    if process.returncode is not None:
        return
    if grace_period > 0:
        try:
            await asyncio.wait_for(process.wait(), timeout=grace_period)
            return
        except TimeoutError:
            logger.warning(
                "Bicep CLI did not exit after %.1fs, killing it",
                grace_period,
                extra={"pid": process.pid},
            )
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    if writer.is_closing():
        return
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
