"""Shared test fixtures and factories."""

import asyncio
import json
import socket
import stat
import sys
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest

from bicep_bridge.config import BridgeConfig
from bicep_bridge.rpc.connection import JsonRpcConnection
from bicep_bridge.rpc.protocol import encode_message, read_message
from bicep_bridge.rpc.transport import StreamChannel

FAKE_BICEP_SCRIPT = Path(__file__).parent / "fake_bicep.py"

# =============================================================================
# Fake Bicep executable
# =============================================================================


def make_fake_bicep(
    directory: Path,
    *,
    version: str = "0.37.0",
    behavior: str = "serve",
    log_path: Path | None = None,
) -> Path:
    """Write an executable wrapper that runs tests/fake_bicep.py."""
    wrapper = directory / f"bicep-{version}-{behavior}"
    lines = [
        "#!/bin/sh",
        f"export FAKE_BICEP_VERSION='{version}'",
        f"export FAKE_BICEP_BEHAVIOR='{behavior}'",
    ]
    if log_path is not None:
        lines.append(f"export FAKE_BICEP_LOG='{log_path}'")
    lines.append(f'exec "{sys.executable}" "{FAKE_BICEP_SCRIPT}" "$@"')
    wrapper.write_text("\n".join(lines) + "\n")
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@pytest.fixture
def request_log(tmp_path: Path) -> Path:
    """File the fake CLI appends each received method name to."""
    return tmp_path / "requests.log"


@pytest.fixture
def fake_bicep_factory(
    tmp_path: Path, request_log: Path
) -> Callable[..., Path]:
    """Factory for fake CLI executables that log requests to request_log."""

    def _factory(version: str = "0.37.0", behavior: str = "serve") -> Path:
        return make_fake_bicep(
            tmp_path, version=version, behavior=behavior, log_path=request_log
        )

    return _factory


@pytest.fixture
def fake_bicep(fake_bicep_factory: Callable[..., Path]) -> Path:
    """Fake CLI reporting 0.37.0 (every method available)."""
    return fake_bicep_factory()


def logged_methods(log_path: Path) -> list[str]:
    if not log_path.exists():
        return []
    return log_path.read_text().splitlines()


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def bridge_config() -> BridgeConfig:
    """Config with short timeouts suitable for tests."""
    return BridgeConfig(
        transport="pipe",
        stderr="discard",
        connect_timeout=10.0,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove bridge environment overrides."""
    for name in (
        "BICEP_PATH",
        "BICEP_BRIDGE_TRANSPORT",
        "BICEP_BRIDGE_LOG_LEVEL",
        "BICEP_BRIDGE_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# In-process server over a socket pair
# =============================================================================


class ScriptedServer:
    """Server end of a socket pair, driven step by step by a test."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    async def receive(self) -> dict[str, Any]:
        data = await asyncio.wait_for(read_message(self.reader), timeout=5)
        assert data is not None, "client closed the connection"
        return json.loads(data)

    async def send(self, payload: dict[str, Any]) -> None:
        self.writer.write(encode_message(payload))
        await self.writer.drain()

    async def send_raw(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def reply(self, request: dict[str, Any], result: Any) -> None:
        await self.send({"jsonrpc": "2.0", "id": request["id"], "result": result})

    async def reply_error(
        self, request: dict[str, Any], code: int, message: str, data: Any = None
    ) -> None:
        error: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        await self.send({"jsonrpc": "2.0", "id": request["id"], "error": error})

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            pass


@pytest.fixture
async def socket_pair() -> AsyncGenerator[tuple[StreamChannel, ScriptedServer], None]:
    """A client channel and the scripted server on the other end."""
    client_sock, server_sock = socket.socketpair()
    client_reader, client_writer = await asyncio.open_connection(sock=client_sock)
    server_reader, server_writer = await asyncio.open_connection(sock=server_sock)
    server = ScriptedServer(server_reader, server_writer)
    yield StreamChannel(client_reader, client_writer), server
    await server.close()
    client_writer.close()


@pytest.fixture
async def connection(
    socket_pair: tuple[StreamChannel, ScriptedServer],
) -> AsyncGenerator[JsonRpcConnection, None]:
    """A listening connection over the socket pair."""
    channel, _ = socket_pair
    conn = JsonRpcConnection(channel)
    conn.listen()
    yield conn
    await conn.dispose()


@pytest.fixture
def server(socket_pair: tuple[StreamChannel, ScriptedServer]) -> ScriptedServer:
    return socket_pair[1]
