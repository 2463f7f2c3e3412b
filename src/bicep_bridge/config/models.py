"""Configuration models using Pydantic."""

import sys
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from bicep_bridge.errors import BicepError
from bicep_bridge.rpc.protocol import DEFAULT_MAX_MESSAGE_SIZE
from bicep_bridge.rpc.transport import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    StderrMode,
    TransportMode,
)


def _default_transport() -> TransportMode:
    # Named pipes on Windows aren't reachable through asyncio streams.
    return "stdio" if sys.platform == "win32" else "pipe"


class ConfigError(BicepError):
    """Configuration error."""

    pass


class BridgeConfig(BaseModel):
    """Root configuration model.

    Controls how the Bicep CLI is launched and connected to. None of these
    settings change protocol semantics; requests never time out and are
    never retried.
    """

    # Default executable used when a caller does not pass one explicitly
    bicep_path: Path | None = None

    # Channel to the CLI: "pipe" (Unix socket), "socket" (loopback TCP), "stdio"
    transport: TransportMode = Field(default_factory=_default_transport)

    # Child stderr: "log" forwards lines to the bicep_bridge.subprocess logger
    stderr: StderrMode = "log"

    # Seconds to wait for the CLI to dial back in (pipe/socket only)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)

    # Grace period on dispose before the CLI is killed
    shutdown_timeout: float = Field(default=DEFAULT_SHUTDOWN_TIMEOUT, ge=0)

    max_message_size: int = Field(default=DEFAULT_MAX_MESSAGE_SIZE, gt=0)

    # Read by configure_logging() when neither an argument nor the env sets a level
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
