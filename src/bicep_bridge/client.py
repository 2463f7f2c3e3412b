"""Client for the Bicep CLI JSON-RPC server."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from types import TracebackType
from typing import Any

from pydantic import ValidationError

from bicep_bridge import types
from bicep_bridge.config import BridgeConfig, get_default_config
from bicep_bridge.errors import (
    BicepConnectionError,
    DisposedError,
    ProtocolError,
    UnsupportedVersionError,
)
from bicep_bridge.rpc import methods
from bicep_bridge.rpc.connection import JsonRpcConnection, open_connection
from bicep_bridge.rpc.methods import BASELINE_VERSION, RequestT, RequestType, ResponseT
from bicep_bridge.version import has_minimum_version

logger = logging.getLogger(__name__)

_CONSTRUCT_TOKEN = object()


class Bicep:
    """Typed client for a running Bicep CLI.

    Instances only come from ``await Bicep.initialize(path)``, which returns a
    connected client whose CLI version has been checked, or raises after
    releasing everything it acquired. Call ``dispose()`` (or use ``async with``)
    when done; the CLI process stays alive until then.

    Example:
        async with await Bicep.initialize("/usr/local/bin/bicep") as bicep:
            result = await bicep.compile(CompileRequest(path="main.bicep"))
    """

    def __init__(
        self,
        connection: JsonRpcConnection,
        bicep_path: Path,
        *,
        _token: object = None,
    ) -> None:
        if _token is not _CONSTRUCT_TOKEN:
            raise TypeError("Use 'await Bicep.initialize(bicep_path)' to create a client")
        self._connection = connection
        self._bicep_path = bicep_path
        self._disposed = False

    @classmethod
    async def initialize(
        cls,
        bicep_path: str | os.PathLike[str] | None = None,
        *,
        config: BridgeConfig | None = None,
    ) -> Bicep:
        """Start the Bicep CLI and verify it is recent enough.

        Args:
            bicep_path: Path to the Bicep CLI. Defaults to ``config.bicep_path``
                (``BICEP_PATH`` in the environment).
            config: Launch settings. Defaults to get_default_config().

        Returns:
            A ready client.

        Raises:
            BicepConnectionError: If the CLI cannot be started or reached.
            UnsupportedVersionError: If the CLI is older than the baseline.
        """
        if config is None:
            config = get_default_config()
        if bicep_path is None:
            bicep_path = config.bicep_path
        if bicep_path is None:
            raise BicepConnectionError(
                "No Bicep CLI path given; pass bicep_path or set BICEP_PATH"
            )

        path = Path(bicep_path)
        connection = await open_connection(
            path,
            mode=config.transport,
            stderr=config.stderr,
            connect_timeout=config.connect_timeout,
            shutdown_timeout=config.shutdown_timeout,
            max_message_size=config.max_message_size,
        )
        bicep = cls(connection, path, _token=_CONSTRUCT_TOKEN)

        try:
            version = await bicep.version()
            check = has_minimum_version(version, BASELINE_VERSION)
            if not check.satisfied:
                raise UnsupportedVersionError(
                    f"Bicep CLI version {version} is not supported. "
                    f"Please install version {check.minimum} or later.",
                    minimum=check.minimum,
                    actual=version,
                )
        except BaseException:
            await bicep.dispose()
            raise

        logger.info("Connected to Bicep CLI %s", version, extra={"path": str(path)})
        return bicep

    @property
    def bicep_path(self) -> Path:
        return self._bicep_path

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    async def version(self) -> str:
        """Gets the version of the Bicep CLI."""
        response = await self._send(
            methods.version_request_type, types.VersionRequest()
        )
        return response.version

    async def compile(
        self, request: types.CompileRequest | Mapping[str, Any]
    ) -> types.CompileResponse:
        """Compiles a Bicep file.

        Args:
            request: The compilation request.

        Returns:
            The compilation response.
        """
        return await self._send(methods.compile_request_type, request)

    async def compile_params(
        self, request: types.CompileParamsRequest | Mapping[str, Any]
    ) -> types.CompileParamsResponse:
        """Compiles a Bicepparam file.

        Args:
            request: The compilation request.

        Returns:
            The compilation response.
        """
        return await self._send(methods.compile_params_request_type, request)

    async def get_metadata(
        self, request: types.GetMetadataRequest | Mapping[str, Any]
    ) -> types.GetMetadataResponse:
        """Returns metadata for a Bicep file."""
        return await self._send(methods.get_metadata_request_type, request)

    async def get_deployment_graph(
        self, request: types.GetDeploymentGraphRequest | Mapping[str, Any]
    ) -> types.GetDeploymentGraphResponse:
        """Returns the deployment graph for a Bicep file."""
        return await self._send(methods.get_deployment_graph_request_type, request)

    async def get_file_references(
        self, request: types.GetFileReferencesRequest | Mapping[str, Any]
    ) -> types.GetFileReferencesResponse:
        """Returns file references for a Bicep file."""
        return await self._send(methods.get_file_references_request_type, request)

    async def get_snapshot(
        self, request: types.GetSnapshotRequest | Mapping[str, Any]
    ) -> types.GetSnapshotResponse:
        """Gets a snapshot of a Bicep parameters file.

        Requires Bicep CLI 0.36.1 or later.

        Raises:
            UnsupportedVersionError: If the CLI is older than 0.36.1. The
                snapshot request is not sent in that case.
        """
        return await self._send(methods.get_snapshot_request_type, request)

    async def format(
        self, request: types.FormatRequest | Mapping[str, Any]
    ) -> types.FormatResponse:
        """Formats a Bicep file.

        Requires Bicep CLI 0.37.0 or later.

        Raises:
            UnsupportedVersionError: If the CLI is older than 0.37.0. The
                format request is not sent in that case.
        """
        return await self._send(methods.format_request_type, request)

    async def dispose(self) -> None:
        """Disposes of the connection to the Bicep CLI.

        This MUST be called after usage to avoid leaving the process running.
        Safe to call more than once; never raises.
        """
        self._disposed = True
        await self._connection.dispose()

    async def __aenter__(self) -> Bicep:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.dispose()

    async def _send(
        self,
        request_type: RequestType[RequestT, ResponseT],
        request: RequestT | Mapping[str, Any],
    ) -> ResponseT:
        if self._disposed:
            raise DisposedError("Bicep client has been disposed")

        if not isinstance(request, request_type.request_model):
            request = request_type.request_model.model_validate(request)

        if request_type.minimum_version is not None:
            await self._require_version(request_type.minimum_version)

        result = await self._connection.send_request(
            request_type.method, request.to_wire()
        )
        try:
            return request_type.response_model.model_validate(result)
        except ValidationError as e:
            raise ProtocolError(
                f"Invalid {request_type.method} response from Bicep CLI: {e}"
            ) from e

    async def _require_version(self, minimum: str) -> None:
        # Re-queried on every call; the CLI's version is not cached.
        version = await self.version()
        if not has_minimum_version(version, minimum).satisfied:
            raise UnsupportedVersionError(
                f"Bicep CLI version {minimum} or later is required.",
                minimum=minimum,
                actual=version,
            )


@asynccontextmanager
async def open_bicep(
    bicep_path: str | os.PathLike[str] | None = None,
    *,
    config: BridgeConfig | None = None,
) -> AsyncIterator[Bicep]:
    """Initialize a client and dispose it when the block exits."""
    bicep = await Bicep.initialize(bicep_path, config=config)
    try:
        yield bicep
    finally:
        await bicep.dispose()
