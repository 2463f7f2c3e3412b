"""Async Python bridge to the Bicep CLI's JSON-RPC server.

Public API:
- Bicep: typed client, created with ``await Bicep.initialize(path)``
- open_bicep: async context manager around initialize/dispose
- has_minimum_version, parse_version: version gate helpers

Errors:
- BicepError and its subclasses (see bicep_bridge.errors)
"""

from bicep_bridge.client import Bicep, open_bicep
from bicep_bridge.config import BridgeConfig, ConfigError, load_config
from bicep_bridge.errors import (
    BicepConnectionError,
    BicepError,
    DisposedError,
    MalformedVersionError,
    ProtocolError,
    RemoteError,
    UnsupportedVersionError,
)
from bicep_bridge.types import (
    CompileParamsRequest,
    CompileParamsResponse,
    CompileRequest,
    CompileResponse,
    CompileResponseDiagnostic,
    FormatRequest,
    FormatResponse,
    GetDeploymentGraphRequest,
    GetDeploymentGraphResponse,
    GetFileReferencesRequest,
    GetFileReferencesResponse,
    GetMetadataRequest,
    GetMetadataResponse,
    GetSnapshotRequest,
    GetSnapshotRequestExternalInputValue,
    GetSnapshotRequestMetadata,
    GetSnapshotResponse,
)
from bicep_bridge.version import Version, VersionCheck, has_minimum_version, parse_version

__all__ = [
    # Client
    "Bicep",
    "open_bicep",
    # Config
    "BridgeConfig",
    "ConfigError",
    "load_config",
    # Errors
    "BicepConnectionError",
    "BicepError",
    "DisposedError",
    "MalformedVersionError",
    "ProtocolError",
    "RemoteError",
    "UnsupportedVersionError",
    # Version gate
    "Version",
    "VersionCheck",
    "has_minimum_version",
    "parse_version",
    # Types
    "CompileParamsRequest",
    "CompileParamsResponse",
    "CompileRequest",
    "CompileResponse",
    "CompileResponseDiagnostic",
    "FormatRequest",
    "FormatResponse",
    "GetDeploymentGraphRequest",
    "GetDeploymentGraphResponse",
    "GetFileReferencesRequest",
    "GetFileReferencesResponse",
    "GetMetadataRequest",
    "GetMetadataResponse",
    "GetSnapshotRequest",
    "GetSnapshotRequestExternalInputValue",
    "GetSnapshotRequestMetadata",
    "GetSnapshotResponse",
]
