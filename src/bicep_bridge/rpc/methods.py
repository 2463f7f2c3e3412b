"""Request types understood by ``bicep jsonrpc``.

Each entry binds a method name to its request/response models and, for
methods added after the baseline release, the CLI version that introduced it.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from bicep_bridge import types
from bicep_bridge.types import ResponseModel, WireModel

# Oldest CLI release whose JSON-RPC surface the bridge supports at all.
BASELINE_VERSION = "0.25.3"

RequestT = TypeVar("RequestT", bound=WireModel)
ResponseT = TypeVar("ResponseT", bound=ResponseModel)


@dataclass(frozen=True, slots=True)
class RequestType(Generic[RequestT, ResponseT]):
    """A JSON-RPC method with typed request and response records."""

    method: str
    request_model: type[RequestT]
    response_model: type[ResponseT]
    minimum_version: str | None = None


version_request_type = RequestType(
    "bicep/version", types.VersionRequest, types.VersionResponse
)
compile_request_type = RequestType(
    "bicep/compile", types.CompileRequest, types.CompileResponse
)
compile_params_request_type = RequestType(
    "bicep/compileParams", types.CompileParamsRequest, types.CompileParamsResponse
)
get_metadata_request_type = RequestType(
    "bicep/getMetadata", types.GetMetadataRequest, types.GetMetadataResponse
)
get_deployment_graph_request_type = RequestType(
    "bicep/getDeploymentGraph",
    types.GetDeploymentGraphRequest,
    types.GetDeploymentGraphResponse,
)
get_file_references_request_type = RequestType(
    "bicep/getFileReferences",
    types.GetFileReferencesRequest,
    types.GetFileReferencesResponse,
)
get_snapshot_request_type = RequestType(
    "bicep/getSnapshot",
    types.GetSnapshotRequest,
    types.GetSnapshotResponse,
    minimum_version="0.36.1",
)
format_request_type = RequestType(
    "bicep/format",
    types.FormatRequest,
    types.FormatResponse,
    minimum_version="0.37.0",
)
