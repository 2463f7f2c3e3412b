"""Request and response records exchanged with the Bicep CLI.

Field names are snake_case in Python and camelCase on the wire. Response
models keep any fields they don't declare, so nothing the CLI sends is lost.
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for all protocol records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting optional fields never set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class ResponseModel(WireModel):
    model_config = ConfigDict(extra="allow")


class FileRequest(WireModel):
    """Request addressing a single source file."""

    path: str

    @field_validator("path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Any:
        if isinstance(value, os.PathLike):
            return os.fspath(value)
        return value


# =============================================================================
# Shared shapes
# =============================================================================


class Position(ResponseModel):
    line: int
    char: int


class Range(ResponseModel):
    start: Position
    end: Position


DiagnosticLevel = Literal["Info", "Warning", "Error"]


class CompileResponseDiagnostic(ResponseModel):
    """A compiler diagnostic attached to a source range."""

    source: str
    range: Range
    level: DiagnosticLevel
    code: str
    message: str


# =============================================================================
# version
# =============================================================================


class VersionRequest(WireModel):
    pass


class VersionResponse(ResponseModel):
    version: str


# =============================================================================
# compile / compileParams
# =============================================================================


class CompileRequest(FileRequest):
    pass


class CompileResponse(ResponseModel):
    success: bool
    diagnostics: list[CompileResponseDiagnostic]
    contents: str | None = None


class CompileParamsRequest(FileRequest):
    parameter_overrides: dict[str, Any]


class CompileParamsResponse(ResponseModel):
    success: bool
    diagnostics: list[CompileResponseDiagnostic]
    parameters: str | None = None
    template: str | None = None
    template_spec_id: str | None = None


# =============================================================================
# getMetadata
# =============================================================================


class GetMetadataRequest(FileRequest):
    pass


class MetadataDefinition(ResponseModel):
    name: str
    value: str


class TypeDescription(ResponseModel):
    range: Range | None = None
    name: str


class SymbolDefinition(ResponseModel):
    """A parameter or output declared by a template."""

    range: Range
    name: str
    type: TypeDescription | None = None
    description: str | None = None


class ExportDefinition(ResponseModel):
    range: Range
    name: str
    kind: str
    description: str | None = None


class GetMetadataResponse(ResponseModel):
    metadata: list[MetadataDefinition]
    parameters: list[SymbolDefinition]
    outputs: list[SymbolDefinition]
    exports: list[ExportDefinition]


# =============================================================================
# getDeploymentGraph
# =============================================================================


class GetDeploymentGraphRequest(FileRequest):
    pass


class GetDeploymentGraphResponseNode(ResponseModel):
    range: Range
    name: str
    type: str
    is_existing: bool
    relative_path: str | None = None


class GetDeploymentGraphResponseEdge(ResponseModel):
    source: str
    target: str


class GetDeploymentGraphResponse(ResponseModel):
    nodes: list[GetDeploymentGraphResponseNode]
    edges: list[GetDeploymentGraphResponseEdge]


# =============================================================================
# getFileReferences
# =============================================================================


class GetFileReferencesRequest(FileRequest):
    pass


class GetFileReferencesResponse(ResponseModel):
    file_paths: list[str]


# =============================================================================
# getSnapshot
# =============================================================================


class GetSnapshotRequestMetadata(WireModel):
    """Deployment scope used to evaluate a parameters file."""

    tenant_id: str | None = None
    subscription_id: str | None = None
    resource_group: str | None = None
    location: str | None = None
    deployment_name: str | None = None


class GetSnapshotRequestExternalInputValue(WireModel):
    kind: str
    config: Any = None
    value: Any


class GetSnapshotRequest(FileRequest):
    metadata: GetSnapshotRequestMetadata = Field(
        default_factory=GetSnapshotRequestMetadata
    )
    external_inputs: list[GetSnapshotRequestExternalInputValue] | None = None

    def to_wire(self) -> dict[str, Any]:
        # metadata is required on the wire even when every member is unset
        payload = super().to_wire()
        payload["metadata"] = self.metadata.to_wire()
        return payload


class GetSnapshotResponse(ResponseModel):
    snapshot: str


# =============================================================================
# format
# =============================================================================


class FormatRequest(FileRequest):
    pass


class FormatResponse(ResponseModel):
    contents: str
