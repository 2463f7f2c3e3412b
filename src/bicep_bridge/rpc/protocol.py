"""JSON-RPC 2.0 protocol implementation.

Messages are framed the way the Bicep CLI (and the VS Code language server
protocol) expects: a ``Content-Length`` header block terminated by an empty
line, followed by exactly that many bytes of UTF-8 JSON.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

from bicep_bridge.errors import BicepConnectionError, ProtocolError

DEFAULT_MAX_MESSAGE_SIZE = 64 * 1024 * 1024

_HEADER_SEPARATOR = b"\r\n"
_CONTENT_LENGTH = "content-length"
_MAX_HEADER_LINE = 8 * 1024


# JSON-RPC 2.0 error codes
class ErrorCode:
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass
class RPCRequest:
    """JSON-RPC 2.0 request."""

    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: int | str = 1
    jsonrpc: str = "2.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }

    def to_bytes(self) -> bytes:
        """Serialize to a framed message."""
        return encode_message(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RPCRequest":
        return cls(
            method=data.get("method", ""),
            params=data.get("params") or {},
            id=_message_id(data.get("id", 1)),
            jsonrpc=data.get("jsonrpc", "2.0"),
        )


@dataclass
class RPCError:
    """JSON-RPC 2.0 error."""

    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        d = {"code": self.code, "message": self.message}
        if self.data is not None:
            d["data"] = self.data
        return d


@dataclass
class RPCResponse:
    """JSON-RPC 2.0 response."""

    id: int | str | None
    result: Any = None
    error: RPCError | None = None
    jsonrpc: str = "2.0"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            d["error"] = self.error.to_dict()
        else:
            d["result"] = self.result
        return d

    def to_bytes(self) -> bytes:
        """Serialize to a framed message."""
        return encode_message(self.to_dict())

    @classmethod
    def error_response(
        cls, id: int | str | None, code: int, message: str, data: Any = None
    ) -> "RPCResponse":
        return cls(id=id, error=RPCError(code=code, message=message, data=data))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RPCResponse":
        error = None
        if data.get("error") is not None:
            err = data["error"]
            if not isinstance(err, dict):
                raise ProtocolError("JSON-RPC error member must be an object")
            error = RPCError(
                code=err.get("code", ErrorCode.INTERNAL_ERROR),
                message=err.get("message", "Unknown error"),
                data=err.get("data"),
            )
        return cls(
            id=_message_id(data.get("id"), allow_null=True),
            result=data.get("result"),
            error=error,
            jsonrpc=data.get("jsonrpc", "2.0"),
        )


@dataclass
class RPCNotification:
    """JSON-RPC 2.0 notification (a request without an id)."""

    method: str
    params: Any = None
    jsonrpc: str = "2.0"


Message = RPCRequest | RPCResponse | RPCNotification


def _message_id(value: Any, allow_null: bool = False) -> int | str | None:
    # bool is an int subclass; true would otherwise match request id 1
    if value is None and allow_null:
        return None
    if isinstance(value, str) or (
        isinstance(value, int) and not isinstance(value, bool)
    ):
        return value
    raise ProtocolError(f"Invalid JSON-RPC id: {value!r}")


def encode_message(payload: dict[str, Any]) -> bytes:
    """Serialize a JSON object into a ``Content-Length`` framed message."""
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode(
        "utf-8"
    )
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


def parse_message(data: bytes) -> Message:
    """Decode a message body into a request, response or notification.

    Raises:
        ProtocolError: If the body is not a JSON-RPC 2.0 object.
    """
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid JSON-RPC message: {e}") from e

    if not isinstance(payload, dict):
        raise ProtocolError("JSON-RPC message must be an object")
    if payload.get("jsonrpc") != "2.0":
        raise ProtocolError(f"Unsupported JSON-RPC version: {payload.get('jsonrpc')!r}")

    if "method" in payload:
        method = payload["method"]
        if not isinstance(method, str) or not method:
            raise ProtocolError("JSON-RPC method must be a non-empty string")
        if "id" in payload and payload["id"] is not None:
            return RPCRequest.from_dict(payload)
        return RPCNotification(method=method, params=payload.get("params"))

    if "result" in payload or "error" in payload:
        return RPCResponse.from_dict(payload)

    raise ProtocolError("JSON-RPC message is neither a request nor a response")


async def read_message(
    reader: asyncio.StreamReader,
    max_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> bytes | None:
    """Read one framed message body from an async reader.

    Returns None if the connection closed cleanly before a new header began.

    Raises:
        ProtocolError: If the header block is malformed or the body exceeds
            ``max_size``.
        BicepConnectionError: If the stream ends mid-message.
    """
    content_length: int | None = None
    first_line = True

    while True:
        try:
            line = await reader.readuntil(_HEADER_SEPARATOR)
        except asyncio.IncompleteReadError as e:
            if first_line and not e.partial:
                return None
            raise BicepConnectionError(
                "Connection closed while reading message header"
            ) from e
        except asyncio.LimitOverrunError as e:
            raise ProtocolError("Message header line too long") from e

        if len(line) > _MAX_HEADER_LINE:
            raise ProtocolError("Message header line too long")

        first_line = False
        header = line[: -len(_HEADER_SEPARATOR)]
        if not header:
            break

        name, sep, value = header.decode("ascii", errors="replace").partition(":")
        if not sep:
            raise ProtocolError(f"Malformed message header: {header!r}")
        if name.strip().lower() == _CONTENT_LENGTH:
            try:
                content_length = int(value.strip())
            except ValueError:
                raise ProtocolError(f"Invalid Content-Length: {value.strip()!r}") from None

    if content_length is None:
        raise ProtocolError("Message header is missing Content-Length")
    if content_length < 0:
        raise ProtocolError(f"Invalid Content-Length: {content_length}")
    if content_length > max_size:
        raise ProtocolError(f"Message too large: {content_length}")

    try:
        return await reader.readexactly(content_length)
    except asyncio.IncompleteReadError as e:
        raise BicepConnectionError("Connection closed while reading message body") from e
