"""JSON-RPC plumbing for talking to ``bicep jsonrpc``.

Public API:
- JsonRpcConnection, open_connection: correlated request/response client
- spawn_channel, StreamChannel, SubprocessChannel: subprocess channels

Protocol:
- RPCRequest, RPCResponse, RPCNotification: JSON-RPC 2.0 message types
- encode_message, read_message: Content-Length framed message I/O
"""

from bicep_bridge.rpc.connection import JsonRpcConnection, open_connection
from bicep_bridge.rpc.methods import BASELINE_VERSION, RequestType
from bicep_bridge.rpc.protocol import (
    ErrorCode,
    RPCError,
    RPCNotification,
    RPCRequest,
    RPCResponse,
    encode_message,
    parse_message,
    read_message,
)
from bicep_bridge.rpc.transport import (
    Channel,
    StderrMode,
    StreamChannel,
    SubprocessChannel,
    TransportMode,
    spawn_channel,
)

__all__ = [
    # Connection
    "JsonRpcConnection",
    "open_connection",
    # Channels
    "Channel",
    "StderrMode",
    "StreamChannel",
    "SubprocessChannel",
    "TransportMode",
    "spawn_channel",
    # Methods
    "BASELINE_VERSION",
    "RequestType",
    # Protocol
    "ErrorCode",
    "RPCError",
    "RPCNotification",
    "RPCRequest",
    "RPCResponse",
    "encode_message",
    "parse_message",
    "read_message",
]
