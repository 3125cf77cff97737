"""Transport to the game-state worker.

Public API:
- WorkerClient: JSON-RPC 2.0 client bound to one worker subprocess
- WorkerChannels: named views (game state, combat) over worker clients
- TimeoutPolicy: per-class request deadlines

Protocol:
- RPCRequest, RPCResponse, RPCError: JSON-RPC 2.0 message types
- FrameDecoder, encode_frame: newline-delimited framing
"""

from keeper.rpc.client import (
    COMPLEX_TOOLS,
    ConnectionState,
    TimeoutPolicy,
    WorkerChannels,
    WorkerClient,
)
from keeper.rpc.errors import (
    Disconnected,
    RemoteError,
    RequestTimeout,
    SpawnError,
    TransportError,
)
from keeper.rpc.protocol import (
    ErrorCode,
    FrameDecoder,
    RPCError,
    RPCRequest,
    RPCResponse,
    encode_frame,
)

__all__ = [
    # Client
    "COMPLEX_TOOLS",
    "ConnectionState",
    "TimeoutPolicy",
    "WorkerChannels",
    "WorkerClient",
    # Errors
    "Disconnected",
    "RemoteError",
    "RequestTimeout",
    "SpawnError",
    "TransportError",
    # Protocol
    "ErrorCode",
    "FrameDecoder",
    "RPCError",
    "RPCRequest",
    "RPCResponse",
    "encode_frame",
]
