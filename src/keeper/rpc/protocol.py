"""JSON-RPC 2.0 messages with newline framing.

Each message is one JSON object on its own line. The worker never puts a
raw newline inside a message, so splitting the byte stream on ``\\n`` is
enough to recover frames regardless of how reads are chunked.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# A frame that grows past this without a newline is discarded.
MAX_FRAME_BYTES = 64 * 1024 * 1024


# JSON-RPC 2.0 error codes
class ErrorCode:
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass
class RPCRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""

    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: str | int | None = None
    jsonrpc: str = JSONRPC_VERSION

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params:
            d["params"] = self.params
        if self.id is not None:
            d["id"] = self.id
        return d

    def to_line(self) -> bytes:
        return encode_frame(self.to_dict())


@dataclass
class RPCError:
    """JSON-RPC 2.0 error."""

    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            d["data"] = self.data
        return d


@dataclass
class RPCResponse:
    """JSON-RPC 2.0 response carrying either a result or an error."""

    id: str | int | None
    result: Any = None
    error: RPCError | None = None
    jsonrpc: str = JSONRPC_VERSION

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            d["error"] = self.error.to_dict()
        else:
            d["result"] = self.result
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RPCResponse":
        error = None
        if data.get("error") is not None:
            err = data["error"]
            if isinstance(err, dict):
                error = RPCError(
                    code=err.get("code", ErrorCode.INTERNAL_ERROR),
                    message=err.get("message", "Unknown error"),
                    data=err.get("data"),
                )
            else:
                error = RPCError(code=ErrorCode.INTERNAL_ERROR, message=str(err))
        return cls(
            id=data.get("id"),
            result=data.get("result"),
            error=error,
            jsonrpc=data.get("jsonrpc", JSONRPC_VERSION),
        )


def encode_frame(message: dict[str, Any]) -> bytes:
    """Serialize a message as one newline-terminated line."""
    return json.dumps(message, separators=(",", ":")).encode("utf-8") + b"\n"


class FrameDecoder:
    """Incremental newline-delimited JSON decoder.

    Bytes are appended to a buffer; each complete line is parsed and
    returned, and a trailing partial line is kept for the next ``feed``.
    Lines that are not JSON objects are logged and dropped.
    """

    def __init__(self, max_frame_bytes: int = MAX_FRAME_BYTES) -> None:
        self._buffer = bytearray()
        self._max_frame_bytes = max_frame_bytes

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        self._buffer.extend(data)
        messages: list[dict[str, Any]] = []

        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            message = self._parse(line)
            if message is not None:
                messages.append(message)

        if len(self._buffer) > self._max_frame_bytes:
            logger.warning(
                "rpc_frame_too_large",
                extra={"frame.bytes": len(self._buffer)},
            )
            self._buffer.clear()

        return messages

    def _parse(self, line: bytes) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None
        try:
            message = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(
                "rpc_frame_malformed",
                extra={"error.message": str(e), "frame.preview": line[:200].decode("utf-8", "replace")},
            )
            return None
        if not isinstance(message, dict):
            logger.warning("rpc_frame_not_object", extra={"frame.type": type(message).__name__})
            return None
        return message
