"""Minimal game worker speaking newline-delimited JSON-RPC on stdio.

Used by the transport tests. Each request is answered on its own thread so
slow tools do not block fast ones and responses can arrive out of order.

Tools:
- echo: returns its arguments as JSON text
- sleep: waits ``seconds`` then answers
- fail: answers with a JSON-RPC error object
- crash: exits immediately without answering
- chatty: sends a notification and a garbage line before answering
- split: writes its response in two separate chunks
"""

import json
import os
import sys
import threading
import time

_write_lock = threading.Lock()

PAGE_ONE = [
    {"name": "echo", "description": "Echo arguments", "inputSchema": {"type": "object"}},
    {"name": "sleep", "description": "Sleep then answer", "inputSchema": {"type": "object"}},
    {"name": "fail", "description": "Always errors", "inputSchema": {"type": "object"}},
]
PAGE_TWO = [
    {"name": "crash", "description": "Exit the worker", "inputSchema": {"type": "object"}},
    {"name": "chatty", "description": "Noisy answer", "inputSchema": {"type": "object"}},
    {"name": "split", "description": "Chunked answer", "inputSchema": {"type": "object"}},
]


def write_raw(data: bytes) -> None:
    with _write_lock:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()


def send(message: dict) -> None:
    write_raw(json.dumps(message).encode() + b"\n")


def text_result(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}], "isError": False}


def handle_call(request_id, params: dict) -> None:
    name = params.get("name")
    arguments = params.get("arguments") or {}

    if name == "echo":
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result(json.dumps(arguments))})
    elif name == "sleep":
        time.sleep(float(arguments.get("seconds", 0.1)))
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result(f"slept {arguments}")})
    elif name == "fail":
        send(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": -32000, "message": "engine exploded", "data": {"tool": name}},
            }
        )
    elif name == "crash":
        os._exit(3)
    elif name == "chatty":
        send({"jsonrpc": "2.0", "method": "notifications/progress", "params": {"progress": 1}})
        write_raw(b"this is not json\n")
        write_raw(b"[1, 2, 3]\n")
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result("still here")})
    elif name == "split":
        frame = json.dumps(
            {"jsonrpc": "2.0", "id": request_id, "result": text_result("in pieces")}
        ).encode() + b"\n"
        with _write_lock:
            sys.stdout.buffer.write(frame[:10])
            sys.stdout.buffer.flush()
            time.sleep(0.05)
            sys.stdout.buffer.write(frame[10:])
            sys.stdout.buffer.flush()
    else:
        send(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {
                    "content": [{"type": "text", "text": f"Unknown tool: {name}"}],
                    "isError": True,
                },
            }
        )


def handle(message: dict) -> None:
    method = message.get("method")
    request_id = message.get("id")
    params = message.get("params") or {}

    if request_id is None:
        return

    if method == "initialize":
        send(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {
                    "protocolVersion": params.get("protocolVersion"),
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "fake-worker", "version": "1.0"},
                    "clientInfo": params.get("clientInfo"),
                },
            }
        )
    elif method == "tools/list":
        if params.get("cursor") == "page-2":
            send({"jsonrpc": "2.0", "id": request_id, "result": {"tools": PAGE_TWO}})
        else:
            send(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "result": {"tools": PAGE_ONE, "nextCursor": "page-2"},
                }
            )
    elif method == "tools/call":
        handle_call(request_id, params)
    else:
        send(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            }
        )


def main() -> None:
    print("fake worker ready", file=sys.stderr, flush=True)
    for line in sys.stdin.buffer:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        threading.Thread(target=handle, args=(message,), daemon=True).start()


if __name__ == "__main__":
    main()
