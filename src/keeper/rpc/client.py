"""Client for the game-state worker process.

The worker speaks newline-delimited JSON-RPC 2.0 on its stdin/stdout.
One ``WorkerClient`` owns one process and multiplexes any number of
concurrent requests over it, matching responses to callers by id.
"""

import asyncio
import contextlib
import logging
import os
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from keeper.rpc.errors import (
    Disconnected,
    RemoteError,
    RequestTimeout,
    SpawnError,
    TransportError,
)
from keeper.rpc.protocol import FrameDecoder, RPCRequest, RPCResponse

logger = logging.getLogger(__name__)

CLIENT_NAME = "keeper"
CLIENT_VERSION = "0.1.0"
PROTOCOL_VERSION = "2024-11-05"

READ_CHUNK_BYTES = 64 * 1024
CLOSE_GRACE_SECONDS = 2.0

HANDSHAKE_METHODS = frozenset({"initialize", "tools/list"})

# Worker tools that regenerate or return whole worlds and need the long deadline.
COMPLEX_TOOLS = frozenset(
    {
        "generate_world",
        "get_world_tiles",
        "get_world_state",
        "render_map",
    }
)


class ConnectionState(str, Enum):
    """Lifecycle of the worker connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READY = "ready"


@dataclass(frozen=True)
class TimeoutPolicy:
    """Deadline per request class, in seconds."""

    handshake: float = 10.0
    default: float = 30.0
    complex: float = 120.0
    complex_tools: frozenset[str] = COMPLEX_TOOLS

    def for_request(self, method: str, params: Mapping[str, Any] | None = None) -> float:
        if method in HANDSHAKE_METHODS:
            return self.handshake
        if method == "tools/call" and params and params.get("name") in self.complex_tools:
            return self.complex
        return self.default


@dataclass
class _PendingRequest:
    id: str
    method: str
    params: dict[str, Any]
    issued_at: float
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle | None = None


class WorkerClient:
    """JSON-RPC client bound to one worker subprocess.

    State moves ``DISCONNECTED -> CONNECTING -> CONNECTED -> READY`` via
    ``connect()`` and ``initialize()``. Any exit of the worker, or
    ``close()``, drops straight back to ``DISCONNECTED`` and fails every
    pending request with ``Disconnected``.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        name: str = "worker",
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeouts: TimeoutPolicy | None = None,
    ) -> None:
        self._command = list(command)
        self._name = name
        self._env = dict(env) if env else None
        self._cwd = cwd
        self._timeouts = timeouts or TimeoutPolicy()

        self._state = ConnectionState.DISCONNECTED
        self._process: asyncio.subprocess.Process | None = None
        self._decoder = FrameDecoder()
        self._pending: dict[str, _PendingRequest] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._server_info: dict[str, Any] = {}

        self._connect_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def server_info(self) -> dict[str, Any]:
        return dict(self._server_info)

    @property
    def timeouts(self) -> TimeoutPolicy:
        return self._timeouts

    async def connect(self) -> None:
        """Start the worker process. A no-op if it is already running.

        Raises:
            SpawnError: If the process cannot be started.
        """
        async with self._connect_lock:
            if self._state != ConnectionState.DISCONNECTED:
                return
            if not self._command:
                raise SpawnError(f"No command configured for {self._name}")

            self._state = ConnectionState.CONNECTING
            env = {**os.environ, **self._env} if self._env else None
            try:
                process = await asyncio.create_subprocess_exec(
                    *self._command,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                    cwd=self._cwd,
                )
            except (OSError, ValueError) as e:
                self._state = ConnectionState.DISCONNECTED
                raise SpawnError(
                    f"Failed to start {self._name} ({self._command[0]}): {e}"
                ) from e

            self._process = process
            self._decoder = FrameDecoder()
            self._state = ConnectionState.CONNECTED
            self._reader_task = asyncio.create_task(
                self._read_stdout(process), name=f"{self._name}-stdout"
            )
            self._stderr_task = asyncio.create_task(
                self._relay_stderr(process), name=f"{self._name}-stderr"
            )
            logger.info(
                "worker_started",
                extra={"worker": self._name, "pid": process.pid},
            )

    async def initialize(self) -> dict[str, Any]:
        """Perform the protocol handshake once.

        Returns:
            The worker's ``initialize`` result.

        Raises:
            Disconnected: If ``connect()`` has not succeeded.
        """
        async with self._init_lock:
            if self._state == ConnectionState.READY:
                return self.server_info
            if self._state != ConnectionState.CONNECTED:
                raise Disconnected(f"{self._name} is not connected")

            result = await self.request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
                },
            )
            await self.notify("notifications/initialized")

            if self._state != ConnectionState.CONNECTED:
                raise Disconnected(f"{self._name} exited during handshake")
            self._server_info = result if isinstance(result, dict) else {}
            self._state = ConnectionState.READY
            logger.info(
                "worker_initialized",
                extra={
                    "worker": self._name,
                    "server": self._server_info.get("serverInfo"),
                },
            )
            return self.server_info

    async def start(self) -> dict[str, Any]:
        """Connect and initialize."""
        await self.connect()
        return await self.initialize()

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its response.

        Args:
            method: JSON-RPC method name.
            params: Method parameters.
            timeout: Override for the method's timeout class.

        Returns:
            The ``result`` member of the response.

        Raises:
            Disconnected: If the worker is not running or exits first.
            RequestTimeout: If no response arrives before the deadline.
            RemoteError: If the worker answers with an error object.
        """
        process = self._process
        if process is None or process.stdin is None:
            raise Disconnected(f"{self._name} is not connected")

        params = params or {}
        deadline = timeout if timeout is not None else self._timeouts.for_request(method, params)
        loop = asyncio.get_running_loop()
        entry = _PendingRequest(
            id=uuid.uuid4().hex,
            method=method,
            params=params,
            issued_at=time.monotonic(),
            future=loop.create_future(),
        )
        entry.timer = loop.call_later(deadline, self._expire, entry.id, deadline)
        self._pending[entry.id] = entry

        # A failed write disconnects, which fails this entry along with the rest.
        await self._write(process, RPCRequest(method, params, id=entry.id).to_line())

        try:
            return await entry.future
        except asyncio.CancelledError:
            self._discard(entry.id)
            raise

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification; no response is expected."""
        process = self._process
        if process is None or process.stdin is None:
            raise Disconnected(f"{self._name} is not connected")
        if not await self._write(process, RPCRequest(method, params or {}).to_line()):
            raise Disconnected(f"{self._name} stdin closed")

    async def list_tools(self) -> list[dict[str, Any]]:
        """Fetch the worker's tool catalog, following pagination cursors."""
        tools: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            result = await self.request("tools/list", {"cursor": cursor} if cursor else None)
            if not isinstance(result, dict) or not isinstance(result.get("tools"), list):
                raise TransportError(f"{self._name} returned a malformed tools/list result")
            tools.extend(t for t in result["tools"] if isinstance(t, dict) and t.get("name"))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke a worker tool.

        Returns:
            The content-block result, ``{"content": [...], "isError": bool}``.
        """
        result = await self.request("tools/call", {"name": name, "arguments": arguments or {}})
        if not isinstance(result, dict):
            raise TransportError(f"{self._name} returned a malformed result for {name}")
        return result

    async def close(self) -> None:
        """Stop the worker and fail anything still pending."""
        process = self._process
        tasks = [t for t in (self._reader_task, self._stderr_task) if t is not None]
        self._reader_task = self._stderr_task = None

        if process is not None:
            self._handle_disconnect(process, "closed")
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            try:
                await asyncio.wait_for(process.wait(), timeout=CLOSE_GRACE_SECONDS)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def __aenter__(self) -> "WorkerClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _write(self, process: asyncio.subprocess.Process, data: bytes) -> bool:
        assert process.stdin is not None
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (ConnectionError, RuntimeError) as e:
            self._handle_disconnect(process, f"write failed: {e}")
            return False
        return True

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        reason = "stdout closed"
        try:
            while True:
                data = await process.stdout.read(READ_CHUNK_BYTES)
                if not data:
                    break
                for message in self._decoder.feed(data):
                    self._dispatch(message)
        except ConnectionError as e:
            reason = f"read failed: {e}"
        finally:
            self._handle_disconnect(process, reason)

    async def _relay_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", "replace").rstrip()
            if text:
                logger.debug("%s: %s", self._name, text)

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "method" in message:
            logger.debug(
                "worker_notification",
                extra={"worker": self._name, "method": message.get("method")},
            )
            return

        request_id = message.get("id")
        entry = (
            self._pending.pop(request_id, None)
            if isinstance(request_id, str | int)
            else None
        )
        if entry is None:
            # Late reply to a request that already timed out, or unsolicited.
            logger.debug(
                "rpc_response_unmatched",
                extra={"worker": self._name, "rpc.id": request_id},
            )
            return

        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            return

        response = RPCResponse.from_dict(message)
        if response.error is not None:
            entry.future.set_exception(
                RemoteError(response.error.code, response.error.message, response.error.data)
            )
        else:
            entry.future.set_result(response.result)

        logger.debug(
            "rpc_request_complete",
            extra={
                "worker": self._name,
                "rpc.method": entry.method,
                "duration_ms": int((time.monotonic() - entry.issued_at) * 1000),
                "success": response.ok,
            },
        )

    def _expire(self, request_id: str, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        logger.warning(
            "rpc_request_timeout",
            extra={
                "worker": self._name,
                "rpc.method": entry.method,
                "rpc.id": request_id,
                "timeout_s": timeout,
            },
        )
        entry.future.set_exception(RequestTimeout(entry.method, timeout, request_id))

    def _discard(self, request_id: str) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()

    def _handle_disconnect(self, process: asyncio.subprocess.Process, reason: str) -> None:
        if process is not self._process:
            return

        self._process = None
        self._state = ConnectionState.DISCONNECTED
        self._server_info = {}

        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(
                    Disconnected(f"{self._name} disconnected ({reason}); reconnect required")
                )

        log = logger.info if reason == "closed" else logger.warning
        log(
            "worker_disconnected",
            extra={
                "worker": self._name,
                "reason": reason,
                "returncode": process.returncode,
                "failed_requests": len(pending),
            },
        )


@dataclass(frozen=True)
class WorkerChannels:
    """Named views over worker connections.

    Game state and combat used to be separate servers; they are now served
    by one worker, so ``shared()`` points both channels at the same client
    and they share its pending-request table.
    """

    game_state: WorkerClient
    combat: WorkerClient

    @classmethod
    def shared(cls, client: WorkerClient) -> "WorkerChannels":
        return cls(game_state=client, combat=client)

    @property
    def clients(self) -> list[WorkerClient]:
        """Distinct underlying clients."""
        if self.combat is self.game_state:
            return [self.game_state]
        return [self.game_state, self.combat]

    async def start(self) -> None:
        await asyncio.gather(*(client.start() for client in self.clients))

    async def close(self) -> None:
        await asyncio.gather(*(client.close() for client in self.clients))
