"""Errors raised by the worker transport."""

from typing import Any


class TransportError(Exception):
    """Base class for worker transport failures."""


class SpawnError(TransportError):
    """The worker process could not be started."""


class RequestTimeout(TransportError):
    """A request got no response within its deadline."""

    def __init__(self, method: str, timeout: float, request_id: str | None = None):
        self.method = method
        self.timeout = timeout
        self.request_id = request_id
        super().__init__(f"Request '{method}' timed out after {timeout:g}s")


class Disconnected(TransportError):
    """The worker is not running, or exited while requests were pending."""

    def __init__(self, message: str = "Worker disconnected; reconnect required"):
        super().__init__(message)


class RemoteError(TransportError):
    """The worker answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC error {code}: {message}")
