"""Exceptions raised by the CMake server client."""

from __future__ import annotations


class CMakeClientError(Exception):
    """Base class for all client errors."""


class ServerProcessError(CMakeClientError):
    """Raised when the server process cannot be spawned or exits unexpectedly."""


class ChannelConnectError(CMakeClientError):
    """Raised when the channel to the server cannot be established."""

    def __init__(self, address: str, attempts: int, reason: str):
        self.address = address
        self.attempts = attempts
        msg = f"Could not connect to CMake server at {address} after {attempts} attempt(s): {reason}"
        super().__init__(msg)


class ChannelClosedError(CMakeClientError):
    """Raised for requests still pending when the channel closes."""

    def __init__(self):
        super().__init__("Connection to CMake server closed")


class ProtocolNotReadyError(CMakeClientError):
    """Raised when sending before the hello message or on a closed channel."""


class ProtocolDecodeError(CMakeClientError):
    """Raised when a frame payload is not a valid message object."""


class RequestPendingError(CMakeClientError):
    """Raised when a request of the same type is already awaiting its reply."""

    def __init__(self, request_type: str):
        self.request_type = request_type
        super().__init__(f"A {request_type!r} request is already pending")


class ServerRequestError(CMakeClientError):
    """Raised when the server answers a request with an error message."""

    def __init__(self, request_type: str, message: str):
        self.request_type = request_type
        self.message = message
        super().__init__(f"CMake server rejected {request_type!r}: {message}")


class ClientStateError(CMakeClientError):
    """Raised when an operation is not legal in the current client state."""


class NotConnectedError(ClientStateError):
    def __init__(self):
        super().__init__("Not connected to CMake Server.")


class BuildInProgressError(ClientStateError):
    def __init__(self):
        super().__init__("Build in progress.")


class NotGeneratedError(ClientStateError):
    def __init__(self):
        super().__init__("Build system not generated yet.")


class BuildError(CMakeClientError):
    """Raised when the build process cannot be spawned."""
