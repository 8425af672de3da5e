"""Async client for the CMake server mode."""

from __future__ import annotations

from cmake_client.client import BuildResult, CMakeClient
from cmake_client.collaborators import (
    DiagnosticMatcher,
    JsonFileStateStore,
    LoggingOutputSink,
    MemoryStateStore,
    OutputSink,
    StateStore,
)
from cmake_client.config import ClientConfig
from cmake_client.exceptions import (
    BuildError,
    BuildInProgressError,
    ChannelClosedError,
    ChannelConnectError,
    ClientStateError,
    CMakeClientError,
    NotConnectedError,
    NotGeneratedError,
    ProtocolDecodeError,
    ProtocolNotReadyError,
    RequestPendingError,
    ServerProcessError,
    ServerRequestError,
)
from cmake_client.models import (
    CacheValue,
    CodeModel,
    Configuration,
    Project,
    ProtocolVersion,
    Target,
)
from cmake_client.reconciler import ModelReconciler, SelectionContext
from cmake_client.session import ProtocolSession
from cmake_client.state import ClientState

__version__ = "0.1.0"

__all__ = [
    "BuildError",
    "BuildInProgressError",
    "BuildResult",
    "CMakeClient",
    "CMakeClientError",
    "CacheValue",
    "ChannelClosedError",
    "ChannelConnectError",
    "ClientConfig",
    "ClientState",
    "ClientStateError",
    "CodeModel",
    "Configuration",
    "DiagnosticMatcher",
    "JsonFileStateStore",
    "LoggingOutputSink",
    "MemoryStateStore",
    "ModelReconciler",
    "NotConnectedError",
    "NotGeneratedError",
    "OutputSink",
    "Project",
    "ProtocolDecodeError",
    "ProtocolNotReadyError",
    "ProtocolSession",
    "ProtocolVersion",
    "RequestPendingError",
    "SelectionContext",
    "ServerProcessError",
    "ServerRequestError",
    "StateStore",
    "Target",
]
