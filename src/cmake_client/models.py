"""Pydantic models for the CMake server protocol messages."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


INTERFACE_LIBRARY = "INTERFACE_LIBRARY"


# ============================================================================
# Base classes with shared configuration
# ============================================================================


class CMakeBaseModel(BaseModel):
    """Base model for all CMake server protocol models.

    Provides:
    - Snake_case Python fields with camelCase JSON aliases
    - Both field names and aliases accepted for parsing (populate_by_name=True)
    - Unknown keys from newer server versions are ignored
    """

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class ProtocolVersion(CMakeBaseModel):
    """A protocol version as advertised in hello and chosen in handshake."""

    major: int
    minor: int = 0
    is_experimental: bool = Field(default=False, exclude=True)
    """Only advertised by the server, never sent back."""

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


# ============================================================================
# Client -> server requests
# ============================================================================


class Request(CMakeBaseModel):
    """Base for all client requests.

    The server echoes ``type`` as ``inReplyTo`` on every reply, error,
    progress and message it sends for the request.
    """

    type: str
    cookie: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the wire representation."""
        return self.model_dump(by_alias=True, exclude_none=True)


class HandshakeRequest(Request):
    """First request, committing to a protocol version."""

    type: Literal["handshake"] = "handshake"
    protocol_version: ProtocolVersion
    source_directory: str
    build_directory: str
    generator: str
    extra_generator: str | None = None
    platform: str | None = None
    toolset: str | None = None


class ConfigureRequest(Request):
    type: Literal["configure"] = "configure"
    cache_arguments: list[str] = Field(default_factory=list)
    """Command line style cache definitions, e.g. ``-DFOO=BAR``."""


class ComputeRequest(Request):
    type: Literal["compute"] = "compute"


class CodeModelRequest(Request):
    type: Literal["codemodel"] = "codemodel"


class CacheRequest(Request):
    type: Literal["cache"] = "cache"


# ============================================================================
# Server -> client messages
# ============================================================================


class HelloMessage(CMakeBaseModel):
    """Sent once by the server right after a client connects."""

    type: Literal["hello"] = "hello"
    supported_protocol_versions: list[ProtocolVersion]


class ReplyMessage(CMakeBaseModel):
    """Successful answer to a request; request-specific keys are kept as extras."""

    model_config = ConfigDict(extra="allow")

    type: Literal["reply"] = "reply"
    in_reply_to: str
    cookie: str | None = None

    @property
    def payload(self) -> dict[str, Any]:
        """Request-specific content of the reply."""
        return dict(self.model_extra or {})


class ErrorMessage(CMakeBaseModel):
    type: Literal["error"] = "error"
    in_reply_to: str
    error_message: str = "Unknown error"
    cookie: str | None = None


class ProgressMessage(CMakeBaseModel):
    """Progress report streamed during long-running requests."""

    type: Literal["progress"] = "progress"
    in_reply_to: str
    progress_message: str = ""
    progress_minimum: int = 0
    progress_maximum: int = 0
    progress_current: int = 0

    @property
    def fraction(self) -> float:
        """Progress as a value between 0 and 1."""
        span = self.progress_maximum - self.progress_minimum
        if span <= 0:
            return 0.0
        return (self.progress_current - self.progress_minimum) / span


class DisplayMessage(CMakeBaseModel):
    """Human readable output from the server (cmake ``message()`` etc.)."""

    type: Literal["message"] = "message"
    in_reply_to: str | None = None
    message: str
    title: str | None = None


class SignalMessage(CMakeBaseModel):
    """Unsolicited named event, e.g. ``dirty`` or ``fileChange``."""

    model_config = ConfigDict(extra="allow")

    type: Literal["signal"] = "signal"
    name: str


InboundMessage = Annotated[
    HelloMessage | ReplyMessage | ErrorMessage | ProgressMessage | DisplayMessage | SignalMessage,
    Field(discriminator="type"),
]
inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_message(data: dict[str, Any]) -> InboundMessage:
    """Validate a decoded frame into a typed inbound message.

    Raises:
        pydantic.ValidationError: If the payload is not a known message type
    """
    return inbound_adapter.validate_python(data)


# ============================================================================
# Code model and cache
# ============================================================================


class IncludePath(CMakeBaseModel):
    path: str
    is_system: bool = False


class FileGroup(CMakeBaseModel):
    """Sources sharing the same compile settings within a target."""

    language: str | None = None
    compile_flags: str | None = None
    defines: list[str] = Field(default_factory=list)
    include_path: list[IncludePath] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    is_generated: bool = False


class Target(CMakeBaseModel):
    """A single target of a project."""

    name: str
    type: str
    """CMake target type, e.g. EXECUTABLE, STATIC_LIBRARY, INTERFACE_LIBRARY."""

    full_name: str | None = None
    source_directory: str | None = None
    build_directory: str | None = None
    artifacts: list[str] = Field(default_factory=list)
    linker_language: str | None = None
    file_groups: list[FileGroup] = Field(default_factory=list)

    @property
    def is_buildable(self) -> bool:
        """Interface-only targets produce no artifact and cannot be built."""
        return self.type != INTERFACE_LIBRARY


class Project(CMakeBaseModel):
    name: str
    source_directory: str | None = None
    build_directory: str | None = None
    targets: list[Target] = Field(default_factory=list)


class Configuration(CMakeBaseModel):
    """Projects of one build type."""

    name: str
    projects: list[Project] = Field(default_factory=list)


class CodeModel(CMakeBaseModel):
    """Reply payload of a ``codemodel`` request."""

    configurations: list[Configuration] = Field(default_factory=list)

    @property
    def configuration_names(self) -> list[str]:
        return [c.name for c in self.configurations]


class CacheValue(CMakeBaseModel):
    """One entry of the CMake cache."""

    key: str
    value: str = ""
    type: str = "STRING"
    properties: dict[str, str] = Field(default_factory=dict)

    @property
    def is_advanced(self) -> bool:
        return self.properties.get("ADVANCED") == "1"

    @property
    def help_string(self) -> str:
        return self.properties.get("HELPSTRING", "")


class CacheReply(CMakeBaseModel):
    """Reply payload of a ``cache`` request."""

    cache: list[CacheValue] = Field(default_factory=list)
