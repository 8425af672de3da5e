"""Protocol session on top of an open channel."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from psygnal import Signal

from cmake_client.codec import FrameDecoder, encode_frame
from cmake_client.exceptions import (
    ChannelClosedError,
    CMakeClientError,
    ProtocolDecodeError,
    ProtocolNotReadyError,
    RequestPendingError,
    ServerRequestError,
)
from cmake_client.log import get_logger
from cmake_client.models import (
    CacheReply,
    CacheRequest,
    CodeModel,
    CodeModelRequest,
    ComputeRequest,
    ConfigureRequest,
    DisplayMessage,
    ErrorMessage,
    HelloMessage,
    ProgressMessage,
    ReplyMessage,
    SignalMessage,
    parse_message,
)


if TYPE_CHECKING:
    from cmake_client.channel import Channel
    from cmake_client.models import CacheValue, HandshakeRequest, ProtocolVersion, Request


logger = get_logger(__name__)


class ProtocolSession:
    """Framed request/reply session with a CMake server.

    Replies carry no request id, only the request type (``inReplyTo``), so
    at most one request per type can be outstanding. Issuing a second one
    while the first is pending raises ``RequestPendingError``; nothing is
    queued.
    """

    progress_received = Signal(ProgressMessage)
    """Emitted for every progress report."""

    signal_received = Signal(SignalMessage)
    """Emitted for unsolicited server signals such as ``dirty``."""

    message_received = Signal(DisplayMessage)
    """Emitted for human readable server output."""

    closed = Signal()
    """Emitted once when the channel is gone."""

    def __init__(self, channel: Channel) -> None:
        self._channel = channel
        self._decoder = FrameDecoder()
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._hello: asyncio.Future[HelloMessage] = asyncio.get_running_loop().create_future()
        # Consumers may never await hello when the channel dies early.
        self._hello.add_done_callback(_consume_exception)
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_lock = asyncio.Lock()
        self._protocol_version: ProtocolVersion | None = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def hello_received(self) -> bool:
        return self._hello.done() and not self._hello.cancelled() and not self._hello.exception()

    @property
    def protocol_version(self) -> ProtocolVersion | None:
        """Version committed by the handshake; None before it completed."""
        return self._protocol_version

    @property
    def pending_requests(self) -> list[str]:
        return list(self._pending)

    def listen(self) -> None:
        """Start reading from the channel."""
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())

    async def wait_for_hello(self) -> HelloMessage:
        """Wait for the server's hello message."""
        return await asyncio.shield(self._hello)

    async def close(self) -> None:
        """Close the channel and reject everything still pending."""
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        await self._channel.close()
        self._handle_closed()

    async def request(self, request: Request) -> dict[str, Any]:
        """Send a request and wait for its reply payload.

        Raises:
            ProtocolNotReadyError: Before hello or after the channel closed
            RequestPendingError: If a request of the same type is outstanding
            ServerRequestError: If the server answered with an error
            ChannelClosedError: If the channel closed before the reply arrived
        """
        if self._closed or self._channel.closed:
            msg = "Channel to CMake server is closed"
            raise ProtocolNotReadyError(msg)
        if not self.hello_received:
            msg = "CMake server has not sent its hello message yet"
            raise ProtocolNotReadyError(msg)
        if request.type in self._pending:
            raise RequestPendingError(request.type)

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request.type] = future
        logger.debug("Sending request", type=request.type)
        async with self._writer_lock:
            try:
                await self._channel.write(encode_frame(request.to_payload()))
            except (ConnectionError, OSError) as exc:
                self._pending.pop(request.type, None)
                raise ChannelClosedError from exc
        try:
            return await future
        finally:
            if self._pending.get(request.type) is future:
                del self._pending[request.type]

    async def handshake(self, request: HandshakeRequest) -> ProtocolVersion:
        """Commit to a protocol version.

        Returns:
            The protocol version the session is now bound to
        """
        if self._protocol_version is not None:
            msg = f"Handshake already completed with protocol {self._protocol_version}"
            raise CMakeClientError(msg)
        await self.request(request)
        self._protocol_version = request.protocol_version
        logger.info("Handshake completed", protocol=str(request.protocol_version))
        return request.protocol_version

    async def configure(self, cache_arguments: list[str] | None = None) -> None:
        await self.request(ConfigureRequest(cache_arguments=cache_arguments or []))

    async def compute(self) -> None:
        await self.request(ComputeRequest())

    async def codemodel(self) -> CodeModel:
        payload = await self.request(CodeModelRequest())
        try:
            return CodeModel.model_validate(payload)
        except ValidationError as exc:
            msg = f"Malformed codemodel reply: {exc.error_count()} validation error(s)"
            raise ProtocolDecodeError(msg) from exc

    async def cache(self) -> list[CacheValue]:
        payload = await self.request(CacheRequest())
        try:
            return CacheReply.model_validate(payload).cache
        except ValidationError as exc:
            msg = f"Malformed cache reply: {exc.error_count()} validation error(s)"
            raise ProtocolDecodeError(msg) from exc

    async def _read_loop(self) -> None:
        try:
            while chunk := await self._channel.read():
                for data in self._decoder.feed(chunk):
                    self._dispatch(data)
        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError) as exc:
            logger.warning("Channel read failed", error=str(exc))
        except Exception:
            logger.exception("Reader loop failed")
        finally:
            self._handle_closed()

    def _dispatch(self, data: dict[str, Any]) -> None:
        try:
            message = parse_message(data)
        except ValidationError:
            logger.warning("Ignoring unknown message", type=data.get("type"))
            return

        match message:
            case HelloMessage():
                if self._hello.done():
                    logger.warning("Ignoring repeated hello message")
                else:
                    self._hello.set_result(message)
            case ReplyMessage(in_reply_to=request_type):
                future = self._pending.pop(request_type, None)
                if future is None or future.done():
                    logger.warning("Ignoring reply without pending request", type=request_type)
                else:
                    future.set_result(message.payload)
            case ErrorMessage(in_reply_to=request_type, error_message=error):
                future = self._pending.pop(request_type, None)
                if future is None or future.done():
                    logger.warning("Ignoring unsolicited error", type=request_type, error=error)
                else:
                    future.set_exception(ServerRequestError(request_type, error))
            case ProgressMessage():
                self._emit(self.progress_received, message)
            case SignalMessage():
                self._emit(self.signal_received, message)
            case DisplayMessage():
                self._emit(self.message_received, message)

    def _emit(self, signal: Any, message: Any) -> None:
        try:
            signal.emit(message)
        except Exception:
            logger.exception("Observer failed", type=message.type)

    def _handle_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug("Session closed", pending=list(self._pending))
        if not self._hello.done():
            self._hello.set_exception(ChannelClosedError())
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ChannelClosedError())
        self._pending.clear()
        self.closed.emit()


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
