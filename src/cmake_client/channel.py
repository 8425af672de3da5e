"""Local channel between client and server: named pipe or Unix domain socket."""

from __future__ import annotations

import asyncio
import contextlib
import os
from pathlib import Path
import sys
import tempfile
from typing import TYPE_CHECKING

from cmake_client.exceptions import ChannelConnectError
from cmake_client.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable


logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


def channel_address(
    name: str,
    pid: int | None = None,
    *,
    platform: str = sys.platform,
    tmp_dir: str | Path | None = None,
) -> str:
    """Return a channel address unique to the client name and this process.

    Windows gets a named pipe, everything else a socket file in the temp dir.
    """
    pid = os.getpid() if pid is None else pid
    if platform == "win32":
        return f"\\\\?\\pipe\\{name}-{pid}-cmake"
    return str(Path(tmp_dir or tempfile.gettempdir()) / f"{name}-{pid}-cmake.sock")


def is_socket_file(address: str) -> bool:
    """Whether the address refers to a filesystem entry that needs cleanup."""
    return not address.startswith("\\\\")


async def _open_stream(address: str) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    if sys.platform == "win32":
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(loop=loop)
        protocol = asyncio.StreamReaderProtocol(reader, loop=loop)
        transport, _ = await loop.create_pipe_connection(lambda: protocol, address)  # type: ignore[attr-defined]
        writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        return reader, writer
    return await asyncio.open_unix_connection(address)


class Channel:
    """Open duplex byte stream to the server."""

    def __init__(
        self,
        address: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self.address = address
        self._reader = reader
        self._writer = writer
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._writer.is_closing()

    async def read(self) -> bytes:
        """Read the next chunk; an empty result means the peer closed."""
        return await self._reader.read(READ_CHUNK_SIZE)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        with contextlib.suppress(ConnectionError, OSError):
            await self._writer.wait_closed()


async def connect_channel(
    address: str,
    *,
    attempts: int = 20,
    initial_delay: float = 0.05,
    max_delay: float = 1.0,
    backoff: float = 2.0,
    abort_reason: Callable[[], str | None] | None = None,
) -> Channel:
    """Connect to a freshly spawned server, retrying while it warms up.

    Waits ``initial_delay`` before the first attempt and multiplies the delay
    by ``backoff`` (capped at ``max_delay``) after every refused attempt.

    Args:
        address: Pipe name or socket path
        attempts: Maximum number of connection attempts
        initial_delay: Seconds to wait before the first attempt
        max_delay: Upper bound for the delay between attempts
        backoff: Delay multiplier applied after each failed attempt
        abort_reason: Checked before every attempt; a non-None result (e.g.
            "server exited with code 1") stops retrying immediately

    Raises:
        ChannelConnectError: If no attempt succeeded
    """
    delay = initial_delay
    last_error = "no attempt made"
    for attempt in range(1, attempts + 1):
        await asyncio.sleep(delay)
        if abort_reason is not None and (reason := abort_reason()) is not None:
            raise ChannelConnectError(address, attempt - 1, reason)
        try:
            reader, writer = await _open_stream(address)
        except OSError as exc:
            last_error = str(exc) or type(exc).__name__
            logger.debug("Channel not ready", address=address, attempt=attempt, error=last_error)
            delay = min(delay * backoff, max_delay)
            continue
        logger.debug("Channel connected", address=address, attempt=attempt)
        return Channel(address, reader, writer)
    raise ChannelConnectError(address, attempts, last_error)
