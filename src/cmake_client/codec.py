"""Framing for the CMake server wire protocol.

Every message is a JSON object bracketed by marker lines::

    [== "CMake Server" ==[
    {"type": "hello", ...}
    ]== "CMake Server" ==]

There is no length header, so the decoder buffers stream chunks until a
complete start/end pair is available.
"""

from __future__ import annotations

from typing import Any

import anyenv

from cmake_client.exceptions import ProtocolDecodeError
from cmake_client.log import get_logger


logger = get_logger(__name__)

START_MARKER = b'[== "CMake Server" ==['
END_MARKER = b']== "CMake Server" ==]'


def encode_frame(payload: dict[str, Any]) -> bytes:
    """Wrap a message into a complete frame."""
    body = anyenv.dump_json(payload)
    return b"\n" + START_MARKER + b"\n" + body.encode("utf-8") + b"\n" + END_MARKER + b"\n"


def decode_payload(body: bytes) -> dict[str, Any]:
    """Parse the content between two markers into a message object."""
    try:
        message = anyenv.load_json(body.decode("utf-8"))
    except (anyenv.JsonLoadError, UnicodeDecodeError) as exc:
        msg = f"Invalid frame payload: {body[:200]!r}"
        raise ProtocolDecodeError(msg) from exc
    if not isinstance(message, dict):
        msg = f"Frame payload is not an object: {type(message).__name__}"
        raise ProtocolDecodeError(msg)
    return message


class FrameDecoder:
    """Incremental decoder reassembling frames split across reads."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of a complete frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        """Add a chunk and return all messages completed by it.

        Bytes outside of a start/end pair are discarded. Malformed payloads
        are logged and skipped, so one bad frame does not poison the stream.
        """
        self._buffer.extend(data)
        messages: list[dict[str, Any]] = []
        while True:
            start = self._buffer.find(START_MARKER)
            if start < 0:
                # Keep a tail that might be the beginning of a split marker.
                keep = len(START_MARKER) - 1
                if len(self._buffer) > keep:
                    del self._buffer[: len(self._buffer) - keep]
                return messages
            body_start = start + len(START_MARKER)
            end = self._buffer.find(END_MARKER, body_start)
            if end < 0:
                if start:
                    del self._buffer[:start]
                return messages
            body = bytes(self._buffer[body_start:end])
            del self._buffer[: end + len(END_MARKER)]
            try:
                messages.append(decode_payload(body))
            except ProtocolDecodeError:
                logger.warning("Dropping malformed frame", size=len(body))
