"""Test configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
import shutil
import tempfile
from typing import Any
from uuid import uuid4

from psygnal import Signal
import pytest

from cmake_client import ClientConfig, CMakeClient, MemoryStateStore
from cmake_client.channel import connect_channel
from cmake_client.codec import FrameDecoder, encode_frame
from cmake_client.session import ProtocolSession


DEFAULT_PROJECTS: list[dict[str, Any]] = [
    {
        "name": "demo",
        "sourceDirectory": "/src/demo",
        "buildDirectory": "/src/demo/build",
        "targets": [
            {"name": "headers", "type": "INTERFACE_LIBRARY"},
            {"name": "app", "type": "EXECUTABLE", "artifacts": ["/src/demo/build/app"]},
            {"name": "core", "type": "STATIC_LIBRARY"},
        ],
    },
    {
        "name": "tools",
        "targets": [{"name": "gen", "type": "EXECUTABLE"}],
    },
]


def codemodel_payload(
    *configurations: str,
    projects: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a ``codemodel`` reply payload with the same projects per configuration."""
    names = configurations or ("Debug",)
    content = DEFAULT_PROJECTS if projects is None else projects
    return {"configurations": [{"name": name, "projects": content} for name in names]}


class FakeCMakeServer:
    """In-process stand-in for ``cmake -E server`` on a Unix socket."""

    def __init__(
        self,
        address: str,
        *,
        versions: list[tuple[int, int]] | None = None,
        send_hello: bool = True,
    ) -> None:
        self.address = address
        self.versions = versions if versions is not None else [(1, 0)]
        self.send_hello = send_hello
        self.requests: list[dict[str, Any]] = []
        self.codemodel: dict[str, Any] = codemodel_payload()
        self.cache: list[dict[str, Any]] = [
            {"key": "CMAKE_BUILD_TYPE", "value": "Debug", "type": "STRING", "properties": {}},
        ]
        self.errors: dict[str, str] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.connected = asyncio.Event()
        self._server: asyncio.Server | None = None
        self._writers: list[asyncio.StreamWriter] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def request_types(self) -> list[str]:
        return [r["type"] for r in self.requests]

    async def start(self) -> None:
        self._server = await asyncio.start_unix_server(self._handle, path=self.address)

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        self._writers.clear()
        for task in list(self._tasks):
            task.cancel()
        if self._server is not None:
            self._server.close()
            with contextlib.suppress(Exception):
                await asyncio.wait_for(self._server.wait_closed(), timeout=1)
            self._server = None
        Path(self.address).unlink(missing_ok=True)

    def disconnect(self) -> None:
        """Drop client connections while the server keeps running."""
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    async def send(self, payload: dict[str, Any]) -> None:
        """Push an unsolicited message to every connected client."""
        for writer in self._writers:
            writer.write(encode_frame(payload))
            await writer.drain()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        self.connected.set()
        if self.send_hello:
            versions = [{"major": major, "minor": minor} for major, minor in self.versions]
            writer.write(encode_frame({"type": "hello", "supportedProtocolVersions": versions}))
            await writer.drain()
        decoder = FrameDecoder()
        with contextlib.suppress(ConnectionError):
            while chunk := await reader.read(65536):
                for request in decoder.feed(chunk):
                    self.requests.append(request)
                    task = asyncio.create_task(self._respond(writer, request))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)

    async def _respond(self, writer: asyncio.StreamWriter, request: dict[str, Any]) -> None:
        request_type = request["type"]
        if request_type == "configure":
            writer.write(
                encode_frame({
                    "type": "progress",
                    "inReplyTo": "configure",
                    "progressMessage": "Configuring",
                    "progressMinimum": 0,
                    "progressMaximum": 1000,
                    "progressCurrent": 500,
                })
            )
            writer.write(
                encode_frame({
                    "type": "message",
                    "inReplyTo": "configure",
                    "message": "-- Configuring done",
                })
            )
        if gate := self.gates.get(request_type):
            await gate.wait()
        if request_type in self.errors:
            payload: dict[str, Any] = {
                "type": "error",
                "inReplyTo": request_type,
                "errorMessage": self.errors[request_type],
            }
        else:
            payload = {"type": "reply", "inReplyTo": request_type}
            if request_type == "codemodel":
                payload.update(self.codemodel)
            elif request_type == "cache":
                payload["cache"] = self.cache
        if writer.is_closing():
            return
        writer.write(encode_frame(payload))
        with contextlib.suppress(ConnectionError):
            await writer.drain()


class FakeProcess:
    """Server process supervisor running a ``FakeCMakeServer`` instead of cmake."""

    exited = Signal(int)

    def __init__(self, address: str, **server_options: Any) -> None:
        self.address = address
        self.server = FakeCMakeServer(address, **server_options)
        self.started = False
        self.killed = False
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def exit_reason(self) -> str | None:
        return None if self._running else "fake server not running"

    async def start(self) -> None:
        await self.server.start()
        self.started = True
        self._running = True

    async def stop(self) -> None:
        await self.server.stop()
        self._terminate(0)

    def kill(self) -> None:
        self.killed = True
        self._terminate(-9)

    async def crash(self, code: int = 1) -> None:
        """Simulate the server dying on its own."""
        await self.server.stop()
        self._terminate(code)

    def _terminate(self, code: int) -> None:
        if self._running:
            self._running = False
            self.exited.emit(code)


class RecordingSink:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def append_line(self, line: str) -> None:
        self.lines.append(line)


class KeywordMatcher:
    """Diagnostic matcher collecting lines that contain a keyword."""

    def __init__(self, keyword: str = "warning:") -> None:
        self.keyword = keyword
        self.cleared = 0
        self.seen: list[str] = []

    def clear(self) -> None:
        self.cleared += 1
        self.seen.clear()

    def match(self, line: str) -> None:
        if self.keyword in line:
            self.seen.append(line)

    def get_diagnostics(self) -> list[str]:
        return list(self.seen)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture(autouse=True)
def reset_package_logging():
    """Undo handlers and levels installed by configure_logging."""
    yield
    package_logger = logging.getLogger("cmake_client")
    package_logger.handlers.clear()
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def until():
    """Poll a predicate until it holds (fails after a timeout)."""
    return wait_until


@pytest.fixture
def make_codemodel():
    return codemodel_payload


@pytest.fixture
def socket_path():
    directory = tempfile.mkdtemp(prefix="cmc-")
    yield str(Path(directory) / "server.sock")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
async def make_server(socket_path):
    """Start a fake server with custom options."""
    servers: list[FakeCMakeServer] = []

    async def factory(**options: Any) -> FakeCMakeServer:
        server = FakeCMakeServer(socket_path, **options)
        await server.start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        await server.stop()


@pytest.fixture
async def fake_server(socket_path):
    server = FakeCMakeServer(socket_path)
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def session(fake_server):
    channel = await connect_channel(fake_server.address, initial_delay=0.001)
    session = ProtocolSession(channel)
    session.listen()
    await session.wait_for_hello()
    yield session
    await session.close()


@pytest.fixture
def source_dir(tmp_path):
    directory = tmp_path / f"proj{uuid4().hex[:8]}"
    directory.mkdir()
    (directory / "CMakeLists.txt").write_text("project(demo)\n")
    return directory


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def matcher():
    return KeywordMatcher()


@pytest.fixture
def server_options() -> dict[str, Any]:
    """Options for the fake server of the next started client."""
    return {}


@pytest.fixture
def processes() -> list[FakeProcess]:
    return []


@pytest.fixture
def process_factory(processes, server_options):
    def factory(cmake_path: str, address: str, env: dict[str, str]) -> FakeProcess:
        process = FakeProcess(address, **server_options)
        processes.append(process)
        return process

    return factory


@pytest.fixture
async def make_client(source_dir, store, sink, matcher, process_factory):
    """Create clients backed by fake servers; extra keywords override config fields."""
    clients: list[CMakeClient] = []

    def factory(**overrides: Any) -> CMakeClient:
        settings = {"connect_initial_delay": 0.005, "connect_max_delay": 0.05, **overrides}
        client = CMakeClient(
            source_dir,
            ClientConfig(**settings),
            state_store=store,
            output=sink,
            matchers=[matcher],
            process_factory=process_factory,
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.stop()


@pytest.fixture
async def client(make_client):
    return make_client()
