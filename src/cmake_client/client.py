"""CMake server client."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import contextlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from psygnal import Signal

from cmake_client.channel import channel_address, connect_channel
from cmake_client.collaborators import JsonFileStateStore, LoggingOutputSink
from cmake_client.config import DEFAULT_BUILD_TYPES, ClientConfig
from cmake_client.exceptions import (
    BuildError,
    BuildInProgressError,
    CMakeClientError,
    NotConnectedError,
    NotGeneratedError,
)
from cmake_client.filesystem import remove_tree
from cmake_client.log import get_logger
from cmake_client.models import (
    DisplayMessage,
    HandshakeRequest,
    ProgressMessage,
    SignalMessage,
)
from cmake_client.process import ServerProcess
from cmake_client.reconciler import ModelReconciler
from cmake_client.session import ProtocolSession
from cmake_client.state import ClientState


if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Self

    from psygnal import SignalInstance

    from cmake_client.collaborators import DiagnosticMatcher, OutputSink, StateStore
    from cmake_client.models import CacheValue, CodeModel, Project, ProtocolVersion, Target


logger = get_logger(__name__)

STREAM_LIMIT = 1024 * 1024


class SupervisedProcess(Protocol):
    """What the client needs from a server process supervisor."""

    address: str

    @property
    def exited(self) -> SignalInstance: ...

    @property
    def running(self) -> bool: ...

    def exit_reason(self) -> str | None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def kill(self) -> None: ...


ProcessFactory = Callable[[str, str, dict[str, str]], SupervisedProcess]


@dataclass
class BuildResult:
    """Outcome of a finished build process."""

    command: list[str]
    return_code: int
    diagnostics: list[Any] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.return_code == 0


class CMakeClient:
    """Client driving one CMake server for one source tree.

    Operations must follow the state order
    STOPPED -> CONNECTED -> RUNNING -> CONFIGURED -> GENERATED -> BUILDING.
    ``configure`` and ``generate`` are serialized by a single lock; ``build``
    runs outside of it and is guarded by the BUILDING state instead.

    Example:
        async with CMakeClient("/path/to/project") as client:
            await client.generate()
            await client.update_model()
            result = await client.build(client.target.name if client.target else None)
    """

    model_changed = Signal(object)
    """Emitted with the client after every completed model update."""

    state_changed = Signal(ClientState)
    """Emitted whenever the client state changes."""

    progress_received = Signal(ProgressMessage)
    signal_received = Signal(SignalMessage)
    message_received = Signal(DisplayMessage)

    build_line = Signal(str)
    """Emitted for every stdout/stderr line of a running build."""

    def __init__(
        self,
        source: str | Path,
        config: ClientConfig | None = None,
        *,
        state_store: StateStore | None = None,
        output: OutputSink | None = None,
        matchers: Sequence[DiagnosticMatcher] = (),
        process_factory: ProcessFactory = ServerProcess,
    ) -> None:
        """Initialize the client.

        Args:
            source: Source directory or its top level CMakeLists.txt
            config: Client settings, defaults used if omitted
            state_store: Storage for the persisted selection context
            output: Sink for server messages and build output
            matchers: Diagnostic matchers fed with every build output line
            process_factory: Creates the server process supervisor
        """
        source_path = Path(source)
        if source_path.name == "CMakeLists.txt":
            source_path = source_path.parent
        self.config = config or ClientConfig()
        self._source_directory = source_path.as_posix()
        self._build_directory = (source_path / self.config.build_directory).as_posix()
        self._output = output or LoggingOutputSink(self.name)
        self._matchers = list(matchers)
        self._process_factory = process_factory
        self.log = logger.bind(client=self.name)

        self._state = ClientState.STOPPED
        self._process: SupervisedProcess | None = None
        self._session: ProtocolSession | None = None
        self._lock = asyncio.Lock()
        self._start_lock = asyncio.Lock()
        self._regenerate_task: asyncio.Task[None] | None = None
        self._reconciler = ModelReconciler(
            state_store if state_store is not None else JsonFileStateStore(),
            f"{self.name}-context",
        )

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return Path(self._source_directory).name

    @property
    def source_directory(self) -> str:
        return self._source_directory

    @property
    def build_directory(self) -> str:
        return self._build_directory

    @property
    def address(self) -> str:
        return channel_address(self.name)

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def protocol_version(self) -> ProtocolVersion | None:
        return self._session.protocol_version if self._session else None

    @property
    def is_configuration_generator(self) -> bool:
        return self.config.is_configuration_generator

    @property
    def build_types(self) -> list[str]:
        """Build types the user can choose from; empty before the first model."""
        model = self._reconciler.model
        if model is None:
            return []
        if self.is_configuration_generator:
            types = model.configuration_names
        else:
            types = [*DEFAULT_BUILD_TYPES, *self.config.build_types]
        return list(dict.fromkeys(types))

    @property
    def build_type(self) -> str:
        return self._reconciler.build_type

    @build_type.setter
    def build_type(self, value: str) -> None:
        self._reconciler.build_type = value

    @property
    def model(self) -> CodeModel | None:
        return self._reconciler.model

    @property
    def projects(self) -> list[Project]:
        return self._reconciler.projects

    @property
    def project(self) -> Project | None:
        return self._reconciler.project

    @project.setter
    def project(self, value: Project | None) -> None:
        self._reconciler.project = value

    @property
    def project_targets(self) -> list[Target]:
        return self._reconciler.project_targets

    @property
    def project_build_targets(self) -> list[Target]:
        return self._reconciler.project_build_targets

    @property
    def targets(self) -> list[Target]:
        return self._reconciler.targets

    @property
    def target(self) -> Target | None:
        return self._reconciler.target

    @target.setter
    def target(self, value: Target | None) -> None:
        self._reconciler.target = value

    @property
    def cache(self) -> dict[str, CacheValue]:
        return self._reconciler.cache

    def get_cache_value(self, key: str) -> CacheValue | None:
        return self._reconciler.get_cache_value(key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the server, connect and perform the handshake.

        Any failure stops the server again and leaves the client STOPPED.
        """
        async with self._start_lock:
            if self._state >= ClientState.RUNNING:
                return
            if self._process is not None or self._session is not None:
                # Leftovers of a server that died on its own.
                await self._shutdown()
            env = self.config.server_environment()
            process = self._process_factory(self.config.cmake_path, self.address, env)
            process.exited.connect(self._on_process_exit)
            self._process = process
            try:
                await process.start()
                channel = await connect_channel(
                    process.address,
                    attempts=self.config.connect_attempts,
                    initial_delay=self.config.connect_initial_delay,
                    max_delay=self.config.connect_max_delay,
                    backoff=self.config.connect_backoff,
                    abort_reason=process.exit_reason,
                )
                session = ProtocolSession(channel)
                session.progress_received.connect(self._on_progress)
                session.signal_received.connect(self._on_signal)
                session.message_received.connect(self._on_message)
                session.closed.connect(self._on_session_closed)
                self._session = session
                session.listen()
                self._set_state(ClientState.CONNECTED)

                hello = await session.wait_for_hello()
                if not hello.supported_protocol_versions:
                    msg = "CMake server did not offer any protocol version"
                    raise CMakeClientError(msg)
                await session.handshake(self._handshake_request(hello.supported_protocol_versions[0]))
            except BaseException:
                await self._shutdown()
                raise
            self._set_state(ClientState.RUNNING)

    async def stop(self) -> None:
        """Close the channel, kill the server and wait for it to exit."""
        if self._state == ClientState.STOPPED and self._process is None and self._session is None:
            return
        if self._regenerate_task is not None:
            self._regenerate_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, CMakeClientError):
                await self._regenerate_task
            self._regenerate_task = None
        await self._shutdown()

    async def _shutdown(self) -> None:
        session, process = self._session, self._process
        self._session = None
        self._process = None
        if session is not None:
            await session.close()
        if process is not None:
            await process.stop()
        self._set_state(ClientState.STOPPED)

    def _handshake_request(self, version: ProtocolVersion) -> HandshakeRequest:
        return HandshakeRequest(
            protocol_version=version,
            source_directory=self._source_directory,
            build_directory=self._build_directory,
            generator=self.config.generator,
            extra_generator=self.config.extra_generator,
            platform=self.config.generator_platform,
            toolset=self.config.generator_toolset,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def configure(self) -> None:
        """Run the configure step."""
        self._check_ready()
        async with self._lock:
            self._check_ready()
            await self._configure()

    async def generate(self) -> None:
        """Generate the build system, configuring first if never configured."""
        self._check_ready()
        async with self._lock:
            self._check_ready()
            await self._generate()

    async def update_model(self) -> None:
        """Fetch code model and cache and replace the local view of both."""
        self._check_ready()
        if self._state < ClientState.GENERATED:
            raise NotGeneratedError
        session = self._require_session()
        model = await session.codemodel()
        cache = await session.cache()
        self._reconciler.apply(model, cache)
        self.model_changed.emit(self)

    async def build(self, target: str | None = None) -> BuildResult | None:
        """Build the given target (or the default one) with ``cmake --build``.

        Returns None without doing anything if a build is already running.

        Raises:
            NotConnectedError: If the client is not running
            NotGeneratedError: If the build system was not generated yet
            BuildError: If the build process could not be spawned
        """
        if self._state == ClientState.BUILDING:
            self.log.debug("Build already running, ignoring request")
            return None
        if self._state < ClientState.RUNNING:
            raise NotConnectedError
        if self._state < ClientState.GENERATED:
            raise NotGeneratedError

        command = [self.config.cmake_path, *self._build_arguments(target)]
        for matcher in self._matchers:
            matcher.clear()
        self._set_state(ClientState.BUILDING)
        self.log.info("Starting build", command=" ".join(command))
        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=self.config.build_process_environment(),
                    limit=STREAM_LIMIT,
                )
            except OSError as exc:
                msg = f"Failed to start build: {exc}"
                raise BuildError(msg) from exc
            if process.stdout is None or process.stderr is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                msg = "Build process started without output pipes"
                raise BuildError(msg)
            try:
                await asyncio.gather(
                    self._pump_build_output(process.stdout),
                    self._pump_build_output(process.stderr),
                )
                return_code = await process.wait()
            except asyncio.CancelledError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                raise
        finally:
            if self._state == ClientState.BUILDING:
                self._set_state(ClientState.GENERATED)

        diagnostics = [d for matcher in self._matchers for d in matcher.get_diagnostics()]
        self.log.info("Build finished", returncode=return_code, diagnostics=len(diagnostics))
        return BuildResult(command=command, return_code=return_code, diagnostics=diagnostics)

    async def remove_build_directory(self) -> bool:
        """Delete the build directory; the next generate starts from scratch.

        Returns:
            False if there was no build directory
        """
        if self._state == ClientState.BUILDING:
            raise BuildInProgressError
        if self._state > ClientState.RUNNING:
            self._set_state(ClientState.RUNNING)
        return await remove_tree(self._build_directory)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_ready(self) -> None:
        if self._state == ClientState.BUILDING:
            raise BuildInProgressError
        if self._state < ClientState.RUNNING:
            raise NotConnectedError

    def _require_session(self) -> ProtocolSession:
        if self._session is None:
            raise NotConnectedError
        return self._session

    def _set_state(self, state: ClientState) -> None:
        if state == self._state:
            return
        self.log.debug("State changed", old=self._state.name, new=state.name)
        self._state = state
        self.state_changed.emit(state)

    def _configure_arguments(self) -> list[str]:
        args = self.config.cache_arguments()
        if not self.is_configuration_generator and self.build_type:
            args.append(f"-DCMAKE_BUILD_TYPE={self.build_type}")
        return args

    def _build_arguments(self, target: str | None) -> list[str]:
        args = ["--build", self._build_directory]
        if target:
            args.extend(["--target", target])
        if self.is_configuration_generator:
            args.extend(["--config", self.build_type])
        return args

    async def _configure(self) -> None:
        """Configure request; caller holds the lock."""
        await self._require_session().configure(self._configure_arguments())
        self._set_state(ClientState.CONFIGURED)

    async def _generate(self) -> None:
        """Configure if needed, then compute; caller holds the lock."""
        if self._state == ClientState.RUNNING:
            await self._configure()
        await self._require_session().compute()
        self._set_state(ClientState.GENERATED)

    async def _pump_build_output(self, stream: asyncio.StreamReader) -> None:
        while raw := await stream.readline():
            line = raw.decode(errors="replace").rstrip("\r\n")
            self._output.append_line(line)
            for matcher in self._matchers:
                matcher.match(line)
            self.build_line.emit(line)

    async def _regenerate(self) -> None:
        """Configure, generate and update the model after a dirty signal."""
        try:
            async with self._lock:
                if self._state != ClientState.GENERATED:
                    return
                await self._configure()
                await self._generate()
            await self.update_model()
        except CMakeClientError:
            self.log.exception("Automatic reconfigure failed")

    def _on_signal(self, message: SignalMessage) -> None:
        self.signal_received.emit(message)
        if message.name != "dirty" or not self.config.reconfigure_on_change:
            return
        if self._state != ClientState.GENERATED:
            return
        if self._regenerate_task is not None and not self._regenerate_task.done():
            return
        self.log.info("Build tree dirty, reconfiguring")
        self._regenerate_task = asyncio.create_task(self._regenerate())

    def _on_progress(self, message: ProgressMessage) -> None:
        self.progress_received.emit(message)

    def _on_message(self, message: DisplayMessage) -> None:
        self._output.append_line(message.message)
        self.message_received.emit(message)

    def _on_session_closed(self) -> None:
        self._set_state(ClientState.STOPPED)
        if self._process is not None and self._process.running:
            self._process.kill()

    def _on_process_exit(self, code: int) -> None:
        self.log.debug("Server process gone", returncode=code)
        self._set_state(ClientState.STOPPED)
