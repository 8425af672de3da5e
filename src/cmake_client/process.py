"""Supervisor for the ``cmake -E server`` subprocess."""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path

from psygnal import Signal

from cmake_client.channel import is_socket_file
from cmake_client.exceptions import ServerProcessError
from cmake_client.log import get_logger


logger = get_logger(__name__)


def server_command(cmake_path: str, address: str) -> list[str]:
    return [cmake_path, "-E", "server", f"--pipe={address}", "--experimental"]


class ServerProcess:
    """Owns one CMake server subprocess and its channel address.

    Example:
        process = ServerProcess("cmake", "/tmp/demo-123-cmake.sock", env)
        process.exited.connect(lambda code: print("server exited", code))
        await process.start()
        ...
        await process.stop()
    """

    exited = Signal(int)
    """Emitted with the return code once the subprocess has terminated."""

    def __init__(self, cmake_path: str, address: str, env: dict[str, str] | None = None) -> None:
        self.cmake_path = cmake_path
        self.address = address
        self.env = env
        self._process: asyncio.subprocess.Process | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def command(self) -> list[str]:
        return server_command(self.cmake_path, self.address)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def exit_reason(self) -> str | None:
        """Describe why the server is gone, or None while it is alive."""
        if self._process is None:
            return "server process not started"
        if self._process.returncode is not None:
            return f"server process exited with code {self._process.returncode}"
        return None

    async def start(self) -> None:
        """Spawn the server process.

        Raises:
            ServerProcessError: If the process could not be spawned
        """
        if self.running:
            return
        logger.info("Starting CMake server", command=" ".join(self.command))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except FileNotFoundError as exc:
            msg = f"CMake binary not found: {self.cmake_path}"
            raise ServerProcessError(msg) from exc
        except OSError as exc:
            msg = f"Failed to start CMake server: {exc}"
            raise ServerProcessError(msg) from exc

        self._watch_task = asyncio.create_task(self._watch(self._process))
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

    async def stop(self) -> None:
        """Kill the server, wait for it to exit and remove the socket file.

        The wait has no deadline; a process ignoring SIGKILL hangs here.
        """
        process = self._process
        if process is not None:
            if process.returncode is None:
                logger.info("Stopping CMake server", pid=process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
            await process.wait()
            if self._watch_task is not None:
                await self._watch_task
            if self._stderr_task is not None:
                self._stderr_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._stderr_task
        self._process = None
        self._watch_task = None
        self._stderr_task = None
        self.remove_channel_resource()

    def kill(self) -> None:
        """Send a kill signal without waiting."""
        if self._process is not None and self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()

    def remove_channel_resource(self) -> None:
        """Best-effort removal of the socket file; failures are ignored."""
        if not is_socket_file(self.address):
            return
        with contextlib.suppress(OSError):
            Path(self.address).unlink()

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()
        logger.info("CMake server exited", pid=process.pid, returncode=code)
        self.exited.emit(code)

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while line := await process.stderr.readline():
            logger.debug("CMake server stderr", line=line.decode(errors="replace").rstrip())
