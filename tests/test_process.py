"""Tests for the server process supervisor with real subprocesses."""

from __future__ import annotations

from pathlib import Path
import stat
import sys

import pytest

from cmake_client import ClientConfig, ClientState, CMakeClient
from cmake_client.exceptions import ChannelConnectError, ServerProcessError
from cmake_client.process import ServerProcess, server_command


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shebang script")


def test_server_command():
    assert server_command("cmake", "/tmp/a.sock") == [
        "cmake",
        "-E",
        "server",
        "--pipe=/tmp/a.sock",
        "--experimental",
    ]


async def test_missing_binary_raises(socket_path):
    process = ServerProcess("/nonexistent/bin/cmake", socket_path)
    with pytest.raises(ServerProcessError, match="not found"):
        await process.start()
    assert not process.running
    assert process.exit_reason() == "server process not started"


async def test_exit_is_reported(socket_path, until):
    # The interpreter rejects the server arguments and exits right away.
    process = ServerProcess(sys.executable, socket_path)
    codes = []
    process.exited.connect(codes.append)
    await process.start()
    await until(lambda: bool(codes))
    assert codes == [process.returncode]
    assert codes[0] != 0
    assert process.exit_reason() == f"server process exited with code {codes[0]}"
    Path(socket_path).write_text("")
    await process.stop()
    assert not Path(socket_path).exists()


@posix_only
async def test_stop_kills_running_server(socket_path, tmp_path):
    script = tmp_path / "sleepy-cmake"
    script.write_text(f"#!{sys.executable}\nimport time\ntime.sleep(30)\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    process = ServerProcess(str(script), socket_path)
    await process.start()
    assert process.running
    assert process.pid is not None
    assert process.exit_reason() is None
    await process.stop()
    assert not process.running
    assert process.pid is None


async def test_client_start_fails_when_server_dies(source_dir, store):
    config = ClientConfig(
        cmake_path=sys.executable, connect_initial_delay=0.01, connect_attempts=100
    )
    client = CMakeClient(source_dir, config, state_store=store)
    with pytest.raises(ChannelConnectError, match="exited with code"):
        await client.start()
    assert client.state == ClientState.STOPPED


async def test_client_start_fails_without_cmake(source_dir, store):
    config = ClientConfig(cmake_path="/nonexistent/bin/cmake")
    client = CMakeClient(source_dir, config, state_store=store)
    with pytest.raises(ServerProcessError):
        await client.start()
    assert client.state == ClientState.STOPPED
    await client.stop()
