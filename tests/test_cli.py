"""Tests for the command line interface."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from cmake_client import CMakeClient, MemoryStateStore
from cmake_client import cli as cli_module


runner = CliRunner()


@pytest.fixture
def fake_clients(monkeypatch, process_factory):
    """Make the CLI talk to fake servers."""

    def factory(source, config):
        return CMakeClient(
            source,
            config,
            state_store=MemoryStateStore(),
            process_factory=process_factory,
        )

    monkeypatch.setattr(cli_module, "CMakeClient", factory)


def test_help_lists_commands():
    result = runner.invoke(cli_module.cli, ["--help"])
    assert result.exit_code == 0
    for command in ("configure", "build", "targets", "cache"):
        assert command in result.stdout


def test_targets_lists_buildable_targets(fake_clients, source_dir, processes):
    result = runner.invoke(cli_module.cli, ["targets", str(source_dir)])
    assert result.exit_code == 0, result.output
    assert "demo" in result.stdout
    assert "  app [EXECUTABLE]" in result.stdout
    assert "  gen [EXECUTABLE]" in result.stdout
    assert "headers" not in result.stdout
    assert processes[-1].server.request_types == [
        "handshake",
        "configure",
        "compute",
        "codemodel",
        "cache",
    ]


def test_cache_shows_single_entry(fake_clients, source_dir):
    result = runner.invoke(cli_module.cli, ["cache", str(source_dir), "CMAKE_BUILD_TYPE"])
    assert result.exit_code == 0, result.output
    assert "CMAKE_BUILD_TYPE:STRING=Debug" in result.stdout


def test_cache_fails_for_unknown_entry(fake_clients, source_dir):
    result = runner.invoke(cli_module.cli, ["cache", str(source_dir), "NOPE"])
    assert result.exit_code == 1


def test_errors_exit_with_code_one(fake_clients, source_dir, server_options):
    server_options["versions"] = []
    result = runner.invoke(cli_module.cli, ["configure", str(source_dir)])
    assert result.exit_code == 1
    assert "did not offer any protocol version" in result.output
