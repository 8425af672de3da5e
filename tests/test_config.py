"""Tests for client configuration and state stores."""

from __future__ import annotations

from pydantic import ValidationError
import pytest

from cmake_client import ClientConfig, JsonFileStateStore


def test_defaults():
    config = ClientConfig()
    assert config.cmake_path == "cmake"
    assert config.generator == "Ninja"
    assert not config.is_configuration_generator
    assert config.cache_arguments() == []
    assert not config.reconfigure_on_change


def test_visual_studio_is_multi_config():
    assert ClientConfig(generator="Visual Studio 17 2022").is_configuration_generator


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CMC_BASE", "base")
    config = ClientConfig(
        configuration_environment={"CC": "clang"},
        build_environment={"CMC_BASE": "override"},
    )
    server_env = config.server_environment()
    assert server_env["CC"] == "clang"
    assert server_env["CMC_BASE"] == "base"
    assert config.build_process_environment()["CMC_BASE"] == "override"


def test_from_file(tmp_path):
    path = tmp_path / "cmake-client.yml"
    path.write_text(
        "generator: Unix Makefiles\n"
        "build_directory: out\n"
        "cache_entries:\n"
        "  BUILD_TESTING: 'OFF'\n"
        "build_types: [Profile]\n"
    )
    config = ClientConfig.from_file(path)
    assert config.generator == "Unix Makefiles"
    assert config.build_directory == "out"
    assert config.cache_arguments() == ["-DBUILD_TESTING=OFF"]
    assert config.build_types == ["Profile"]


def test_from_file_rejects_invalid_values(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("connect_attempts: 0\n")
    with pytest.raises(ValueError, match="Failed to load"):
        ClientConfig.from_file(path)


def test_config_is_frozen():
    config = ClientConfig()
    with pytest.raises(ValidationError):
        config.generator = "Xcode"


def test_json_state_store_round_trip(tmp_path):
    store = JsonFileStateStore(tmp_path / "state" / "workspace.json")
    assert store.get("demo") is None
    store.update("demo", {"currentProjectName": "demo"})
    store.update("other", {"currentBuildType": "Release"})
    reopened = JsonFileStateStore(tmp_path / "state" / "workspace.json")
    assert reopened.get("demo") == {"currentProjectName": "demo"}
    assert reopened.get("other") == {"currentBuildType": "Release"}


def test_json_state_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "workspace.json"
    path.write_text("{not json")
    store = JsonFileStateStore(path)
    assert store.get("demo") is None
    store.update("demo", {"a": 1})
    assert store.get("demo") == {"a": 1}
