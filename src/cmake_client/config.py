"""Client configuration."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final, Self

from pydantic import ConfigDict, Field
from schemez import Schema


DEFAULT_BUILD_TYPES: Final = ("Debug", "Release", "RelWithDebInfo", "MinSizeRel")


class ClientConfig(Schema):
    """Settings for one CMake server client."""

    cmake_path: str = Field(default="cmake", title="CMake executable")
    """Path or name of the cmake binary, used for the server and for builds."""

    build_directory: str = Field(default="build", title="Build directory")
    """Build directory, relative to the source directory unless absolute."""

    generator: str = Field(default="Ninja", title="Generator")

    extra_generator: str | None = Field(default=None, title="Extra generator")

    generator_platform: str | None = Field(default=None, title="Generator platform")

    generator_toolset: str | None = Field(default=None, title="Generator toolset")

    build_types: list[str] = Field(default_factory=list, title="Extra build types")
    """Build types offered in addition to the defaults for single-config generators."""

    cache_entries: dict[str, str] = Field(default_factory=dict, title="Cache entries")
    """Passed to configure as ``-D<key>=<value>``."""

    configuration_environment: dict[str, str] = Field(
        default_factory=dict,
        title="Configuration environment",
    )
    """Environment overrides for the server process."""

    build_environment: dict[str, str] = Field(default_factory=dict, title="Build environment")
    """Environment overrides for the build process."""

    reconfigure_on_change: bool = Field(default=False, title="Reconfigure on change")
    """Run configure, generate and a model update when the server reports a dirty tree."""

    connect_attempts: int = Field(default=20, ge=1, title="Connect attempts")
    """Maximum number of connection attempts after spawning the server."""

    connect_initial_delay: float = Field(default=0.05, gt=0, title="Initial connect delay")
    """Seconds to wait before the first attempt; doubled after each failure."""

    connect_max_delay: float = Field(default=1.0, gt=0, title="Maximum connect delay")

    connect_backoff: float = Field(default=2.0, ge=1.0, title="Connect backoff factor")

    model_config = ConfigDict(frozen=True)

    @property
    def is_configuration_generator(self) -> bool:
        """Whether the generator builds all configurations from one tree."""
        return self.generator.startswith("Visual Studio")

    def server_environment(self) -> dict[str, str]:
        return {**os.environ, **self.configuration_environment}

    def build_process_environment(self) -> dict[str, str]:
        return {**os.environ, **self.build_environment}

    def cache_arguments(self) -> list[str]:
        return [f"-D{key}={value}" for key, value in self.cache_entries.items()]

    @classmethod
    def from_file(cls, path: str | Path) -> Self:
        """Load configuration from a YAML file.

        Raises:
            ValueError: If loading fails
        """
        import yamling

        try:
            data = yamling.load_yaml_file(path)
            return cls.model_validate(data or {})
        except Exception as exc:
            msg = f"Failed to load client config from {path}"
            raise ValueError(msg) from exc
