"""Command line interface for driving a CMake server."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Annotated

import typer as t

from cmake_client.client import CMakeClient
from cmake_client.config import ClientConfig
from cmake_client.exceptions import CMakeClientError
from cmake_client.log import configure_logging


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


cli = t.Typer(help="Drive a CMake server from the command line", no_args_is_help=True)

SOURCE_HELP = "Source directory or top level CMakeLists.txt"
CONFIG_HELP = "Path to a YAML client configuration file"
VERBOSE_HELP = "Enable debug logging"

SourceArg = Annotated[str, t.Argument(help=SOURCE_HELP)]
ConfigOpt = Annotated[str | None, t.Option("--config", "-c", help=CONFIG_HELP)]
VerboseOpt = Annotated[bool, t.Option("--verbose", "-v", help=VERBOSE_HELP)]


def _run(
    source: str,
    config_path: str | None,
    verbose: bool,
    action: Callable[[CMakeClient], Awaitable[int]],
) -> None:
    configure_logging("DEBUG" if verbose else "INFO")
    config = ClientConfig.from_file(config_path) if config_path else ClientConfig()

    async def main() -> int:
        async with CMakeClient(source, config) as client:
            await client.generate()
            await client.update_model()
            return await action(client)

    try:
        code = asyncio.run(main())
    except CMakeClientError as e:
        t.echo(f"Error: {e}", err=True)
        raise t.Exit(1) from e
    raise t.Exit(code)


@cli.command("configure")
def configure_command(
    source: SourceArg,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Configure and generate the build system."""

    async def action(client: CMakeClient) -> int:
        t.echo(f"Generated {client.build_directory} ({client.build_type})")
        return 0

    _run(source, config, verbose, action)


@cli.command("build")
def build_command(
    source: SourceArg,
    target: Annotated[str | None, t.Option("--target", "-t", help="Target to build")] = None,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Generate if needed, then build a target (default: all)."""

    async def action(client: CMakeClient) -> int:
        result = await client.build(target)
        if result is None:
            return 1
        return result.return_code

    _run(source, config, verbose, action)


@cli.command("targets")
def targets_command(
    source: SourceArg,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """List projects and their buildable targets."""

    async def action(client: CMakeClient) -> int:
        for project in client.projects:
            t.echo(project.name)
            for target in project.targets:
                if target.is_buildable:
                    t.echo(f"  {target.name} [{target.type}]")
        return 0

    _run(source, config, verbose, action)


@cli.command("cache")
def cache_command(
    source: SourceArg,
    key: Annotated[str | None, t.Argument(help="Show only this cache entry")] = None,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Show CMake cache entries."""

    async def action(client: CMakeClient) -> int:
        if key is not None:
            value = client.get_cache_value(key)
            if value is None:
                t.echo(f"No cache entry {key!r}", err=True)
                return 1
            t.echo(f"{value.key}:{value.type}={value.value}")
            return 0
        for entry in client.cache.values():
            t.echo(f"{entry.key}:{entry.type}={entry.value}")
        return 0

    _run(source, config, verbose, action)


if __name__ == "__main__":
    cli()
