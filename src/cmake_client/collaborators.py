"""Interfaces of the collaborators the client talks to, plus default implementations.

The client never renders UI, matches diagnostics or decides where selection
state lives. It hands text to an ``OutputSink``, build lines to
``DiagnosticMatcher`` instances and selection records to a ``StateStore``.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Final, Protocol, runtime_checkable

import anyenv
from platformdirs import user_state_dir

from cmake_client.log import get_logger


APP_NAME: Final = "cmake-client"
STATE_FILE: Final = Path(user_state_dir(APP_NAME)) / "workspace-state.json"

logger = get_logger(__name__)


@runtime_checkable
class OutputSink(Protocol):
    """Receives human readable server and build output, one line at a time."""

    def append_line(self, line: str) -> None: ...


@runtime_checkable
class DiagnosticMatcher(Protocol):
    """Turns build output lines into structured problem records."""

    def clear(self) -> None: ...

    def match(self, line: str) -> None: ...

    def get_diagnostics(self) -> Sequence[Any]: ...


@runtime_checkable
class StateStore(Protocol):
    """Key-value storage for persisted client state."""

    def get(self, key: str) -> dict[str, Any] | None: ...

    def update(self, key: str, value: dict[str, Any]) -> None: ...


class LoggingOutputSink:
    """Output sink writing every line to a structlog logger."""

    def __init__(self, name: str):
        self.log = logger.bind(client=name)

    def append_line(self, line: str) -> None:
        self.log.info(line)


class MemoryStateStore:
    """State store keeping records in a dict."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None):
        self.data: dict[str, dict[str, Any]] = dict(initial or {})

    def get(self, key: str) -> dict[str, Any] | None:
        return self.data.get(key)

    def update(self, key: str, value: dict[str, Any]) -> None:
        self.data[key] = value


class JsonFileStateStore:
    """State store persisting all records in a single JSON document."""

    def __init__(self, path: str | Path = STATE_FILE):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = anyenv.load_json(self.path.read_text(encoding="utf-8"))
        except anyenv.JsonLoadError:
            logger.warning("Ignoring unreadable state file", path=str(self.path))
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> dict[str, Any] | None:
        value = self._load().get(key)
        return value if isinstance(value, dict) else None

    def update(self, key: str, value: dict[str, Any]) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(anyenv.dump_json(data, indent=True), encoding="utf-8")
