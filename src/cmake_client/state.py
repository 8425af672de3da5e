"""Client lifecycle states."""

from __future__ import annotations

from enum import IntEnum


class ClientState(IntEnum):
    """Totally ordered client state.

    Operations compare against these values (``state >= RUNNING``), so the
    declaration order is part of the contract.
    """

    STOPPED = 0
    CONNECTED = 1
    RUNNING = 2
    CONFIGURED = 3
    GENERATED = 4
    BUILDING = 5
