"""Channel registry — channel naming and the per-context channel table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

from .errors import CompositionError

if TYPE_CHECKING:
    from .endpoints import Endpoint
    from .message import Message

logger = logging.getLogger(__name__)

INPUT_CHANNEL = "inputChannel"
OUTPUT_CHANNEL = "outputChannel"
ROLES = frozenset({INPUT_CHANNEL, OUTPUT_CHANNEL})


def channel_name(explicit: str | None, base: str, role: str) -> str:
    """Resolve a channel name.

    An explicit name is returned verbatim (shared explicit names are how
    separate flows get connected).  Otherwise the name is derived from the
    owner: ``"{base}.{role}"``.
    """
    if role not in ROLES:
        raise CompositionError(
            f"Unknown channel role {role!r}; expected one of {sorted(ROLES)}."
        )
    if explicit:
        return explicit
    return f"{base}.{role}"


@dataclass
class Channel:
    """One logical pipe.  Many writers, many subscribers."""

    name: str
    subscribers: list = field(default_factory=list)
    writers: list[str] = field(default_factory=list)
    listeners: list[Callable[["Message"], Any]] = field(default_factory=list)

    @property
    def is_dead_end(self) -> bool:
        return not self.subscribers and not self.listeners


class ChannelRegistry:
    """Tracks named channels and generates deterministic default names.

    A registry is written while flows are being registered and only read
    while messages are dispatched.
    """

    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}
        self._counters: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def resolve(self, explicit: str | None, base: str, role: str) -> str:
        """``channel_name()`` that also records the resulting channel."""
        name = channel_name(explicit, base, role)
        self.declare(name)
        return name

    def next_name(self, prefix: str) -> str:
        """Return ``"{prefix}_{n}"`` — n counts per prefix, starting at 1."""
        n = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = n
        return f"{prefix}_{n}"

    # ------------------------------------------------------------------
    # Channel table
    # ------------------------------------------------------------------

    def declare(self, name: str) -> Channel:
        channel = self._channels.get(name)
        if channel is None:
            channel = Channel(name)
            self._channels[name] = channel
        return channel

    def subscribe(self, name: str, endpoint: "Endpoint") -> None:
        self.declare(name).subscribers.append(endpoint)
        logger.debug("channel %r: subscribed %s", name, endpoint.name)

    def add_writer(self, name: str, writer: str) -> None:
        channel = self.declare(name)
        if writer not in channel.writers:
            channel.writers.append(writer)

    def add_listener(self, name: str, listener: Callable[["Message"], Any]) -> None:
        self.declare(name).listeners.append(listener)

    def get(self, name: str) -> Channel | None:
        return self._channels.get(name)

    def subscribers(self, name: str) -> tuple:
        channel = self._channels.get(name)
        return tuple(channel.subscribers) if channel else ()

    def has_consumers(self, name: str) -> bool:
        channel = self._channels.get(name)
        return channel is not None and not channel.is_dead_end

    def names(self) -> list[str]:
        return list(self._channels)

    def __contains__(self, name: object) -> bool:
        return name in self._channels

    def __iter__(self) -> Iterator[Channel]:
        return iter(self._channels.values())

    def __len__(self) -> int:
        return len(self._channels)
