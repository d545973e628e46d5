"""Router — endpoint whose destinations are computed per message.

A router is declared with a discriminant (its logic) and any number of
rules::

    builder.route(
        lambda p: p["type"],
        builder.map(order="orders.in"),
        builder.when("refund", builder.handle(refund)),
        builder.otherwise(builder.handle(park)),
    )

The routing table (map entries plus ``when`` labels compiled to the input
channels of their branch flows) is resolved while the graph is wired.  At
dispatch time ``resolve()`` only evaluates the discriminant and looks the
result up.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping

from .endpoints import Endpoint, EndpointAttributes, EndpointKind
from .errors import CompositionError, RoutingError
from .message import Message

if TYPE_CHECKING:
    from .flow import MessageFlow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rule declarations (children of ``route``)
# ---------------------------------------------------------------------------


class ChannelMapping:
    """Static value → channel table (``map``)."""

    def __init__(self, mapping: Mapping[Any, str] | None = None, **channels: str) -> None:
        routes = dict(mapping or {})
        routes.update(channels)
        for key, channel in routes.items():
            if not isinstance(channel, str) or not channel:
                raise CompositionError(
                    f"map entry {key!r} must name a channel, got {channel!r}."
                )
        self.routes = routes

    def __repr__(self) -> str:
        return f"ChannelMapping({self.routes!r})"


class WhenBranch:
    """``when(label)`` — the nested flow taken when the discriminant equals *label*."""

    def __init__(self, label: Any, flow: "MessageFlow") -> None:
        try:
            hash(label)
        except TypeError as exc:
            raise CompositionError(f"when label {label!r} must be hashable.") from exc
        self.label = label
        self.flow = flow

    def __repr__(self) -> str:
        return f"WhenBranch({self.label!r})"


class OtherwiseBranch:
    """``otherwise`` — default destination when nothing else matches."""

    def __init__(self, flow: "MessageFlow") -> None:
        self.flow = flow

    def __repr__(self) -> str:
        return "OtherwiseBranch()"


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class Router(Endpoint):
    """Routes each message to zero, one or many channels.

    Resolution order:

    1. a routing table (``map`` entries and ``when`` labels) — the
       discriminant result is the lookup key, a list result looks up every
       key;
    2. without a table, a list/tuple/set result is a recipient list;
    3. otherwise the result is a single channel name.

    No match (or a ``None`` / empty result) falls back to ``otherwise``
    when declared, else the message has no destination.  A discriminant
    that raises is a ``RoutingError``, never a silent drop.
    """

    kind = EndpointKind.ROUTE
    routes_dynamically = True

    def __init__(
        self,
        evaluate: Callable[..., Any],
        *rules: object,
        attributes: EndpointAttributes | None = None,
        **options: Any,
    ) -> None:
        super().__init__(evaluate, attributes, **options)
        self.mapping: dict[Any, str] = {}
        self.branches: dict[Any, "MessageFlow"] = {}
        self.otherwise: "MessageFlow | None" = None
        self._routes: dict[Any, str] = {}
        for rule in rules:
            self._add_rule(rule)

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def _add_rule(self, rule: object) -> None:
        if isinstance(rule, ChannelMapping):
            for key, channel in rule.routes.items():
                self._check_key(key)
                self.mapping[key] = channel
        elif isinstance(rule, WhenBranch):
            self._check_key(rule.label)
            self._adopt(rule.flow)
            self.branches[rule.label] = rule.flow
        elif isinstance(rule, OtherwiseBranch):
            if self.otherwise is not None:
                raise CompositionError(
                    f"Router {self.name!r} already declares an 'otherwise' branch."
                )
            self._adopt(rule.flow)
            self.otherwise = rule.flow
        else:
            raise CompositionError(
                f"'{type(rule).__name__}' cannot be a child of 'route'; expected "
                f"map(), when() or otherwise()."
            )

    def _check_key(self, key: Any) -> None:
        if key in self.mapping or key in self.branches:
            raise CompositionError(
                f"Router {self.name!r} declares the label {key!r} more than once."
            )

    def _adopt(self, flow: "MessageFlow") -> None:
        if flow.parent is not None:
            raise CompositionError(
                f"messageFlow {flow.name!r} already belongs to {flow.parent.name!r}."
            )
        flow.parent = self

    @property
    def branch_flows(self) -> list["MessageFlow"]:
        flows = list(self.branches.values())
        if self.otherwise is not None:
            flows.append(self.otherwise)
        return flows

    @property
    def routes(self) -> dict[Any, str]:
        """Resolved routing table: label/key → channel."""
        return dict(self._routes)

    @property
    def default_channel(self) -> str | None:
        return self.otherwise.input_channel if self.otherwise is not None else None

    def _assign(self, name: str, input_channel: str, output_channel: str) -> None:
        super()._assign(name, input_channel, output_channel)
        # Branches join back on the router's output channel.
        for label, branch_name in self._branch_names().items():
            self.branches[label]._wire(
                assigned_name=branch_name,
                inherited_output=output_channel,
            )
        if self.otherwise is not None:
            self.otherwise._wire(
                assigned_name=f"{self.name}.otherwise",
                inherited_output=output_channel,
            )
        routes = dict(self.mapping)
        for label, flow in self.branches.items():
            routes[label] = flow.input_channel
        self._routes = routes

    def _branch_names(self) -> dict[Any, str]:
        """``{router}.when.{label}``; labels with the same text (``1`` and
        ``"1"``) get the branch position appended to stay unique."""
        names: dict[Any, str] = {}
        taken: set[str] = set()
        for position, label in enumerate(self.branches, start=1):
            name = f"{self.name}.when.{label}"
            if name in taken:
                name = f"{name}_{position}"
            taken.add(name)
            names[label] = name
        return names

    def nodes(self) -> Iterator[Endpoint]:
        for flow in self.branch_flows:
            yield from flow.nodes()

    def writes(self) -> list[str]:
        channels = list(dict.fromkeys(self._routes.values()))
        if self.default_channel and self.default_channel not in channels:
            channels.append(self.default_channel)
        return channels

    # ------------------------------------------------------------------
    # Dispatch-time resolution
    # ------------------------------------------------------------------

    def resolve(self, message: Message) -> list[str]:
        """Return the destination channels for *message* (possibly empty)."""
        try:
            value = self.invoke(message)
        except Exception as exc:
            raise RoutingError(
                f"Router {self.name!r} failed to evaluate its discriminant: {exc}",
                router=self.name,
                cause=exc,
            ) from exc

        if self.mapping or self.branches:
            destinations = self._lookup(value)
        else:
            destinations = self._channels_from(value)

        if not destinations and self.default_channel is not None:
            logger.debug("%s: %r unmatched, using otherwise", self.name, value)
            return [self.default_channel]
        if not destinations:
            logger.debug("%s: %r has no destination", self.name, value)
        return destinations

    def process(self, message: Message) -> list[Message]:
        return [out for _, out in self.emit(message)]

    def emit(self, message: Message) -> list[tuple[str, Message]]:
        """One ``(channel, message)`` pair per destination.

        A single destination receives *message* itself; each recipient of
        a recipient list receives its own copy.
        """
        destinations = self.resolve(message)
        if len(destinations) == 1:
            return [(destinations[0], message)]
        return [(channel, message.copy()) for channel in destinations]

    def _lookup(self, value: Any) -> list[str]:
        keys = value if isinstance(value, list) else [value]
        found: list[str] = []
        for key in keys:
            try:
                channel = self._routes.get(key)
            except TypeError as exc:
                raise RoutingError(
                    f"Router {self.name!r} produced an unhashable key {key!r}.",
                    router=self.name,
                    cause=exc,
                ) from exc
            if channel is not None and channel not in found:
                found.append(channel)
        return found

    def _channels_from(self, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            names = [value]
        elif isinstance(value, (list, tuple, set, frozenset)):
            names = list(value)
        else:
            raise RoutingError(
                f"Router {self.name!r} returned {type(value).__name__}; expected a "
                f"channel name or a list of channel names.",
                router=self.name,
            )
        for name in names:
            if not isinstance(name, str) or not name:
                raise RoutingError(
                    f"Router {self.name!r} returned an invalid channel name {name!r}.",
                    router=self.name,
                )
        return list(dict.fromkeys(names))
