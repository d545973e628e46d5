"""IntegrationContext — the flows of one composition session plus dispatch."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping

from .channels import INPUT_CHANNEL, OUTPUT_CHANNEL, ChannelRegistry
from .endpoints import FlowReference
from .errors import CompositionError, DispatchError
from .flow import MessageFlow
from .message import Message, to_message
from .routing import Router
from .runtime import DirectRuntime, MessageRuntime
from .settings import IntegrationSettings

if TYPE_CHECKING:
    from .export import CompositionSpec

logger = logging.getLogger(__name__)


class IntegrationContext:
    """Owns the top-level flows built together and dispatches into them.

    ``register()`` validates the whole batch before anything is committed,
    so a failed registration leaves the context unchanged.  Registered
    flows are frozen; after registration the channel table is only read.
    """

    def __init__(
        self,
        flows: tuple | list = (),
        *,
        settings: IntegrationSettings | None = None,
        runtime: MessageRuntime | None = None,
    ) -> None:
        self.settings = settings or IntegrationSettings()
        self.channels = ChannelRegistry()
        self.runtime = runtime if runtime is not None else DirectRuntime(self.settings)
        self._flows: dict[str, MessageFlow] = {}
        self._flow_names: set[str] = set()
        self._endpoint_names: set[str] = set()
        self.runtime.bind(self.channels)
        if flows:
            self.register(*flows)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, *flows: MessageFlow) -> "IntegrationContext":
        """Validate and register top-level *flows*; return ``self``."""
        flow_names: set[str] = set()
        endpoint_names: set[str] = set()
        new_nodes = []

        for flow in flows:
            if not isinstance(flow, MessageFlow):
                raise CompositionError(
                    f"Only messageFlows can be registered, got {type(flow).__name__}."
                )
            if flow.parent is not None:
                raise CompositionError(
                    f"messageFlow {flow.name!r} is nested in {flow.parent.name!r}; "
                    f"register its top-level flow instead."
                )
            if flow._context is not None:
                raise CompositionError(
                    f"messageFlow {flow.name!r} is already registered."
                )
            for f in flow.iter_flows():
                if not f.children:
                    raise CompositionError(f"messageFlow {f.name!r} has no endpoints.")
                if f.name in self._flow_names or f.name in flow_names:
                    raise CompositionError(f"Duplicate messageFlow name {f.name!r}.")
                flow_names.add(f.name)
            for node in flow.nodes():
                if node.name in self._endpoint_names or node.name in endpoint_names:
                    raise CompositionError(f"Duplicate endpoint name {node.name!r}.")
                endpoint_names.add(node.name)
                new_nodes.append(node)

        known = {
            id(f)
            for root in [*self._flows.values(), *flows]
            for f in root.iter_flows()
        }
        for node in new_nodes:
            if isinstance(node, FlowReference) and id(node.target) not in known:
                raise CompositionError(
                    f"{node.name!r} executes messageFlow {node.target.name!r}, which "
                    f"is not part of this composition."
                )

        if self.settings.validate_routes:
            # A flow's output channel is a valid destination: it carries the reply.
            consumed = {node.input_channel for node in new_nodes}
            consumed.update(f.output_channel for f in flows)
            for node in new_nodes:
                if not isinstance(node, Router):
                    continue
                for key, channel in node.mapping.items():
                    if channel not in consumed and not self._accepts(channel):
                        raise CompositionError(
                            f"Router {node.name!r} maps {key!r} to channel {channel!r}, "
                            f"which no endpoint consumes."
                        )

        # Everything validated; commit.
        for flow in flows:
            flow._freeze()
            flow._context = self
            self._flows[flow.name] = flow
            self.channels.resolve(flow.declared_input, flow.name, INPUT_CHANNEL)
            self.channels.resolve(flow.declared_output, flow.name, OUTPUT_CHANNEL)
        for node in new_nodes:
            self.channels.subscribe(node.input_channel, node)
            if isinstance(node, FlowReference):
                node.connect(self.runtime.send_and_receive)
            for channel in node.writes():
                self.channels.add_writer(channel, node.name)
        self._flow_names |= flow_names
        self._endpoint_names |= endpoint_names

        logger.info(
            "registered %d messageFlow(s) (%d endpoints): %s",
            len(flows), len(new_nodes), ", ".join(f.name for f in flows),
        )
        return self

    def _accepts(self, channel: str) -> bool:
        """Already consumed, or the output channel of a registered flow."""
        if self.channels.has_consumers(channel):
            return True
        return any(f.output_channel == channel for f in self._flows.values())

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def flows(self) -> tuple[MessageFlow, ...]:
        return tuple(self._flows.values())

    def get_flow(self, name: str) -> MessageFlow | None:
        return self._flows.get(name)

    def __getitem__(self, name: str) -> MessageFlow:
        try:
            return self._flows[name]
        except KeyError:
            raise KeyError(f"No messageFlow named {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._flows

    def __iter__(self) -> Iterator[MessageFlow]:
        return iter(self._flows.values())

    def __len__(self) -> int:
        return len(self._flows)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _target_channel(self, target: MessageFlow | str) -> str:
        if isinstance(target, MessageFlow):
            if target._root()._context is not self:
                raise DispatchError(
                    f"messageFlow {target.name!r} is not registered with this context."
                )
            return target.input_channel
        if isinstance(target, str):
            flow = self._flows.get(target)
            channel = flow.input_channel if flow is not None else target
            if not self.channels.has_consumers(channel):
                raise DispatchError(f"Channel {channel!r} has no subscribers.",
                                    channel=channel)
            return channel
        raise TypeError(f"Cannot send to {type(target).__name__}; expected a flow or a name.")

    def send(self, target: MessageFlow | str, payload: Any,
             headers: Mapping[str, Any] | None = None) -> None:
        """Fire and forget.  *target* is a flow, a flow name or a channel name."""
        channel = self._target_channel(target)
        message, _ = to_message(payload, headers)
        logger.debug("send %s -> %r", message.id, channel)
        self.runtime.send(channel, message)

    def send_and_receive(self, target: MessageFlow | str, payload: Any,
                         headers: Mapping[str, Any] | None = None) -> Any:
        """Send and return the reply (``None`` when nothing came back).

        Replies mirror the request: payload in, payload out; Message in,
        Message out.
        """
        channel = self._target_channel(target)
        message, was_message = to_message(payload, headers)
        logger.debug("send_and_receive %s -> %r", message.id, channel)
        reply = self.runtime.send_and_receive(channel, message)
        if reply is None:
            return None
        return reply if was_message else reply.payload

    def subscribe(self, channel: str, listener: Callable[[Message], Any]) -> None:
        """Attach an external consumer to *channel*."""
        self.channels.add_listener(channel, listener)

    def describe(self) -> "CompositionSpec":
        from .export import describe_context

        return describe_context(self)

    def __repr__(self) -> str:
        return f"IntegrationContext({list(self._flows)!r})"
