"""MessageFlow — ordered, auto-wired composition of endpoints and sub-flows."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Iterator, Mapping

from .channels import INPUT_CHANNEL, OUTPUT_CHANNEL, channel_name
from .endpoints import Endpoint, FlowAttributes, FlowReference, parse_attributes
from .errors import CompositionError
from .routing import Router

if TYPE_CHECKING:
    from .context import IntegrationContext
    from .export import FlowSpec

logger = logging.getLogger(__name__)

_UNSET = object()


def _describe(obj: object) -> str:
    return getattr(obj, "name", None) or type(obj).__name__


class MessageFlow:
    """Ordered sequence of endpoints and nested flows.  Can itself be nested.

    Build by passing children, or via the fluent API::

        flow = (
            MessageFlow(name="orders")
            .append(Transformer(str.upper))
            .append(MessageFilter(lambda p: p == "HELLO"))
            .append(ServiceActivator(print))
        )

    Children are linked in declaration order: child *i*'s output channel is
    child *i+1*'s input channel, unless child *i* declares
    ``link_to_next=False`` or explicit channels say otherwise.  A nested
    flow splices in as one composite node exposing its first child's input
    and its last child's output.

    Wiring is recomputed from the root after every ``append`` so channel
    names are always current; once the flow is registered with an
    ``IntegrationContext`` the topology is frozen.
    """

    def __init__(
        self,
        *children: object,
        attributes: FlowAttributes | None = None,
        owner: Any = None,
        default_name: str | None = None,
        **options: Any,
    ) -> None:
        if attributes is None:
            attributes = parse_attributes(FlowAttributes, options)
        elif options:
            raise CompositionError("Pass either an attributes model or options, not both.")
        self.attributes = attributes
        self.parent: Any = None
        self.input_channel: str | None = None
        self.output_channel: str | None = None
        self._children: list = []
        self._owner = owner
        self._context: "IntegrationContext | None" = None
        self._frozen = False
        self._assigned_name: str | None = None
        self._default_name = default_name or f"messageFlow@{id(self):x}"

        try:
            for child in children:
                self._attach(child)
            self._rewire()
        except CompositionError:
            # Nothing was built: hand every child back unowned
            for child in list(reversed(self._children)):
                self._detach(child)
            raise

    # ------------------------------------------------------------------
    # Identity & declared wiring
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.attributes.name or self._assigned_name or self._default_name

    @property
    def children(self) -> tuple:
        return tuple(self._children)

    @property
    def declared_input(self) -> str | None:
        """Explicit input: the flow's own, else its first child's."""
        if self.attributes.input_channel:
            return self.attributes.input_channel
        return self._children[0].declared_input if self._children else None

    @property
    def declared_output(self) -> str | None:
        """Explicit output: the flow's own, else its last child's."""
        if self.attributes.output_channel:
            return self.attributes.output_channel
        return self._children[-1].declared_output if self._children else None

    @property
    def link_to_next(self) -> bool:
        return self.attributes.link_to_next

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Fluent builder
    # ------------------------------------------------------------------

    def append(self, child: object) -> "MessageFlow":
        """Append *child* and return ``self`` for chaining."""
        self._check_mutable()
        self._attach(child)
        try:
            self._rewire()
        except CompositionError:
            # Roll back so a failed append leaves the previous topology intact
            self._detach(child)
            self._rewire()
            raise
        return self

    def exec(self, flow: "MessageFlow", **options: Any) -> "MessageFlow":
        """Append a step that runs *flow* as a single request/reply step."""
        if not isinstance(flow, MessageFlow):
            raise CompositionError(
                f"exec() expects a messageFlow, got '{_describe(flow)}'."
            )
        return self.append(FlowReference(flow, **options))

    def _check_mutable(self) -> None:
        if self._frozen:
            raise CompositionError(
                f"messageFlow {self.name!r} is registered; its topology is immutable."
            )

    def _attach(self, child: object) -> None:
        if not isinstance(child, (Endpoint, MessageFlow)):
            raise CompositionError(
                f"'{_describe(child)}' cannot be a child of messageFlow {self.name!r}."
            )
        if child.parent is not None:
            raise CompositionError(
                f"{child.name!r} already belongs to {child.parent.name!r}."
            )
        if isinstance(child, MessageFlow):
            if child is self or self._has_ancestor(child):
                raise CompositionError(
                    f"messageFlow {child.name!r} cannot contain itself."
                )
            if child._frozen:
                raise CompositionError(
                    f"messageFlow {child.name!r} is already registered; use exec() "
                    f"to reuse it."
                )
        if isinstance(child, FlowReference):
            if child.target is self or self._has_ancestor(child.target):
                raise CompositionError(
                    f"messageFlow {self.name!r} cannot exec {child.target.name!r}, "
                    f"which encloses it."
                )
        child.parent = self
        self._children.append(child)

    def _detach(self, child: Any) -> None:
        self._children.remove(child)
        child.parent = None
        child._assigned_name = None
        if isinstance(child, MessageFlow):
            child._rewire()

    def _has_ancestor(self, flow: "MessageFlow") -> bool:
        node = self.parent
        while node is not None:
            if node is flow:
                return True
            node = node.parent
        return False

    def _root(self) -> "MessageFlow":
        node: Any = self
        root = self
        while node is not None:
            if isinstance(node, MessageFlow):
                root = node
            node = node.parent
        return root

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _rewire(self) -> None:
        self._root()._wire()

    def _wire(
        self,
        assigned_name: str | None = None,
        inherited_input: str | None = None,
        inherited_output: str | None = None,
    ) -> None:
        """Resolve this flow's channels and, recursively, its children's."""
        if assigned_name is not None:
            self._assigned_name = assigned_name

        children = self._children
        n = len(children)

        explicit_in = self.attributes.input_channel
        first_in = children[0].declared_input if children else None
        if explicit_in and first_in and explicit_in != first_in:
            raise CompositionError(
                f"messageFlow {self.name!r} declares input {explicit_in!r} but its "
                f"first child expects {first_in!r}."
            )
        explicit_out = self.attributes.output_channel
        last_out = children[-1].declared_output if children else None
        if explicit_out and last_out and explicit_out != last_out:
            raise CompositionError(
                f"messageFlow {self.name!r} declares output {explicit_out!r} but its "
                f"last child writes {last_out!r}."
            )

        self.input_channel = explicit_in or first_in or inherited_input or channel_name(
            None, self.name, INPUT_CHANNEL
        )
        self.output_channel = explicit_out or last_out or inherited_output or channel_name(
            None, self.name, OUTPUT_CHANNEL
        )

        names = [self._child_name(child, i) for i, child in enumerate(children)]
        outputs: list[str] = []
        for i, child in enumerate(children):
            if child.declared_input:
                inp = child.declared_input
            elif i == 0:
                inp = self.input_channel
            elif children[i - 1].link_to_next:
                inp = outputs[i - 1]
            else:
                raise CompositionError(
                    f"{names[i]!r} follows {names[i - 1]!r}, which declares "
                    f"link_to_next=False; it needs an explicit input_channel."
                )

            if child.declared_output:
                out = child.declared_output
            elif i == n - 1:
                out = self.output_channel
            elif child.link_to_next:
                successor = children[i + 1]
                out = successor.declared_input or channel_name(
                    None, names[i + 1], INPUT_CHANNEL
                )
            else:
                out = channel_name(None, names[i], OUTPUT_CHANNEL)
            outputs.append(out)

            if isinstance(child, MessageFlow):
                child._wire(assigned_name=names[i], inherited_input=inp,
                            inherited_output=out)
            else:
                child._assign(names[i], inp, out)

        logger.debug(
            "wired messageFlow %s: %s -> %s (%d children)",
            self.name, self.input_channel, self.output_channel, n,
        )

    def _child_name(self, child: object, index: int) -> str:
        if child.attributes.name:  # type: ignore[attr-defined]
            return child.attributes.name  # type: ignore[attr-defined]
        if isinstance(child, MessageFlow):
            return f"{self.name}.messageFlow_{index + 1}"
        return f"{self.name}.{child.kind.value}_{index + 1}"  # type: ignore[attr-defined]

    def _freeze(self) -> None:
        self._frozen = True
        for child in self._children:
            if isinstance(child, MessageFlow):
                child._freeze()
            elif isinstance(child, Router):
                for flow in child.branch_flows:
                    flow._freeze()

    # ------------------------------------------------------------------
    # Graph inspection
    # ------------------------------------------------------------------

    def nodes(self) -> list[Endpoint]:
        """Endpoints in declaration order, depth first.

        Nested flows are flattened in place; a router's branch endpoints
        follow the router.
        """
        result: list[Endpoint] = []
        for child in self._children:
            if isinstance(child, MessageFlow):
                result.extend(child.nodes())
            else:
                result.append(child)
                if isinstance(child, Router):
                    result.extend(child.nodes())
        return result

    def iter_flows(self) -> Iterator["MessageFlow"]:
        """This flow and every flow nested in it (including router branches)."""
        yield self
        for child in self._children:
            if isinstance(child, MessageFlow):
                yield from child.iter_flows()
            elif isinstance(child, Router):
                for flow in child.branch_flows:
                    yield from flow.iter_flows()

    def describe(self) -> "FlowSpec":
        from .export import describe_flow

        return describe_flow(self)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    @property
    def context(self) -> "IntegrationContext":
        root = self._root()
        if root._context is not None:
            return root._context
        if root._owner is not None:
            return root._owner.context_for(root)
        raise CompositionError(
            f"messageFlow {self.name!r} is not registered with an IntegrationContext."
        )

    def send(self, payload: Any, headers: Mapping[str, Any] | None = None) -> None:
        """Fire-and-forget *payload* (or a Message) into this flow."""
        self.context.send(self, payload, headers)

    def send_and_receive(
        self, payload: Any, headers: Mapping[str, Any] | None = None
    ) -> Any:
        """Send and return the reply, or ``None`` if the flow produced none.

        A bare payload gets a bare payload back; a Message gets a Message.
        """
        return self.context.send_and_receive(self, payload, headers)

    async def send_async(
        self, payload: Any, headers: Mapping[str, Any] | None = None
    ) -> None:
        context = self.context
        await asyncio.to_thread(context.send, self, payload, headers)

    async def send_and_receive_async(
        self,
        payload: Any,
        headers: Mapping[str, Any] | None = None,
        timeout: Any = _UNSET,
    ) -> Any:
        """Async ``send_and_receive``; dispatch runs in a worker thread.

        *timeout* defaults to ``IntegrationSettings.reply_timeout`` and
        raises ``TimeoutError`` when exceeded.
        """
        context = self.context
        if timeout is _UNSET:
            timeout = context.settings.reply_timeout
        return await asyncio.wait_for(
            asyncio.to_thread(context.send_and_receive, self, payload, headers),
            timeout,
        )

    def __repr__(self) -> str:
        return (
            f"MessageFlow({self.name!r}, {self.input_channel!r} -> "
            f"{self.output_channel!r}, {len(self._children)} children)"
        )

