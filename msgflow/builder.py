"""IntegrationBuilder — declaration methods that compose message flows.

Nested declarations are nested calls; every element is built as soon as
its call returns, and children are handed to their parent explicitly::

    builder = IntegrationBuilder()
    flow = builder.message_flow(
        builder.transform(str.upper),
        builder.filter(lambda p: p == "HELLO"),
        builder.handle(lambda p: p),
        name="greeter",
    )
    flow.send_and_receive("hello")   # -> "HELLO"

Flows declared directly on a builder are registered with the builder's own
``IntegrationContext`` the first time one of them dispatches.  A scoped
session collects the flows declared inside it instead::

    with builder.session() as session:
        session.message_flow(..., name="a")
        session.message_flow(..., name="b")
    context = session.context
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from .channels import ChannelRegistry
from .context import IntegrationContext
from .endpoints import (
    Bridge,
    Endpoint,
    EndpointKind,
    FlowReference,
    MessageFilter,
    ServiceActivator,
    Splitter,
    Transformer,
)
from .errors import CompositionError
from .flow import MessageFlow
from .http_outbound import HttpOutbound
from .routing import ChannelMapping, OtherwiseBranch, Router, WhenBranch
from .runtime import MessageRuntime
from .settings import IntegrationSettings

logger = logging.getLogger(__name__)


# Static kind → constructor table.
ENDPOINT_TYPES: dict[EndpointKind, type[Endpoint]] = {
    EndpointKind.TRANSFORM: Transformer,
    EndpointKind.FILTER: MessageFilter,
    EndpointKind.ROUTE: Router,
    EndpointKind.HANDLE: ServiceActivator,
    EndpointKind.BRIDGE: Bridge,
    EndpointKind.SPLIT: Splitter,
    EndpointKind.EXEC: FlowReference,
    EndpointKind.HTTP_OUTBOUND: HttpOutbound,
}


def create_endpoint(kind: EndpointKind | str, logic: Any = None, *children: object,
                    **attributes: Any) -> Endpoint:
    """Build an endpoint of *kind*; unknown kinds raise CompositionError."""
    try:
        kind = EndpointKind(kind)
    except ValueError:
        raise CompositionError(
            f"Unknown endpoint kind {kind!r}; expected one of "
            f"{[k.value for k in EndpointKind]}."
        ) from None
    cls = ENDPOINT_TYPES[kind]
    if kind is EndpointKind.ROUTE:
        return cls(logic, *children, **attributes)
    if children:
        raise CompositionError(f"'{kind.value}' does not take children.")
    if kind in (EndpointKind.BRIDGE, EndpointKind.HTTP_OUTBOUND):
        if logic is not None:
            raise CompositionError(f"'{kind.value}' does not take processing logic.")
        return cls(**attributes)
    return cls(logic, **attributes)


class IntegrationBuilder:
    """Entry point for composing flows.

    Every declaration method returns the element it built.  Only
    ``message_flow`` results are candidates for registration: those still
    without a parent when the context is built become its top-level flows.
    """

    def __init__(
        self,
        settings: IntegrationSettings | None = None,
        runtime_factory: Callable[[IntegrationSettings], MessageRuntime] | None = None,
        registry: ChannelRegistry | None = None,
    ) -> None:
        self.settings = settings or IntegrationSettings()
        self.registry = registry if registry is not None else ChannelRegistry()
        self._runtime_factory = runtime_factory
        self._declared: list[MessageFlow] = []
        self._context: IntegrationContext | None = None

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def message_flow(self, *children: object, **attributes: Any) -> MessageFlow:
        """Declare a flow from *children* (endpoints and nested flows)."""
        flow = MessageFlow(
            *children,
            owner=self,
            default_name=self.registry.next_name("messageFlow"),
            **attributes,
        )
        self._declared.append(flow)
        logger.debug("declared %r", flow)
        return flow

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def endpoint(self, kind: EndpointKind | str, logic: Any = None, *children: object,
                 **attributes: Any) -> Endpoint:
        return create_endpoint(kind, logic, *children, **attributes)

    def transform(self, logic: Callable[..., Any], **attributes: Any) -> Endpoint:
        return self.endpoint(EndpointKind.TRANSFORM, logic, **attributes)

    def filter(self, logic: Callable[..., Any], **attributes: Any) -> Endpoint:
        return self.endpoint(EndpointKind.FILTER, logic, **attributes)

    def handle(self, logic: Callable[..., Any], **attributes: Any) -> Endpoint:
        return self.endpoint(EndpointKind.HANDLE, logic, **attributes)

    def bridge(self, **attributes: Any) -> Endpoint:
        return self.endpoint(EndpointKind.BRIDGE, None, **attributes)

    def split(self, logic: Callable[..., Any], **attributes: Any) -> Endpoint:
        return self.endpoint(EndpointKind.SPLIT, logic, **attributes)

    def http_outbound(self, url: str, **attributes: Any) -> Endpoint:
        """HTTP request per message; see ``HttpOutbound`` for the options."""
        return self.endpoint(EndpointKind.HTTP_OUTBOUND, None, url=url, **attributes)

    def exec(self, flow: MessageFlow, **attributes: Any) -> Endpoint:
        if not isinstance(flow, MessageFlow):
            raise CompositionError(
                f"exec() expects a messageFlow, got {type(flow).__name__}."
            )
        return self.endpoint(EndpointKind.EXEC, flow, **attributes)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(self, evaluate: Callable[..., Any], *rules: object,
              **attributes: Any) -> Endpoint:
        """Declare a router; *rules* are ``map()``, ``when()`` and ``otherwise()``."""
        return self.endpoint(EndpointKind.ROUTE, evaluate, *rules, **attributes)

    def map(self, mapping: Mapping[Any, str] | None = None, **channels: str) -> ChannelMapping:
        return ChannelMapping(mapping, **channels)

    def when(self, label: Any, *children: object, **attributes: Any) -> WhenBranch:
        return WhenBranch(label, self._branch_flow(children, attributes))

    def otherwise(self, *children: object, **attributes: Any) -> OtherwiseBranch:
        return OtherwiseBranch(self._branch_flow(children, attributes))

    def _branch_flow(self, children: tuple, attributes: dict) -> MessageFlow:
        if len(children) == 1 and isinstance(children[0], MessageFlow) and not attributes:
            return children[0]
        return MessageFlow(*children, **attributes)

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def top_level_flows(self) -> list[MessageFlow]:
        """Declared flows that were never nested in another element."""
        return [flow for flow in self._declared if flow.parent is None]

    def build_context(self) -> IntegrationContext:
        """Register every pending top-level flow in a fresh context."""
        return IntegrationContext(
            [f for f in self.top_level_flows() if f._context is None],
            settings=self.settings,
            runtime=self._new_runtime(),
        )

    def context_for(self, flow: MessageFlow) -> IntegrationContext:
        """The builder's own context; *flow* must end up registered in it."""
        context = self.context
        if flow._context is not context:
            raise CompositionError(
                f"messageFlow {flow.name!r} belongs to a different context."
            )
        return context

    @property
    def context(self) -> IntegrationContext:
        """The builder's own context, registering pending flows on demand."""
        if self._context is None:
            self._context = self.build_context()
        pending = [f for f in self.top_level_flows() if f._context is None]
        if pending:
            self._context.register(*pending)
        return self._context

    def _new_runtime(self) -> MessageRuntime | None:
        if self._runtime_factory is None:
            return None
        return self._runtime_factory(self.settings)

    def session(self) -> "CompositionSession":
        return CompositionSession(self)

    def compose(self, declare: Callable[["CompositionSession"], Any]) -> IntegrationContext:
        """Run *declare* inside a session and return the resulting context."""
        with self.session() as session:
            declare(session)
        return session.context


class CompositionSession(IntegrationBuilder):
    """Scoped composition.

    Shares the parent builder's settings and naming, collects the flows
    declared inside the ``with`` block, and on a clean exit registers them
    in a new ``IntegrationContext`` exposed as ``context``.  If the block
    raises, no context is exposed.
    """

    def __init__(self, parent: IntegrationBuilder) -> None:
        super().__init__(
            settings=parent.settings,
            runtime_factory=parent._runtime_factory,
            registry=parent.registry,
        )
        self._closed = False

    def __enter__(self) -> "CompositionSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._closed = True
        if exc_type is None:
            self._context = self.build_context()
        return False

    @property
    def context(self) -> IntegrationContext:
        if self._context is None:
            raise CompositionError("The composition session has not completed.")
        return self._context

    def context_for(self, flow: MessageFlow) -> IntegrationContext:
        return self.context

    def message_flow(self, *children: object, **attributes: Any) -> MessageFlow:
        if self._closed:
            raise CompositionError("The composition session is closed.")
        return super().message_flow(*children, **attributes)
