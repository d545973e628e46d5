"""Serializable description of a composed graph.

The models carry names and channels only (no callables), so downstream
tools can turn them into whatever configuration format they need.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from pydantic import BaseModel, Field

from .endpoints import Endpoint, FlowReference, MessageFilter
from .http_outbound import HttpOutbound
from .routing import Router

if TYPE_CHECKING:
    from .context import IntegrationContext
    from .flow import MessageFlow


class EndpointSpec(BaseModel):
    """One endpoint and its wiring."""

    name: str
    kind: str
    input_channel: str
    output_channel: str
    link_to_next: bool = True
    expects: str = "payload"
    routes: Dict[str, str] = Field(
        default_factory=dict, description="Routing table (routers only), keys as text"
    )
    default_route: Optional[str] = Field(
        default=None, description="otherwise destination (routers only)"
    )
    discard_channel: Optional[str] = None
    target_flow: Optional[str] = Field(
        default=None, description="Referenced flow (exec steps only)"
    )
    url: Optional[str] = Field(default=None, description="Request URL (http_outbound only)")
    http_method: Optional[str] = None


class FlowSpec(BaseModel):
    """A flow with its endpoints flattened in declaration order."""

    name: str
    input_channel: str
    output_channel: str
    endpoints: List[EndpointSpec] = Field(default_factory=list)


class CompositionSpec(BaseModel):
    """Every top-level flow of a context plus its channel names."""

    flows: List[FlowSpec] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)


def describe_endpoint(endpoint: Endpoint) -> EndpointSpec:
    spec = EndpointSpec(
        name=endpoint.name,
        kind=endpoint.kind.value,
        input_channel=endpoint.input_channel,
        output_channel=endpoint.output_channel,
        link_to_next=endpoint.link_to_next,
        expects=endpoint.expects.value,
    )
    if isinstance(endpoint, Router):
        spec.routes = {str(key): channel for key, channel in endpoint.routes.items()}
        spec.default_route = endpoint.default_channel
    elif isinstance(endpoint, MessageFilter):
        spec.discard_channel = endpoint.discard_channel
    elif isinstance(endpoint, FlowReference):
        spec.target_flow = endpoint.target.name
    elif isinstance(endpoint, HttpOutbound):
        spec.url = endpoint.url
        spec.http_method = endpoint.http_method
    return spec


def describe_flow(flow: "MessageFlow") -> FlowSpec:
    return FlowSpec(
        name=flow.name,
        input_channel=flow.input_channel,
        output_channel=flow.output_channel,
        endpoints=[describe_endpoint(node) for node in flow.nodes()],
    )


def describe_context(context: "IntegrationContext") -> CompositionSpec:
    return CompositionSpec(
        flows=[describe_flow(flow) for flow in context.flows],
        channels=sorted(context.channels.names()),
    )
