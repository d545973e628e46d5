"""Declarative message-flow composition: channels, endpoints, routers, flows.

Public surface::

    from msgflow import (
        IntegrationBuilder,
        IntegrationContext,
        IntegrationSettings,
        MessageFlow,
        Message,
        Router,
        CompositionError,
        RoutingError,
        DispatchError,
    )
"""

from .builder import CompositionSession, IntegrationBuilder, create_endpoint
from .channels import INPUT_CHANNEL, OUTPUT_CHANNEL, ChannelRegistry, channel_name
from .context import IntegrationContext
from .endpoints import (
    ArgumentShape,
    Bridge,
    Endpoint,
    EndpointAttributes,
    EndpointKind,
    FlowReference,
    MessageFilter,
    ServiceActivator,
    Splitter,
    Transformer,
)
from .errors import CompositionError, DispatchError, RecipientListError, RoutingError
from .export import CompositionSpec, EndpointSpec, FlowSpec
from .flow import MessageFlow
from .http_outbound import HttpOutbound, HttpOutboundAttributes
from .message import Message
from .routing import ChannelMapping, OtherwiseBranch, Router, WhenBranch
from .runtime import DirectRuntime, MessageRuntime
from .settings import IntegrationSettings

__all__ = [
    "IntegrationBuilder",
    "CompositionSession",
    "create_endpoint",
    "IntegrationContext",
    "IntegrationSettings",
    "MessageFlow",
    "Message",
    "ChannelRegistry",
    "channel_name",
    "INPUT_CHANNEL",
    "OUTPUT_CHANNEL",
    "Endpoint",
    "EndpointAttributes",
    "EndpointKind",
    "ArgumentShape",
    "Transformer",
    "MessageFilter",
    "ServiceActivator",
    "Bridge",
    "Splitter",
    "FlowReference",
    "HttpOutbound",
    "HttpOutboundAttributes",
    "Router",
    "ChannelMapping",
    "WhenBranch",
    "OtherwiseBranch",
    "MessageRuntime",
    "DirectRuntime",
    "CompositionSpec",
    "FlowSpec",
    "EndpointSpec",
    "CompositionError",
    "RoutingError",
    "DispatchError",
    "RecipientListError",
]
