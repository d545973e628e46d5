"""Endpoint nodes — single processing steps wired between channels.

Every endpoint has exactly one input channel and writes to its output
channel.  The processing logic is an opaque callable; the endpoint only
decides *what argument* to hand it (``expects``) and how to turn the
result into zero or more outgoing messages.
"""

from __future__ import annotations

import abc
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import CompositionError, DispatchError
from .message import Message

if TYPE_CHECKING:
    from .flow import MessageFlow

logger = logging.getLogger(__name__)


class EndpointKind(str, Enum):
    """Closed set of endpoint kinds."""

    TRANSFORM = "transform"
    FILTER = "filter"
    ROUTE = "route"
    HANDLE = "handle"
    BRIDGE = "bridge"
    SPLIT = "split"
    EXEC = "exec"
    HTTP_OUTBOUND = "http_outbound"


class ArgumentShape(str, Enum):
    """What the processing logic is called with."""

    PAYLOAD = "payload"
    HEADERS = "headers"
    MESSAGE = "message"


# ---------------------------------------------------------------------------
# Attribute models
# ---------------------------------------------------------------------------


def _non_blank(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.strip():
        raise ValueError("must not be blank")
    return value


class FlowAttributes(BaseModel):
    """Options shared by endpoints and flows.

    Both snake_case names and the camelCase option names
    (``inputChannel``, ``outputChannel``, ``linkToNext``) are accepted.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    name: Optional[str] = None
    input_channel: Optional[str] = Field(default=None, alias="inputChannel")
    output_channel: Optional[str] = Field(default=None, alias="outputChannel")
    link_to_next: bool = Field(default=True, alias="linkToNext")

    @field_validator("name", "input_channel", "output_channel")
    @classmethod
    def _names_not_blank(cls, value: Optional[str]) -> Optional[str]:
        return _non_blank(value)


class EndpointAttributes(FlowAttributes):
    """Options recognised by endpoints."""

    expects: ArgumentShape = ArgumentShape.PAYLOAD
    discard_channel: Optional[str] = Field(default=None, alias="discardChannel")

    @field_validator("discard_channel")
    @classmethod
    def _discard_not_blank(cls, value: Optional[str]) -> Optional[str]:
        return _non_blank(value)


def parse_attributes(model: type[FlowAttributes], options: Mapping[str, Any]) -> Any:
    """Validate *options* against *model*, raising CompositionError."""
    try:
        return model.model_validate(dict(options))
    except ValidationError as exc:
        raise CompositionError(f"Invalid attributes {dict(options)!r}: {exc}") from exc


# ---------------------------------------------------------------------------
# Endpoint base
# ---------------------------------------------------------------------------


def _as_outputs(message: Message, result: Any) -> list[Message]:
    """Map a logic result onto outgoing messages (``None`` absorbs)."""
    if result is None:
        return []
    if isinstance(result, Message):
        return [result]
    return [message.with_payload(result)]


class Endpoint(abc.ABC):
    """Base for every node kind.

    Subclasses set ``kind`` and implement ``process()``; ``emit()`` pairs
    the processed messages with the channels they go to, which is all a
    runtime needs to drive any node.  Channels are
    resolved by the enclosing flow when the endpoint is appended; until
    then ``input_channel`` / ``output_channel`` are ``None``.
    """

    kind: EndpointKind
    requires_logic = True
    attributes_model: type[EndpointAttributes] = EndpointAttributes
    #: destinations are computed per message and must exist
    routes_dynamically = False

    def __init__(
        self,
        logic: Callable[..., Any] | None = None,
        attributes: EndpointAttributes | None = None,
        **options: Any,
    ) -> None:
        if attributes is None:
            attributes = parse_attributes(self.attributes_model, options)
        elif options:
            raise CompositionError("Pass either an attributes model or options, not both.")
        if self.requires_logic and not callable(logic):
            raise CompositionError(
                f"'{self.kind.value}' requires a callable, got {logic!r}."
            )
        if attributes.discard_channel and self.kind is not EndpointKind.FILTER:
            raise CompositionError(
                f"discard_channel is only valid on 'filter', not '{self.kind.value}'."
            )
        self.logic = logic
        self.attributes = attributes
        self.parent: Any = None
        self.input_channel: str | None = None
        self.output_channel: str | None = None
        self._assigned_name: str | None = None

    # ------------------------------------------------------------------
    # Identity & declared wiring
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return (
            self.attributes.name
            or self._assigned_name
            or f"{self.kind.value}@{id(self):x}"
        )

    @property
    def declared_input(self) -> str | None:
        return self.attributes.input_channel

    @property
    def declared_output(self) -> str | None:
        return self.attributes.output_channel

    @property
    def link_to_next(self) -> bool:
        return self.attributes.link_to_next

    @property
    def expects(self) -> ArgumentShape:
        return self.attributes.expects

    def _assign(self, name: str, input_channel: str, output_channel: str) -> None:
        """Called by the enclosing flow during wiring."""
        self._assigned_name = name
        self.input_channel = input_channel
        self.output_channel = output_channel

    def writes(self) -> list[str]:
        """Channels this endpoint may send to."""
        return [self.output_channel] if self.output_channel else []

    # ------------------------------------------------------------------
    # Dispatch-time behaviour
    # ------------------------------------------------------------------

    def invoke(self, message: Message) -> Any:
        """Call the logic with the argument shape it declared."""
        if self.expects is ArgumentShape.MESSAGE:
            return self.logic(message)
        if self.expects is ArgumentShape.HEADERS:
            return self.logic(message.headers)
        return self.logic(message.payload)

    @abc.abstractmethod
    def process(self, message: Message) -> list[Message]:
        """Return the messages this endpoint produces for *message*."""

    def emit(self, message: Message) -> list[tuple[str, Message]]:
        """Return ``(channel, message)`` pairs to deliver next."""
        return [(self.output_channel, out) for out in self.process(message)]

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.name!r}, "
            f"{self.input_channel!r} -> {self.output_channel!r})"
        )


# ---------------------------------------------------------------------------
# Concrete kinds
# ---------------------------------------------------------------------------


class Transformer(Endpoint):
    """``T -> T'``; a returned Message is used as is."""

    kind = EndpointKind.TRANSFORM

    def process(self, message: Message) -> list[Message]:
        return _as_outputs(message, self.invoke(message))


class MessageFilter(Endpoint):
    """Passes the message on when the predicate is truthy.

    Rejected messages are dropped, or sent to ``discard_channel`` when one
    is configured.
    """

    kind = EndpointKind.FILTER

    @property
    def discard_channel(self) -> str | None:
        return self.attributes.discard_channel

    def process(self, message: Message) -> list[Message]:
        return [message] if self.invoke(message) else []

    def emit(self, message: Message) -> list[tuple[str, Message]]:
        passed = self.process(message)
        if passed:
            return [(self.output_channel, out) for out in passed]
        logger.debug("%s rejected message %s", self.name, message.id)
        if self.discard_channel:
            return [(self.discard_channel, message)]
        return []

    def writes(self) -> list[str]:
        channels = super().writes()
        if self.discard_channel:
            channels.append(self.discard_channel)
        return channels


class ServiceActivator(Endpoint):
    """``handle`` — invokes a service; a ``None`` result ends the flow."""

    kind = EndpointKind.HANDLE

    def process(self, message: Message) -> list[Message]:
        return _as_outputs(message, self.invoke(message))


class Bridge(Endpoint):
    """Forwards messages unchanged from its input to its output."""

    kind = EndpointKind.BRIDGE
    requires_logic = False

    def process(self, message: Message) -> list[Message]:
        return [message]


class Splitter(Endpoint):
    """Splits one message into one message per item of the logic result."""

    kind = EndpointKind.SPLIT

    def process(self, message: Message) -> list[Message]:
        result = self.invoke(message)
        if result is None:
            return []
        if isinstance(result, (str, bytes)) or not hasattr(result, "__iter__"):
            raise TypeError(
                f"split logic must return an iterable, got {type(result).__name__}"
            )
        items = list(result)
        outputs = []
        for number, item in enumerate(items, start=1):
            out = item if isinstance(item, Message) else message.with_payload(item)
            outputs.append(
                out.with_headers(
                    correlation_id=message.id,
                    sequence_number=number,
                    sequence_size=len(items),
                )
            )
        return outputs


class FlowReference(Endpoint):
    """``exec`` — runs another flow as one request/reply step.

    The referenced flow keeps its own channels; its input channel receives
    the request and its reply is forwarded on this endpoint's output.  The
    request/reply call is supplied by the context the endpoint is
    registered with (see ``connect()``).
    """

    kind = EndpointKind.EXEC
    requires_logic = False

    def __init__(self, target: "MessageFlow", attributes: EndpointAttributes | None = None,
                 **options: Any) -> None:
        super().__init__(None, attributes, **options)
        self.target = target
        self._request: Callable[[str, Message], Optional[Message]] | None = None

    def connect(self, request: Callable[[str, Message], Optional[Message]]) -> None:
        """Install the ``(channel, message) -> reply`` call used by ``process``."""
        self._request = request

    def process(self, message: Message) -> list[Message]:
        if self._request is None:
            raise DispatchError(
                f"exec step {self.name!r} is not connected to a runtime.",
                endpoint=self.name,
            )
        reply = self._request(self.target.input_channel, message)
        return [] if reply is None else [reply]

    def __repr__(self) -> str:
        return f"FlowReference({self.name!r} -> {self.target.name!r})"
