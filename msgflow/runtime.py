"""Message runtime — delivers messages between channels.

The composition engine only needs the ``MessageRuntime`` interface.
``DirectRuntime`` is the in-process implementation: every send is
delivered synchronously in the calling thread, endpoint by endpoint, until
the message is absorbed or reaches a dead-end channel.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol, runtime_checkable

from .channels import ChannelRegistry
from .endpoints import Endpoint
from .errors import DispatchError, RecipientListError, RoutingError
from .message import Message
from .settings import IntegrationSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class MessageRuntime(Protocol):
    """What an integration context needs from a runtime."""

    def bind(self, channels: ChannelRegistry) -> None: ...

    def send(self, channel: str, message: Message) -> None: ...

    def send_and_receive(self, channel: str, message: Message) -> Message | None: ...


class ReplyCollector:
    """Holds the reply for one ``send_and_receive`` call.  First reply wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reply: Message | None = None

    def offer(self, message: Message, channel: str) -> None:
        with self._lock:
            if self._reply is None:
                self._reply = message
                return
        logger.warning(
            "discarding extra reply %s from channel %r; a reply was already received",
            message.id, channel,
        )

    @property
    def reply(self) -> Message | None:
        return self._reply


class DirectRuntime:
    """Synchronous, in-thread delivery.

    A channel delivers each message to every subscriber and listener.  A
    channel with neither is a dead end: the message becomes the pending
    reply if a caller is waiting for one, otherwise it is dropped.  Router
    destinations must at least be declared channels; an unknown one is a
    ``DispatchError``.
    """

    def __init__(self, settings: IntegrationSettings | None = None) -> None:
        self.settings = settings or IntegrationSettings()
        self._channels: ChannelRegistry | None = None

    def bind(self, channels: ChannelRegistry) -> None:
        self._channels = channels

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def send(self, channel: str, message: Message) -> None:
        self._deliver(channel, message, None)

    def send_and_receive(self, channel: str, message: Message) -> Message | None:
        collector = ReplyCollector()
        self._deliver(channel, message, collector)
        return collector.reply

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(
        self,
        channel: str,
        message: Message,
        reply: ReplyCollector | None,
        required: bool = False,
    ) -> None:
        if self._channels is None:
            raise DispatchError("Runtime is not bound to a channel registry.",
                                channel=channel)
        record = self._channels.get(channel)
        if record is None and required:
            raise DispatchError(f"Channel {channel!r} does not exist.",
                                channel=channel)
        if record is None or record.is_dead_end:
            if reply is not None:
                reply.offer(message, channel)
            else:
                logger.debug("dropping message %s at dead-end channel %r",
                             message.id, channel)
            return

        for listener in list(record.listeners):
            try:
                listener(message)
            except Exception as exc:
                raise DispatchError(
                    f"Listener on channel {channel!r} failed: {exc}",
                    channel=channel, cause=exc,
                ) from exc
        for endpoint in self._channels.subscribers(channel):
            self._invoke(endpoint, channel, message, reply)

    def _invoke(
        self,
        endpoint: Endpoint,
        channel: str,
        message: Message,
        reply: ReplyCollector | None,
    ) -> None:
        logger.debug("%s <- %s on %r", endpoint.name, message.id, channel)
        try:
            outputs = endpoint.emit(message)
        except (RoutingError, DispatchError):
            raise
        except Exception as exc:
            raise DispatchError(
                f"{endpoint.kind.value} {endpoint.name!r} failed: {exc}",
                endpoint=endpoint.name, channel=channel, cause=exc,
            ) from exc

        if endpoint.routes_dynamically and len(outputs) > 1:
            self._fan_out(endpoint, outputs, reply)
            return
        for out_channel, out in outputs:
            self._deliver(out_channel, out, reply, required=endpoint.routes_dynamically)

    def _fan_out(
        self,
        endpoint: Endpoint,
        outputs: list[tuple[str, Message]],
        reply: ReplyCollector | None,
    ) -> None:
        """Deliver every recipient's copy.

        All recipients are attempted; failures are raised together
        afterwards.  Results are not aggregated.
        """
        failures: list[BaseException] = []

        def deliver(channel: str, message: Message) -> None:
            self._deliver(channel, message, reply, required=True)

        workers = min(self.settings.fanout_workers, len(outputs))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(deliver, ch, out) for ch, out in outputs]
                for f in futures:
                    try:
                        f.result()
                    except Exception as exc:
                        failures.append(exc)
        else:
            for ch, out in outputs:
                try:
                    deliver(ch, out)
                except Exception as exc:
                    failures.append(exc)

        if failures:
            raise RecipientListError(failures, endpoint=endpoint.name)
