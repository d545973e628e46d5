"""Immutable message — the single object that travels over channels."""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Message:
    """Frozen message passed from endpoint to endpoint.

    Endpoints never mutate the incoming message — they derive a new one
    with ``with_payload()`` / ``with_headers()``.  Every derived message
    gets a fresh ``id``; headers are carried over.
    """

    payload: Any = None
    headers: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    id: str = field(default_factory=_new_id)

    def __post_init__(self) -> None:
        # Coerce plain dict → MappingProxyType so mutation is a hard runtime error
        if not isinstance(self.headers, MappingProxyType):
            object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def with_payload(self, payload: Any) -> "Message":
        """Return a new message carrying *payload* and the same headers."""
        return dataclasses.replace(self, payload=payload, id=_new_id())

    def with_headers(self, **headers: Any) -> "Message":
        """Return a new message with *headers* merged over the current ones."""
        merged = MappingProxyType({**self.headers, **headers})
        return dataclasses.replace(self, headers=merged, id=_new_id())

    def copy(self) -> "Message":
        """Independent copy (new id) — used for recipient-list fan-out."""
        return dataclasses.replace(self, id=_new_id())


def to_message(obj: Any, headers: Mapping[str, Any] | None = None) -> tuple[Message, bool]:
    """Wrap *obj* into a Message.

    Returns ``(message, was_message)`` so callers can answer in the same
    shape they were asked in.
    """
    if isinstance(obj, Message):
        return (obj.with_headers(**headers) if headers else obj), True
    return Message(payload=obj, headers=MappingProxyType(dict(headers or {}))), False
