"""Shared fixtures and reusable dummy logic for flow engine tests.

Everything here is plain callables — no runtime other than the in-process
DirectRuntime is involved.
"""

from __future__ import annotations

import threading

import pytest

from msgflow import IntegrationBuilder, IntegrationSettings, Message

# ---------------------------------------------------------------------------
# Reusable dummy logic
# ---------------------------------------------------------------------------


class Recorder:
    """Records every argument it receives via call_log (thread-safe).

    Returns *result* (default: the argument itself) so it works as a
    transform or a handle.
    """

    _SAME = object()

    def __init__(self, result=_SAME):
        self.call_log: list = []
        self._lock = threading.Lock()
        self._result = result

    def __call__(self, arg):
        with self._lock:
            self.call_log.append(arg)
        return arg if self._result is Recorder._SAME else self._result

    @property
    def count(self) -> int:
        return len(self.call_log)


class Boom:
    """Always raises RuntimeError."""

    def __init__(self, msg: str = "boom"):
        self.msg = msg

    def __call__(self, arg):
        raise RuntimeError(self.msg)


def upper(payload: str) -> str:
    return payload.upper()


def identity(payload):
    return payload


def is_hello(payload: str) -> bool:
    return payload == "HELLO"


def header_foo(headers) -> str:
    return headers["foo"]


class ListenerLog:
    """External channel listener that keeps the messages it sees."""

    def __init__(self):
        self.messages: list[Message] = []
        self._lock = threading.Lock()

    def __call__(self, message: Message) -> None:
        with self._lock:
            self.messages.append(message)

    @property
    def payloads(self) -> list:
        return [m.payload for m in self.messages]


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def builder():
    return IntegrationBuilder()


@pytest.fixture
def threaded_builder():
    """Builder whose recipient lists fan out on a thread pool."""
    return IntegrationBuilder(settings=IntegrationSettings(fanout_workers=4))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def listener():
    return ListenerLog()
