"""Tests for DirectRuntime delivery: replies, recipient lists and failures."""

from __future__ import annotations

import logging
import threading

import pytest

from msgflow import (
    DirectRuntime,
    DispatchError,
    Message,
    MessageRuntime,
    RecipientListError,
    RoutingError,
)
from msgflow.runtime import ReplyCollector
from tests.flow_engine.conftest import Boom, Recorder, identity, upper

FAN = ["a.inputChannel", "b.inputChannel"]


def recipients(builder, logic_a, logic_b, **handle_options):
    """Declare flows ``a`` and ``b`` plus a ``fan`` flow routing to both."""
    builder.message_flow(builder.handle(logic_a, **handle_options), name="a")
    builder.message_flow(builder.handle(logic_b, **handle_options), name="b")
    return builder.message_flow(builder.route(lambda p: FAN), name="fan")


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestReplyCollector:
    def test_first_reply_wins(self, caplog):
        collector = ReplyCollector()
        first, second = Message("1"), Message("2")
        with caplog.at_level(logging.WARNING, logger="msgflow.runtime"):
            collector.offer(first, "c")
            collector.offer(second, "c")
        assert collector.reply is first
        assert "discarding extra reply" in caplog.text

    def test_empty(self):
        assert ReplyCollector().reply is None


@pytest.mark.unit
class TestDirectRuntime:
    def test_satisfies_protocol(self):
        assert isinstance(DirectRuntime(), MessageRuntime)

    def test_unbound_runtime_rejects_sends(self):
        with pytest.raises(DispatchError, match="not bound"):
            DirectRuntime().send("c", Message("x"))


# ---------------------------------------------------------------------------
# Linear delivery
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestDelivery:
    def test_reply_from_flow_output(self, builder):
        flow = builder.message_flow(builder.transform(upper), name="f")
        assert flow.send_and_receive("hi") == "HI"

    def test_fire_and_forget_drops_at_dead_end(self, builder, recorder):
        flow = builder.message_flow(builder.transform(recorder), name="f")
        assert flow.send("hi") is None
        assert recorder.call_log == ["hi"]

    def test_absorbed_message_gives_no_reply(self, builder):
        flow = builder.message_flow(builder.handle(lambda p: None), name="f")
        assert flow.send_and_receive("hi") is None

    def test_endpoint_failure_wrapped(self, builder):
        flow = builder.message_flow(builder.handle(Boom("kaput")), name="f")
        with pytest.raises(DispatchError) as exc_info:
            flow.send_and_receive("hi")
        err = exc_info.value
        assert err.endpoint == "f.handle_1"
        assert err.channel == "f.inputChannel"
        assert isinstance(err.cause, RuntimeError)
        assert err.__cause__ is err.cause

    def test_failure_deep_in_flow_not_rewrapped(self, builder):
        flow = builder.message_flow(
            builder.transform(upper), builder.handle(Boom()), name="f"
        )
        with pytest.raises(DispatchError) as exc_info:
            flow.send("hi")
        assert exc_info.value.endpoint == "f.handle_2"

    def test_listener_failure_wrapped(self, builder):
        flow = builder.message_flow(builder.transform(upper), name="f")
        builder.context.subscribe(flow.output_channel, Boom())
        with pytest.raises(DispatchError, match="Listener"):
            flow.send("hi")

    def test_every_subscriber_receives_message(self, builder):
        first, second = Recorder(result=None), Recorder(result=None)
        builder.message_flow(builder.handle(first), name="one", input_channel="shared")
        builder.message_flow(builder.handle(second), name="two", input_channel="shared")
        builder.context.send("shared", "x")
        assert first.call_log == ["x"]
        assert second.call_log == ["x"]


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestRouting:
    def test_routing_error_propagates_unwrapped(self, builder):
        flow = builder.message_flow(builder.route(lambda p: 1 / 0), name="f")
        with pytest.raises(RoutingError):
            flow.send("x")

    def test_unmatched_route_drops_message(self, builder):
        flow = builder.message_flow(builder.route(lambda p: None), name="f")
        assert flow.send_and_receive("x") is None

    def test_undeclared_destination_rejected(self, builder):
        flow = builder.message_flow(builder.route(lambda p: "nowhere"), name="f")
        with pytest.raises(DispatchError, match="does not exist"):
            flow.send("x")

    def test_declared_dead_end_destination_becomes_reply(self, builder):
        flow = builder.message_flow(
            builder.route(
                identity,
                builder.map(skip="f.outputChannel"),
                builder.otherwise(builder.transform(upper)),
            ),
            name="f",
        )
        assert flow.send_and_receive("skip") == "skip"
        assert flow.send_and_receive("go") == "GO"

    def test_recipient_at_dead_end_becomes_reply(self, builder, recorder):
        builder.message_flow(builder.handle(recorder), name="a")
        flow = builder.message_flow(
            builder.route(lambda p: ["a.inputChannel", "f.outputChannel"]), name="f"
        )
        assert flow.send_and_receive("x") == "x"
        assert recorder.call_log == ["x"]

    def test_single_destination_receives_original(self, builder):
        seen = Recorder(result=None)
        builder.message_flow(builder.handle(seen, expects="message"), name="a")
        flow = builder.message_flow(builder.route(lambda p: "a.inputChannel"), name="f")
        message = Message("x")
        flow.send(message)
        assert seen.call_log == [message]


# ---------------------------------------------------------------------------
# Recipient lists
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestRecipientList:
    def test_each_recipient_once(self, builder):
        rec_a, rec_b = Recorder(result=None), Recorder(result=None)
        recipients(builder, rec_a, rec_b).send("x")
        assert rec_a.call_log == ["x"]
        assert rec_b.call_log == ["x"]

    def test_recipients_get_independent_copies(self, builder):
        rec_a, rec_b = Recorder(result=None), Recorder(result=None)
        original = Message("x", headers={"h": 1})
        recipients(builder, rec_a, rec_b, expects="message").send(original)
        (got_a,), (got_b,) = rec_a.call_log, rec_b.call_log
        assert len({original.id, got_a.id, got_b.id}) == 3
        assert got_a.payload == got_b.payload == "x"
        assert got_a.headers == got_b.headers == {"h": 1}

    def test_failure_does_not_stop_other_recipients(self, builder):
        rec_b = Recorder(result=None)
        with pytest.raises(RecipientListError) as exc_info:
            recipients(builder, Boom(), rec_b).send("x")
        assert rec_b.call_log == ["x"]
        err = exc_info.value
        assert err.endpoint == "fan.route_1"
        assert len(err.failures) == 1
        assert isinstance(err.failures[0], DispatchError)
        assert isinstance(err.failures[0].cause, RuntimeError)

    def test_all_failures_collected(self, builder):
        with pytest.raises(RecipientListError) as exc_info:
            recipients(builder, Boom("a"), Boom("b")).send("x")
        assert len(exc_info.value.failures) == 2
        assert isinstance(exc_info.value, DispatchError)

    def test_first_reply_wins(self, builder, caplog):
        flow = recipients(builder, lambda p: "from-a", lambda p: "from-b")
        with caplog.at_level(logging.WARNING, logger="msgflow.runtime"):
            assert flow.send_and_receive("x") == "from-a"
        assert "discarding extra reply" in caplog.text

    def test_results_are_not_aggregated(self, builder):
        flow = recipients(builder, lambda p: [p], lambda p: [p, p])
        assert flow.send_and_receive("x") == ["x"]


@pytest.mark.unit
class TestThreadedRecipientList:
    def test_each_recipient_once(self, threaded_builder):
        rec_a, rec_b = Recorder(result=None), Recorder(result=None)
        recipients(threaded_builder, rec_a, rec_b).send("x")
        assert rec_a.call_log == ["x"]
        assert rec_b.call_log == ["x"]

    def test_recipients_run_on_worker_threads(self, threaded_builder):
        threads = []
        lock = threading.Lock()

        def record_thread(payload):
            with lock:
                threads.append(threading.current_thread().name)

        recipients(threaded_builder, record_thread, record_thread).send("x")
        assert len(threads) == 2
        assert threading.current_thread().name not in threads

    def test_failures_collected(self, threaded_builder):
        rec_b = Recorder(result=None)
        with pytest.raises(RecipientListError) as exc_info:
            recipients(threaded_builder, Boom(), rec_b).send("x")
        assert rec_b.call_log == ["x"]
        assert len(exc_info.value.failures) == 1

    def test_exactly_one_reply(self, threaded_builder):
        flow = recipients(threaded_builder, lambda p: "from-a", lambda p: "from-b")
        assert flow.send_and_receive("x") in {"from-a", "from-b"}
